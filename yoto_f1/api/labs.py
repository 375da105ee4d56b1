"""Yoto Labs text-to-speech jobs.

A Labs job takes a whole card whose tracks carry narration text (``type`` is
``"elevenlabs"`` and the text sits in ``trackUrl``), renders every track on
the server and produces a brand-new card.  Jobs are all-or-nothing and
cannot target an existing card.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any, Awaitable, Callable

from loguru import logger
from pydantic import ValidationError

from ..errors import ContentBackendError, LabsJobError, LabsJobTimeoutError
from ..models.card import Card
from ..models.results import LabsJob
from .client import YotoClient, check_response


def _parse_job(data: Any) -> LabsJob:
    raw = data.get("job", data) if isinstance(data, dict) else None
    if not isinstance(raw, dict):
        raise ContentBackendError(f"Unexpected Labs job response: {data!r}")
    try:
        return LabsJob.model_validate(raw)
    except ValidationError as exc:
        raise ContentBackendError(f"Malformed Labs job in response: {exc}") from exc


async def submit_job(client: YotoClient, card: Card, voice_id: str) -> LabsJob:
    """Submit *card* for rendering and return the freshly created job."""
    payload = card.model_dump(exclude_none=True)
    payload.pop("cardId", None)
    resp = await client.post(
        "/content/job",
        base_url=client.LABS_URL,
        params={"voiceId": voice_id},
        json=payload,
    )
    check_response(resp, "Submitting text-to-speech job")
    job = _parse_job(resp.json())
    logger.info(f"Text-to-speech job {job.jobId} created ({job.status})")
    return job


async def get_job(client: YotoClient, job_id: str) -> LabsJob:
    resp = await client.get(f"/content/job/{job_id}", base_url=client.LABS_URL)
    check_response(resp, f"Checking text-to-speech job {job_id}")
    return _parse_job(resp.json())


async def wait_for_job(
    client: YotoClient,
    job_id: str,
    interval: float = 2.0,
    timeout: float = 600.0,
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> LabsJob:
    """Poll job *job_id* until it completes.

    Raises :class:`LabsJobError` if the job fails or finishes without a card
    id, and :class:`LabsJobTimeoutError` if it does not finish within
    *timeout* seconds.
    """
    deadline = clock() + timeout
    while True:
        job = await get_job(client, job_id)
        if job.terminal:
            if not job.succeeded:
                raise LabsJobError(f"Text-to-speech job {job_id} failed: {job.error or job.status}")
            if not job.cardId:
                raise LabsJobError(f"Text-to-speech job {job_id} finished without a card id")
            return job
        logger.debug(f"Job {job_id} is {job.status} ({job.progress or 0}%)")
        if clock() + interval > deadline:
            raise LabsJobTimeoutError(f"Text-to-speech job {job_id} did not finish within {timeout:g}s")
        await sleep(interval)
