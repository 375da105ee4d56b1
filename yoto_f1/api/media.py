"""Audio upload, transcoding and artwork operations against the Yoto API.

The typical workflow for adding audio to a card is:

1. :func:`calculate_sha256` -- hash the audio bytes.
2. :func:`get_upload_url` -- obtain a pre-signed upload URL from Yoto.  A
   ``null`` URL means the server already has these bytes.
3. :func:`upload_audio` -- PUT the audio bytes to the pre-signed URL.
4. :func:`wait_for_transcode` -- poll until the server has transcoded the
   upload, failed, or the time budget runs out.

The convenience wrapper :func:`upload_and_transcode` bundles steps 1--4 and
drives an :class:`~yoto_f1.models.results.UploadJob` through its states.
"""

from __future__ import annotations

import asyncio
import hashlib
import mimetypes
import time
from pathlib import Path
from typing import Any, Awaitable, Callable

from loguru import logger

from ..errors import (
    ContentBackendError,
    TranscodeFailedError,
    TranscodeTimeoutError,
    UploadRejectedError,
)
from ..models.card import TranscodedAudio
from ..models.results import UploadJob, UploadState
from .client import YotoClient, check_response

Sleep = Callable[[float], Awaitable[Any]]
Clock = Callable[[], float]

_IMAGE_MIME_MAP = {
    "png": "image/png",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
}

# ------------------------------------------------------------------
# SHA-256 helper
# ------------------------------------------------------------------


def calculate_sha256(audio_bytes: bytes) -> str:
    """Return the hex SHA-256 digest of *audio_bytes*."""
    return hashlib.sha256(audio_bytes).hexdigest()


# ------------------------------------------------------------------
# Upload URL
# ------------------------------------------------------------------


async def get_upload_url(
    client: YotoClient,
    sha256: str,
    filename: str | None = None,
) -> dict[str, Any]:
    """Request a pre-signed upload URL from the Yoto API.

    Returns the ``upload`` object, containing ``uploadId`` and
    ``uploadUrl`` (``None`` when the file already exists on the server).
    """
    params = {"sha256": sha256}
    if filename:
        params["filename"] = filename
    resp = await client.get("/media/transcode/audio/uploadUrl", params=params)
    check_response(resp, "Requesting audio upload URL")
    data = resp.json()
    return data.get("upload", data) if isinstance(data, dict) else {}


# ------------------------------------------------------------------
# Upload audio
# ------------------------------------------------------------------


async def upload_audio(
    client: YotoClient,
    upload_url: str,
    audio_bytes: bytes,
    mime_type: str = "audio/mpeg",
) -> None:
    """Upload raw audio bytes to a pre-signed URL.

    Raises
    ------
    UploadRejectedError
        If the storage endpoint refuses the bytes.
    """
    resp = await client.raw_put(
        upload_url,
        content=audio_bytes,
        headers={"Content-Type": mime_type},
        timeout=300.0,
    )
    if resp.status_code >= 400:
        logger.error(f"Audio upload failed: {resp.status_code} {resp.text[:200]}")
        raise UploadRejectedError(f"Audio upload was rejected ({resp.status_code})")
    logger.debug(f"Audio uploaded ({len(audio_bytes)} bytes)")


# ------------------------------------------------------------------
# Transcoding poll
# ------------------------------------------------------------------


async def wait_for_transcode(
    client: YotoClient,
    upload_id: str,
    interval: float = 2.0,
    timeout: float = 240.0,
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.monotonic,
    loudnorm: bool = False,
) -> TranscodedAudio:
    """Poll the Yoto API until an uploaded audio file finishes transcoding.

    The wait is bounded by *timeout* seconds as measured by *clock*; polls
    are spaced by *interval* seconds using *sleep*.  Both callables can be
    replaced in tests to run the loop against a fake clock.

    Raises
    ------
    TranscodeFailedError
        If the server reports a permanent failure.
    TranscodeTimeoutError
        If no terminal state is reached within *timeout*.
    """
    path = f"/media/upload/{upload_id}/transcoded"
    params = {"loudnorm": "true" if loudnorm else "false"}
    deadline = clock() + timeout
    attempts = 0

    while True:
        attempts += 1
        resp = await client.get(path, params=params)
        # 404 means the upload has not been registered for transcoding yet.
        if resp.status_code != 404:
            check_response(resp, f"Polling transcode of upload {upload_id}")
            data = resp.json()
            transcode = data.get("transcode", data) if isinstance(data, dict) else {}
            if transcode.get("transcodedSha256"):
                logger.debug(f"Upload {upload_id} transcoded after {attempts} poll(s)")
                return TranscodedAudio.model_validate(transcode)
            status = str(transcode.get("status", "")).lower()
            if status in ("failed", "error"):
                reason = transcode.get("error") or transcode.get("message") or "unknown error"
                raise TranscodeFailedError(f"Transcoding of upload {upload_id} failed: {reason}")

        if clock() + interval > deadline:
            raise TranscodeTimeoutError(
                f"Transcoding of upload {upload_id} did not finish within {timeout:g}s "
                f"({attempts} poll(s))"
            )
        await sleep(interval)


# ------------------------------------------------------------------
# Convenience: upload + transcode in one call
# ------------------------------------------------------------------


async def upload_and_transcode(
    client: YotoClient,
    audio_bytes: bytes,
    filename: str,
    interval: float = 2.0,
    timeout: float = 240.0,
    sleep: Sleep = asyncio.sleep,
    clock: Clock = time.monotonic,
    job: UploadJob | None = None,
) -> TranscodedAudio:
    """Upload *audio_bytes* and wait for transcoding to complete.

    *job*, when given, is advanced through
    ``requested -> uploading -> transcoding -> ready | failed | timed_out``
    as the upload progresses.
    """
    job = job or UploadJob(label=filename)
    try:
        sha256 = calculate_sha256(audio_bytes)
        upload = await get_upload_url(client, sha256, filename)
        upload_url = upload.get("uploadUrl")
        job.upload_id = upload.get("uploadId")
        if not job.upload_id:
            raise UploadRejectedError(f"No upload id returned for {filename}")

        if upload_url:
            job.advance(UploadState.UPLOADING)
            logger.debug(f"Uploading {filename} ({len(audio_bytes)} bytes)")
            await upload_audio(client, upload_url, audio_bytes, _guess_mime_type(filename))
        else:
            logger.info(f"{filename} already exists on server, skipping upload")

        job.advance(UploadState.TRANSCODING)
        transcoded = await wait_for_transcode(
            client, job.upload_id, interval=interval, timeout=timeout, sleep=sleep, clock=clock
        )
    except TranscodeTimeoutError:
        job.advance(UploadState.TIMED_OUT)
        raise
    except (UploadRejectedError, TranscodeFailedError, ContentBackendError):
        job.advance(UploadState.FAILED)
        raise

    job.advance(UploadState.READY)
    return transcoded


# ------------------------------------------------------------------
# Artwork uploads
# ------------------------------------------------------------------


async def upload_icon(
    client: YotoClient,
    image_data: bytes,
    filename: str,
    auto_convert: bool = True,
) -> str:
    """Upload a 16x16 display icon and return its ``yoto:#<mediaId>`` reference."""
    params = {"autoConvert": str(auto_convert).lower(), "filename": filename}
    resp = await client.post(
        "/media/displayIcons/user/me/upload",
        params=params,
        content=image_data,
        headers={"Content-Type": _guess_image_mime_type(filename)},
    )
    check_response(resp, f"Uploading icon {filename}")
    body = resp.json()
    icon = body.get("displayIcon", body) if isinstance(body, dict) else {}
    media_id = icon.get("mediaId")
    if not media_id:
        raise ContentBackendError(f"Icon upload of {filename} returned no mediaId")
    logger.info(f"Icon {filename} uploaded with mediaId {media_id}")
    return f"yoto:#{media_id}"


async def upload_cover_image(
    client: YotoClient,
    image_data: bytes | None = None,
    filename: str | None = None,
    image_url: str | None = None,
    autoconvert: bool = True,
) -> str:
    """Upload a cover image and return its media URL.

    Supports either a direct upload (*image_data*) or a URL the server
    fetches itself (*image_url*).
    """
    if image_data is None and not image_url:
        raise ValueError("Either image_data or image_url must be provided")
    params = {"autoconvert": str(bool(autoconvert)).lower()}
    if image_url:
        params["imageUrl"] = image_url
    if filename:
        params["filename"] = filename

    kwargs: dict[str, Any] = {"params": params}
    if image_data is not None:
        kwargs["content"] = image_data
        kwargs["headers"] = {"Content-Type": _guess_image_mime_type(filename or "cover.png")}
    resp = await client.post("/media/coverImage/user/me/upload", **kwargs)
    check_response(resp, "Uploading cover image")
    body = resp.json()
    cover = (body.get("coverImage") or body) if isinstance(body, dict) else {}
    media_url = cover.get("mediaUrl")
    if not media_url:
        raise ContentBackendError("Cover upload returned no mediaUrl")
    logger.info(f"Cover image uploaded: {media_url}")
    return media_url


# ------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------


def _guess_mime_type(filename: str) -> str:
    """Guess the MIME type for an audio file, falling back to audio/mpeg."""
    guessed, _ = mimetypes.guess_type(filename)
    if guessed and guessed.startswith("audio/"):
        return guessed
    return "audio/mpeg"


def _guess_image_mime_type(filename: str) -> str:
    ext = Path(filename).suffix.lower().lstrip(".")
    return _IMAGE_MIME_MAP.get(ext, "image/png")
