"""Render a narration script into playable card content.

Two renderers are provided:

* :class:`UploadRenderer` synthesizes each text track with ElevenLabs (or
  takes pre-rendered audio as-is), uploads it and waits for transcoding.
  The result is a list of card chapters that can be used to create *or*
  update a card.
* :class:`LabsRenderer` hands the whole script to a Yoto Labs job, which
  renders on the server and always produces a new card.

The reconciler tells them apart through ``supports_update``.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from loguru import logger

from .api import labs, media
from .api.client import YotoClient
from .api.speech import ElevenLabsSynthesizer
from .errors import AuthenticationError, ConfigurationError, SynthesisError
from .models.card import (
    Card,
    CardContent,
    CardCover,
    CardMetadata,
    Chapter,
    ChapterDisplay,
    Track,
    TrackDisplay,
    TranscodedAudio,
    position_key,
)
from .models.narration import NarrationScript, ScriptTrack
from .models.results import LabsJob, UploadJob


@dataclass
class RenderedScript:
    """Chapters ready for card assembly plus the keys of dropped tracks."""

    chapters: list[Chapter]
    failed_tracks: list[str] = field(default_factory=list)
    jobs: list[UploadJob] = field(default_factory=list)


class UploadRenderer:
    """Synthesize and upload every track of a script, concurrently.

    At most *max_concurrency* tracks are in flight at once.  With
    *isolate_failures* a track that fails is dropped and reported in
    :attr:`RenderedScript.failed_tracks`; otherwise the first failure (in
    playback order) is raised once all in-flight tracks have settled.  A
    script in which every track fails always raises :class:`SynthesisError`.
    """

    supports_update = True

    def __init__(
        self,
        client: YotoClient,
        synthesizer: ElevenLabsSynthesizer | None,
        max_concurrency: int = 4,
        isolate_failures: bool = False,
        interval: float = 2.0,
        timeout: float = 240.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.synthesizer = synthesizer
        self.max_concurrency = max(1, max_concurrency)
        self.isolate_failures = isolate_failures
        self.interval = interval
        self.timeout = timeout
        self.sleep = sleep
        self.clock = clock

    def check_ready(self, script: NarrationScript | None = None) -> None:
        """Raise :class:`ConfigurationError` if *script* needs a synthesizer and none is set.

        Without a script, any text track is assumed.
        """
        if self.synthesizer is not None:
            return
        if script is None or any(t.needs_synthesis for _, _, _, t in script.iter_tracks()):
            raise ConfigurationError("Missing required configuration: ELEVENLABS_API_KEY")

    async def _render_track(
        self, key: str, track: ScriptTrack, semaphore: asyncio.Semaphore
    ) -> tuple[TranscodedAudio, UploadJob]:
        async with semaphore:
            if track.needs_synthesis:
                if self.synthesizer is None:
                    raise ConfigurationError("Missing required configuration: ELEVENLABS_API_KEY")
                try:
                    audio = await self.synthesizer.synthesize(track.text, track.voiceId)
                except SynthesisError as exc:
                    exc.track_key = key
                    raise
                filename = f"track-{key.replace('/', '-')}.mp3"
            else:
                audio = track.audio
                filename = track.audioFilename or f"track-{key.replace('/', '-')}.mp3"
            job = UploadJob(label=key)
            transcoded = await media.upload_and_transcode(
                self.client,
                audio,
                filename,
                interval=self.interval,
                timeout=self.timeout,
                sleep=self.sleep,
                clock=self.clock,
                job=job,
            )
            logger.debug(f"Track {key} ready: {transcoded.track_url}")
            return transcoded, job

    async def render(self, script: NarrationScript) -> RenderedScript:
        semaphore = asyncio.Semaphore(self.max_concurrency)
        entries = list(script.iter_tracks())
        logger.info(f"Rendering {len(entries)} track(s), {self.max_concurrency} at a time")
        outcomes = await asyncio.gather(
            *(self._render_track(f"{ck}/{tk}", track, semaphore) for ck, tk, _, track in entries),
            return_exceptions=True,
        )

        failed: list[str] = []
        first_error: BaseException | None = None
        for (ck, tk, _, _), outcome in zip(entries, outcomes):
            if not isinstance(outcome, BaseException):
                continue
            if not isinstance(outcome, Exception) or isinstance(
                outcome, (AuthenticationError, ConfigurationError)
            ):
                raise outcome
            logger.warning(f"Track {ck}/{tk} failed: {outcome}")
            failed.append(f"{ck}/{tk}")
            first_error = first_error or outcome

        if entries and len(failed) == len(entries):
            raise SynthesisError(f"All {len(entries)} track(s) failed to render") from first_error
        if first_error is not None and not self.isolate_failures:
            raise first_error

        by_key = {f"{ck}/{tk}": outcome for (ck, tk, _, _), outcome in zip(entries, outcomes)}
        chapters: list[Chapter] = []
        jobs: list[UploadJob] = []
        for ci, chapter in enumerate(script.chapters):
            tracks: list[Track] = []
            for ti, script_track in enumerate(chapter.tracks):
                key = f"{position_key(ci)}/{position_key(ti)}"
                if key in failed:
                    continue
                transcoded, job = by_key[key]
                jobs.append(job)
                tracks.append(_audio_track(script_track, transcoded, len(tracks)))
            if tracks:
                chapters.append(_chapter(chapter.title, chapter.icon, tracks, len(chapters)))
        return RenderedScript(chapters=chapters, failed_tracks=failed, jobs=jobs)


class LabsRenderer:
    """Render a script through a Yoto Labs text-to-speech job.

    Labs jobs always create a new card; they cannot target an existing one.
    """

    supports_update = False

    def __init__(
        self,
        client: YotoClient,
        voice_id: str,
        interval: float = 2.0,
        timeout: float = 600.0,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.client = client
        self.voice_id = voice_id
        self.interval = interval
        self.timeout = timeout
        self.sleep = sleep
        self.clock = clock

    def check_ready(self, script: NarrationScript | None = None) -> None:
        if not self.voice_id:
            raise ConfigurationError("Missing required configuration: ELEVENLABS_VOICE_ID")

    def build_card(
        self,
        title: str,
        script: NarrationScript,
        cover_url: str | None = None,
        description: str | None = None,
    ) -> Card:
        """Assemble the Labs job payload; track text travels in ``trackUrl``."""
        chapters = []
        for ci, chapter in enumerate(script.chapters):
            tracks = []
            for ti, track in enumerate(chapter.tracks):
                if not track.needs_synthesis:
                    raise SynthesisError(
                        "Text-to-speech jobs only accept text tracks",
                        track_key=f"{position_key(ci)}/{position_key(ti)}",
                    )
                tracks.append(
                    Track(
                        key=position_key(ti),
                        title=track.title,
                        trackUrl=track.text,
                        type="elevenlabs",
                        overlayLabel=str(ti + 1),
                        voiceId=track.voiceId or self.voice_id,
                        display=TrackDisplay(icon16x16=track.icon) if track.icon else None,
                    )
                )
            chapters.append(_chapter(chapter.title, chapter.icon, tracks, ci))
        return _card(title, chapters, cover_url, description)

    async def submit(
        self,
        title: str,
        script: NarrationScript,
        cover_url: str | None = None,
        description: str | None = None,
    ) -> LabsJob:
        """Submit the script and wait for the resulting card."""
        card = self.build_card(title, script, cover_url, description)
        job = await labs.submit_job(self.client, card, self.voice_id)
        if job.terminal and job.succeeded and job.cardId:
            return job
        return await labs.wait_for_job(
            self.client,
            job.jobId,
            interval=self.interval,
            timeout=self.timeout,
            sleep=self.sleep,
            clock=self.clock,
        )


# ------------------------------------------------------------------
# Card assembly helpers
# ------------------------------------------------------------------


def _audio_track(script_track: ScriptTrack, transcoded: TranscodedAudio, index: int) -> Track:
    info = transcoded.transcodedInfo
    return Track(
        key=position_key(index),
        title=script_track.title,
        trackUrl=transcoded.track_url,
        type="audio",
        format=(info.format if info and info.format else "mp3"),
        duration=info.duration if info else None,
        fileSize=info.fileSize if info else None,
        channels=info.channels if info else None,
        overlayLabel=str(index + 1),
        display=TrackDisplay(icon16x16=script_track.icon) if script_track.icon else None,
    )


def _chapter(title: str, icon: str | None, tracks: list[Track], index: int) -> Chapter:
    durations = [t.duration for t in tracks if t.duration is not None]
    return Chapter(
        key=position_key(index),
        title=title,
        overlayLabel=str(index + 1),
        tracks=tracks,
        duration=sum(durations) if durations else None,
        display=ChapterDisplay(icon16x16=icon) if icon else None,
    )


def _card(
    title: str,
    chapters: list[Chapter],
    cover_url: str | None,
    description: str | None,
) -> Card:
    return Card(
        title=title,
        content=CardContent(chapters=chapters),
        metadata=CardMetadata(
            title=title,
            description=description,
            cover=CardCover(imageL=cover_url) if cover_url else None,
        ),
    )


def assemble_card(
    title: str,
    rendered: RenderedScript,
    cover_url: str | None = None,
    description: str | None = None,
) -> Card:
    """Build the card payload from rendered chapters."""
    return _card(title, rendered.chapters, cover_url, description)
