"""The refresh operation: race data in, updated card on every player out.

:class:`RefreshService` is what the HTTP routes, the webhook and the CLI
call.  It never raises for expected failures; every call returns a
:class:`~yoto_f1.models.results.RefreshResult`, with ``needsReauth`` set when
the user has to reconnect their Yoto account.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable

import httpx
from loguru import logger

from .api import labs, media
from .api.client import YotoClient
from .api.speech import ElevenLabsSynthesizer
from .deploy import deploy_to_all
from .errors import AuthenticationError, YotoF1Error
from .images import to_icon_png
from .models.narration import NarrationScript, ScriptChapter, ScriptTrack
from .models.race import RaceWeekendSnapshot
from .models.results import (
    Attached,
    LabsJob,
    Omitted,
    RefreshResult,
    SideUpload,
    TriggerKind,
    describe_side_upload,
    side_upload_ref,
)
from .narration import build_script, default_title, format_date
from .pipeline import LabsRenderer, UploadRenderer
from .race_data import RaceDataProvider, provider_from_settings
from .reconcile import PlaylistReconciler
from .storage.config import Settings
from .storage.identity import IdentityStore, JsonFileStore

_TRIGGER_LABELS = {
    "manual": "Manual refresh",
    "scheduled": "Scheduled refresh",
    "webhook": "Webhook refresh",
}


class RefreshService:
    """Orchestrates fetch, narration, rendering, reconciliation and deployment."""

    def __init__(
        self,
        client: YotoClient,
        identity: IdentityStore,
        provider: RaceDataProvider,
        renderer: UploadRenderer | LabsRenderer,
        settings: Settings | None = None,
        upload_renderer: UploadRenderer | None = None,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.client = client
        self.identity = identity
        self.provider = provider
        self.renderer = renderer
        self.settings = settings or Settings()
        self.upload_renderer = upload_renderer or (
            renderer if isinstance(renderer, UploadRenderer) else UploadRenderer(client, None)
        )
        self.now = now

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        identity: IdentityStore | None = None,
        http: httpx.AsyncClient | None = None,
    ) -> RefreshService:
        """Wire the service from configuration, sharing one HTTP client."""
        http = http or httpx.AsyncClient(timeout=30.0)
        identity = identity or IdentityStore(JsonFileStore(settings.store_path))
        client = YotoClient(
            identity,
            settings.yoto_client_id,
            settings.secret("yoto_client_secret"),
            http=http,
        )
        timing = {"interval": settings.poll_interval_seconds}
        upload_renderer = UploadRenderer(
            client,
            None,
            max_concurrency=settings.max_concurrent_uploads,
            timeout=settings.transcode_timeout_seconds,
            **timing,
        )
        if settings.tts_backend == "labs":
            renderer: UploadRenderer | LabsRenderer = LabsRenderer(
                client,
                settings.elevenlabs_voice_id,
                timeout=settings.labs_job_timeout_seconds,
                **timing,
            )
        else:
            api_key = settings.secret("elevenlabs_api_key")
            synthesizer = (
                ElevenLabsSynthesizer(
                    api_key,
                    default_voice_id=settings.elevenlabs_voice_id,
                    model_id=settings.elevenlabs_model_id,
                    http=http,
                )
                if api_key
                else None
            )
            renderer = UploadRenderer(
                client,
                synthesizer,
                max_concurrency=settings.max_concurrent_uploads,
                isolate_failures=settings.isolate_track_failures,
                timeout=settings.transcode_timeout_seconds,
                **timing,
            )
        return cls(
            client,
            identity,
            provider_from_settings(settings, http=http),
            renderer,
            settings=settings,
            upload_renderer=upload_renderer,
        )

    async def aclose(self) -> None:
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    async def refresh(self, trigger: TriggerKind = "manual", force: bool = False) -> RefreshResult:
        """Bring the managed card in line with the latest race data.

        The card is left alone when the race data fingerprint matches the
        one stored after the last successful refresh, unless *force* is set.
        The identity record is written only after the card has been
        created or updated; deployment failures are reported, not raised.
        """
        label = _TRIGGER_LABELS.get(trigger, "Refresh")
        logger.info(f"{label} started")
        try:
            self.renderer.check_ready()
            await self.client.ensure_authenticated()
            snapshot = await self.provider.fetch_snapshot()
            fingerprint = snapshot.fingerprint()
            race = snapshot.summary()

            if (
                not force
                and self.identity.card_id
                and fingerprint == self.identity.content_fingerprint
            ):
                logger.info(f"{label}: race data unchanged, card {self.identity.card_id} is up to date")
                return RefreshResult(
                    success=True,
                    trigger=trigger,
                    skipped=True,
                    cardId=self.identity.card_id,
                    title=self.identity.playlist_title,
                    race=race,
                    dataHash=fingerprint,
                    message="Race data unchanged. The playlist is already up to date.",
                )

            icon = await self._side_upload("icon", self._upload_card_icon)
            flag = await self._side_upload("flag", lambda: self._upload_flag_icon(snapshot))
            cover = await self._side_upload("cover", self._upload_cover)

            icon_ref = side_upload_ref(icon)
            script = build_script(snapshot, icon=icon_ref, flag_icon=side_upload_ref(flag))
            title = self.identity.playlist_title or default_title(snapshot)
            logger.info(f"Using playlist title {title!r} (stored: {bool(self.identity.playlist_title)})")

            reconciler = PlaylistReconciler(self.client, self.renderer)
            result = await reconciler.reconcile(
                title,
                script,
                prior_card_id=self.identity.card_id,
                cover=cover,
                description=self._description(),
            )
            # Dropped tracks mean the card is incomplete; keep the next
            # refresh from short-circuiting.
            self.identity.commit_card(
                result.cardId,
                title,
                fingerprint=None if result.failedTracks else fingerprint,
                clear_fingerprint=bool(result.failedTracks),
            )
        except AuthenticationError as exc:
            logger.error(f"{label} failed, re-authentication required: {exc}")
            return RefreshResult(
                success=False,
                trigger=trigger,
                needsReauth=True,
                error=str(exc),
                errorKind=type(exc).__name__,
                message="Not authenticated. Please connect with Yoto first.",
            )
        except (YotoF1Error, httpx.HTTPError) as exc:
            logger.error(f"{label} failed: {exc}")
            return RefreshResult(
                success=False,
                trigger=trigger,
                error=str(exc),
                errorKind=type(exc).__name__,
                message="Failed to refresh the playlist.",
            )

        deployment, deployment_error = await self._deploy(result.cardId)
        message = (
            "Playlist updated in place with the latest F1 data."
            if result.isUpdate
            else "Playlist created with the latest F1 data."
        )
        logger.info(f"{label} finished: card {result.cardId} ({'updated' if result.isUpdate else 'created'})")
        return RefreshResult(
            success=True,
            trigger=trigger,
            message=message,
            cardId=result.cardId,
            isUpdate=result.isUpdate,
            title=title,
            jobId=result.jobId,
            fallbackReason=result.fallbackReason,
            race=race,
            deployment=deployment,
            deploymentError=deployment_error,
            sideUploads={
                "icon": describe_side_upload(icon),
                "flag": describe_side_upload(flag),
                "cover": describe_side_upload(cover),
            },
            dataHash=fingerprint,
        )

    # ------------------------------------------------------------------
    # Publishing caller-provided content
    # ------------------------------------------------------------------

    async def send_script(
        self,
        title: str,
        script: NarrationScript,
        update_existing: bool = True,
    ) -> RefreshResult:
        """Publish a caller-built *script* as the managed card and deploy it."""
        try:
            self.renderer.check_ready(script)
            await self.client.ensure_authenticated()
            cover = await self._side_upload("cover", self._upload_cover)
            reconciler = PlaylistReconciler(self.client, self.renderer)
            result = await reconciler.reconcile(
                title,
                script,
                prior_card_id=self.identity.card_id if update_existing else None,
                cover=cover,
                description=self._description(),
            )
            # The card no longer matches any race data fingerprint.
            self.identity.commit_card(result.cardId, title, clear_fingerprint=True)
        except AuthenticationError as exc:
            return _auth_failure(exc)
        except (YotoF1Error, httpx.HTTPError) as exc:
            logger.error(f"Send to Yoto failed: {exc}")
            return _failure(exc, "Failed to send card to Yoto.")

        deployment, deployment_error = await self._deploy(result.cardId)
        return RefreshResult(
            success=True,
            message=(
                "Formula 1 card updated successfully! Check your Yoto library."
                if result.isUpdate
                else "Formula 1 card created successfully! Check your Yoto library."
            ),
            cardId=result.cardId,
            isUpdate=result.isUpdate,
            title=title,
            jobId=result.jobId,
            fallbackReason=result.fallbackReason,
            deployment=deployment,
            deploymentError=deployment_error,
            sideUploads={"cover": describe_side_upload(cover)},
        )

    async def upload_audio(
        self,
        title: str,
        audio: bytes,
        filename: str,
        update_existing: bool = False,
    ) -> RefreshResult:
        """Publish a single pre-rendered audio file as its own MYO card.

        This card is tracked separately from the race card and is not
        deployed; the user links it to a physical card in the Yoto app.
        """
        script = NarrationScript(
            chapters=(
                ScriptChapter(
                    title=title,
                    tracks=(ScriptTrack(title=title, audio=audio, audioFilename=filename),),
                ),
            )
        )
        try:
            await self.client.ensure_authenticated()
            cover = await self._side_upload("cover", self._upload_cover)
            reconciler = PlaylistReconciler(self.client, self.upload_renderer)
            result = await reconciler.reconcile(
                title,
                script,
                prior_card_id=self.identity.myo_card_id if update_existing else None,
                cover=cover,
            )
            self.identity.commit_myo_card(result.cardId)
        except AuthenticationError as exc:
            return _auth_failure(exc)
        except (YotoF1Error, httpx.HTTPError) as exc:
            logger.error(f"MYO upload failed: {exc}")
            return _failure(exc, "Failed to create MYO card.")

        return RefreshResult(
            success=True,
            message=(
                "MYO card updated successfully! Link it to your physical card in the Yoto app."
                if result.isUpdate
                else "MYO card created successfully! Link it to your physical card in the Yoto app."
            ),
            cardId=result.cardId,
            isUpdate=result.isUpdate,
            title=title,
            fallbackReason=result.fallbackReason,
            sideUploads={"cover": describe_side_upload(cover)},
        )

    async def job_status(self, job_id: str) -> LabsJob:
        """Return the current state of a Labs text-to-speech job."""
        return await labs.get_job(self.client, job_id)

    # ------------------------------------------------------------------
    # Side uploads
    # ------------------------------------------------------------------

    async def _side_upload(
        self, label: str, upload: Callable[[], Awaitable[SideUpload]]
    ) -> SideUpload:
        """Run a best-effort upload; failures become :class:`Omitted`.

        Authentication failures still propagate.
        """
        try:
            result = await upload()
        except AuthenticationError:
            raise
        except (YotoF1Error, httpx.HTTPError, OSError, ValueError) as exc:
            logger.warning(f"{label.capitalize()} upload failed, continuing without it: {exc}")
            return Omitted(f"{label} upload failed: {exc}")
        if isinstance(result, Omitted):
            logger.debug(f"{label.capitalize()} omitted: {result.reason}")
        return result

    async def _upload_card_icon(self) -> SideUpload:
        path = self.settings.icon_path
        if not path or not Path(path).exists():
            return Omitted("no card icon configured")
        data = to_icon_png(Path(path).read_bytes())
        return Attached(await media.upload_icon(self.client, data, f"{Path(path).stem}.png"))

    async def _upload_flag_icon(self, snapshot: RaceWeekendSnapshot) -> SideUpload:
        flag_url = snapshot.race.countryFlag
        if not flag_url:
            return Omitted("race has no country flag")
        resp = await self.client.raw_get(flag_url, follow_redirects=True)
        resp.raise_for_status()
        data = to_icon_png(resp.content)
        country = snapshot.race.country.lower().replace(" ", "-")
        return Attached(await media.upload_icon(self.client, data, f"flag-{country}.png"))

    async def _upload_cover(self) -> SideUpload:
        path = self.settings.cover_path
        if not path or not Path(path).exists():
            return Omitted("no cover image configured")
        data = Path(path).read_bytes()
        return Attached(await media.upload_cover_image(self.client, data, filename=Path(path).name))

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _description(self) -> str:
        return f"F1 Update - {format_date(self.now())}"

    async def _deploy(self, card_id: str):
        try:
            return await deploy_to_all(self.client, card_id), None
        except (YotoF1Error, httpx.HTTPError) as exc:
            logger.error(f"Deployment error (non-fatal): {exc}")
            return None, str(exc)


def _auth_failure(exc: AuthenticationError) -> RefreshResult:
    logger.error(f"Re-authentication required: {exc}")
    return RefreshResult(
        success=False,
        needsReauth=True,
        error=str(exc),
        errorKind=type(exc).__name__,
        message="Not authenticated. Please connect with Yoto first.",
    )


def _failure(exc: Exception, message: str) -> RefreshResult:
    return RefreshResult(
        success=False,
        error=str(exc),
        errorKind=type(exc).__name__,
        message=message,
    )
