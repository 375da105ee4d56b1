"""Create-or-update reconciliation of the managed card.

:class:`PlaylistReconciler` decides whether a narration script becomes a
new card or replaces the content of the card created by an earlier run.
An existing card is only abandoned for a new one when updating it is
impossible: the renderer can only create cards, or the stored card no
longer exists.  Anything else (refusals, rate limits, ambiguous answers)
propagates so that the caller can retry without leaving duplicates behind.
"""

from __future__ import annotations

from loguru import logger

from .api import cards
from .api.client import YotoClient
from .errors import UpdateNotSupportedError
from .models.narration import NarrationScript
from .models.results import Omitted, ReconcileResult, SideUpload, describe_side_upload, side_upload_ref
from .pipeline import LabsRenderer, UploadRenderer, assemble_card


class PlaylistReconciler:
    def __init__(self, client: YotoClient, renderer: UploadRenderer | LabsRenderer) -> None:
        self.client = client
        self.renderer = renderer

    async def reconcile(
        self,
        title: str,
        script: NarrationScript,
        prior_card_id: str | None = None,
        cover: SideUpload | None = None,
        description: str | None = None,
    ) -> ReconcileResult:
        """Publish *script* as the card titled *title*.

        With no *prior_card_id* a card is created.  Otherwise the prior card
        is updated in place, falling back to creation (reported through
        ``fallbackReason``) only when the update is structurally impossible.
        A missing cover never blocks assembly.
        """
        cover = cover or Omitted("no cover provided")
        cover_url = side_upload_ref(cover)

        if not self.renderer.supports_update:
            fallback = None
            if prior_card_id:
                fallback = "renderer can only create new cards"
                logger.warning(
                    f"Cannot update card {prior_card_id} in place: {fallback}; creating a new card"
                )
            job = await self.renderer.submit(title, script, cover_url, description)
            return ReconcileResult(
                cardId=job.cardId,
                isUpdate=False,
                status=job.status,
                cover=describe_side_upload(cover),
                fallbackReason=fallback,
                jobId=job.jobId,
            )

        rendered = await self.renderer.render(script)
        card = assemble_card(title, rendered, cover_url, description)

        fallback = None
        if prior_card_id:
            try:
                updated = await cards.update_card(self.client, prior_card_id, card)
            except UpdateNotSupportedError as exc:
                fallback = str(exc)
                logger.warning(f"Cannot update card {prior_card_id} in place ({exc}); creating a new card")
            else:
                return ReconcileResult(
                    cardId=updated.cardId,
                    isUpdate=True,
                    cover=describe_side_upload(cover),
                    failedTracks=rendered.failed_tracks,
                )

        created = await cards.create_card(self.client, card)
        return ReconcileResult(
            cardId=created.cardId,
            isUpdate=False,
            cover=describe_side_upload(cover),
            fallbackReason=fallback,
            failedTracks=rendered.failed_tracks,
        )
