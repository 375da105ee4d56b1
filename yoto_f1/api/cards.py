"""Card operations against the Yoto content API.

All functions accept a :class:`~yoto_f1.api.client.YotoClient` as their first
argument and return parsed Pydantic models.  The Yoto API uses
``POST /content`` for both creation and updates; the presence of ``cardId``
in the payload selects an in-place update.
"""

from __future__ import annotations

from datetime import datetime, timezone

from loguru import logger

from ..errors import CardNotFoundError, ContentBackendError
from ..models.card import Card, CardContent, CardMetadata
from .client import YotoClient, check_response


async def create_card(client: YotoClient, card: Card) -> Card:
    """Create a new card and return it with its server-assigned ``cardId``.

    A response without a card id is treated as an error rather than
    guessed at.
    """
    payload = _payload(card.model_copy(update={"cardId": None}))
    resp = await client.post("/content", json=payload)
    check_response(resp, "Creating card")
    created = _parse_card(_unwrap(resp.json()))
    if not created.cardId:
        raise ContentBackendError("Card creation response did not include a cardId")
    logger.info(f"Created card {created.cardId} ({created.title!r})")
    return created


async def update_card(client: YotoClient, card_id: str, card: Card) -> Card:
    """Replace the content of card *card_id* in place.

    Raises :class:`CardNotFoundError` if the card no longer exists and
    :class:`ContentBackendError` if the server answers with a different
    card id (the update cannot be confirmed).
    """
    payload = _payload(card.model_copy(update={"cardId": card_id}))
    resp = await client.post("/content", json=payload)
    if resp.status_code == 404:
        raise CardNotFoundError(f"Card {card_id} not found", status_code=404)
    check_response(resp, f"Updating card {card_id}")
    updated = _parse_card(_unwrap(resp.json()))
    if updated.cardId and updated.cardId != card_id:
        raise ContentBackendError(
            f"Update of card {card_id} returned a different card {updated.cardId}"
        )
    logger.info(f"Updated card {card_id} ({card.title!r})")
    return updated.model_copy(update={"cardId": card_id})


# ------------------------------------------------------------------
# Internal helpers
# ------------------------------------------------------------------


def _payload(card: Card) -> dict:
    # The API expects updatedAt in ISO 8601 with milliseconds and a 'Z'.
    updated_at = (
        datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    )
    return card.model_copy(update={"updatedAt": updated_at}).model_dump(exclude_none=True)


def _unwrap(data: object) -> dict:
    """Return the card dict whether or not it is wrapped in a ``card`` key."""
    if isinstance(data, dict) and isinstance(data.get("card"), dict):
        return data["card"]
    if isinstance(data, dict):
        return data
    raise ContentBackendError(f"Unexpected card response: {data!r}")


def _parse_card(raw: dict) -> Card:
    """Parse a raw dict into a :class:`Card`, handling nested structures.

    A shallow copy is made so the caller's original dict is not mutated.
    """
    data = dict(raw)
    data.setdefault("title", "")
    try:
        if isinstance(data.get("metadata"), dict):
            data["metadata"] = CardMetadata.model_validate(data["metadata"])
        if isinstance(data.get("content"), dict):
            data["content"] = CardContent.model_validate(data["content"])
        return Card.model_validate(data)
    except ValueError as exc:
        raise ContentBackendError(f"Malformed card in response: {exc}") from exc
