"""Device operations against the Yoto API.

Functions for listing the user's players and pushing a card to one of them.
"""

from __future__ import annotations

from loguru import logger
from pydantic import ValidationError

from ..models.device import Device
from .client import YotoClient, check_response


async def get_devices(client: YotoClient) -> list[Device]:
    """Fetch all devices registered to the authenticated user.

    Returns a list of :class:`Device` instances.  Devices that fail to
    parse are logged and skipped; a failed listing raises.
    """
    resp = await client.get("/device-v2/devices/mine")
    check_response(resp, "Listing devices")
    data = resp.json()

    # The API wraps devices under a "devices" key (or may return a bare list).
    raw_devices: list[dict] = (
        data.get("devices", []) if isinstance(data, dict) else data
    )

    devices: list[Device] = []
    for raw in raw_devices:
        try:
            devices.append(Device.from_api(raw))
        except ValidationError as exc:
            device_id = raw.get("deviceId", raw.get("id", "<unknown>"))
            logger.warning(f"Failed to parse device {device_id}: {exc}")
    return devices


async def deploy_to_device(client: YotoClient, device_id: str, card_id: str) -> None:
    """Make *card_id* the active playlist on *device_id*.

    Raises :class:`~yoto_f1.errors.ContentBackendError` (or
    :class:`~yoto_f1.errors.AuthenticationError`) when the push is refused.
    """
    resp = await client.post(f"/devices/{device_id}/playlist", json={"cardId": card_id})
    check_response(resp, f"Deploying card {card_id} to device {device_id}")
    logger.debug(f"Deployed card {card_id} to device {device_id}")
