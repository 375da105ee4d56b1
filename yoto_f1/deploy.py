"""Push a card to every registered device at once."""

from __future__ import annotations

import asyncio

from loguru import logger

from .api import devices as devices_api
from .api.client import YotoClient
from .models.device import DeploymentSummary, Device, DeviceDeployment


async def _deploy_one(client: YotoClient, device: Device, card_id: str) -> DeviceDeployment:
    try:
        await devices_api.deploy_to_device(client, device.deviceId, card_id)
    except Exception as exc:
        logger.warning(f"Deploy to device {device.deviceId} ({device.name}) failed: {exc}")
        return DeviceDeployment(
            deviceId=device.deviceId, name=device.name, success=False, error=str(exc)
        )
    return DeviceDeployment(deviceId=device.deviceId, name=device.name, success=True)


async def deploy_to_all(client: YotoClient, card_id: str) -> DeploymentSummary:
    """Deploy *card_id* to every device and aggregate the outcomes.

    A failed device listing raises; a failed push to one device is recorded
    in the summary without affecting the others.  That includes a push the
    server refuses with 401 or 403.  No devices at all is a
    successful deployment with ``total == 0``.
    """
    devices = await devices_api.get_devices(client)
    if not devices:
        logger.info("No devices found to deploy to")
        return DeploymentSummary()

    logger.info(f"Deploying card {card_id} to {len(devices)} device(s)")
    results = await asyncio.gather(*(_deploy_one(client, d, card_id) for d in devices))
    succeeded = sum(1 for r in results if r.success)
    summary = DeploymentSummary(
        succeeded=succeeded,
        failed=len(results) - succeeded,
        total=len(results),
        devices=list(results),
    )
    logger.info(f"Deployment finished: {summary.succeeded}/{summary.total} device(s) updated")
    return summary
