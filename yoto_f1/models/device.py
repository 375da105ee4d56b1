"""Pydantic v2 models for Yoto devices and deployment outcomes."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class Device(BaseModel):
    """A registered Yoto device (player).

    The device listing has used both ``deviceId`` and ``id`` for the
    identifier; either is accepted.
    """

    model_config = ConfigDict(populate_by_name=True)

    deviceId: str
    name: str = ""
    description: str | None = None
    online: bool | None = None
    deviceType: str | None = None
    deviceFamily: str | None = None

    @classmethod
    def from_api(cls, raw: dict) -> Device:
        data = dict(raw)
        if "deviceId" not in data and "id" in data:
            data["deviceId"] = data.pop("id")
        return cls.model_validate(data)


class DeviceDeployment(BaseModel):
    """Outcome of pushing a card to one device."""

    deviceId: str
    name: str = ""
    success: bool
    error: str | None = None


class DeploymentSummary(BaseModel):
    """Aggregate of a fan-out deployment; never persisted."""

    succeeded: int = 0
    failed: int = 0
    total: int = 0
    devices: list[DeviceDeployment] = []
