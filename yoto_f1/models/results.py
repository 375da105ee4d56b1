"""Result and state types produced by the refresh pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal, Union

from pydantic import BaseModel

from .device import DeploymentSummary

# ---------------------------------------------------------------------------
# Best-effort side uploads (icons, cover)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Attached:
    """A side upload that succeeded; *ref* is the media reference to use."""

    ref: str

    @property
    def attached(self) -> bool:
        return True


@dataclass(frozen=True)
class Omitted:
    """A side upload that was skipped or failed, with the reason why."""

    reason: str

    @property
    def attached(self) -> bool:
        return False


SideUpload = Union[Attached, Omitted]


def side_upload_ref(result: SideUpload) -> str | None:
    return result.ref if isinstance(result, Attached) else None


def describe_side_upload(result: SideUpload) -> str:
    if isinstance(result, Attached):
        return "attached"
    return f"omitted: {result.reason}"


# ---------------------------------------------------------------------------
# Upload job state machine
# ---------------------------------------------------------------------------


class UploadState(str, Enum):
    REQUESTED = "requested"
    UPLOADING = "uploading"
    TRANSCODING = "transcoding"
    READY = "ready"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in (UploadState.READY, UploadState.FAILED, UploadState.TIMED_OUT)


_ALLOWED: dict[UploadState, set[UploadState]] = {
    UploadState.REQUESTED: {UploadState.UPLOADING, UploadState.TRANSCODING, UploadState.FAILED},
    UploadState.UPLOADING: {UploadState.TRANSCODING, UploadState.FAILED},
    UploadState.TRANSCODING: {UploadState.READY, UploadState.FAILED, UploadState.TIMED_OUT},
}


@dataclass
class UploadJob:
    """One in-flight audio upload, owned by the media pipeline.

    ``requested -> uploading -> transcoding -> ready | failed | timed_out``.
    A job whose bytes already exist on the server skips ``uploading``.
    """

    label: str
    upload_id: str | None = None
    state: UploadState = UploadState.REQUESTED
    history: list[UploadState] = field(default_factory=lambda: [UploadState.REQUESTED])

    def advance(self, new_state: UploadState) -> None:
        if new_state not in _ALLOWED.get(self.state, set()):
            raise ValueError(f"Illegal upload transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        self.history.append(new_state)


# ---------------------------------------------------------------------------
# Labs text-to-speech jobs
# ---------------------------------------------------------------------------


class LabsJob(BaseModel):
    """Status record of a Yoto Labs text-to-speech job."""

    jobId: str
    status: str = "pending"
    progress: float | None = None
    cardId: str | None = None
    error: str | None = None

    @property
    def terminal(self) -> bool:
        return self.status in ("completed", "complete", "done", "failed", "error")

    @property
    def succeeded(self) -> bool:
        return self.status in ("completed", "complete", "done")


# ---------------------------------------------------------------------------
# Reconciliation / refresh outcomes
# ---------------------------------------------------------------------------


class ReconcileResult(BaseModel):
    cardId: str
    isUpdate: bool
    status: str = "completed"
    cover: str = "omitted"
    fallbackReason: str | None = None
    jobId: str | None = None
    failedTracks: list[str] = []


TriggerKind = Literal["manual", "scheduled", "webhook"]


class RefreshResult(BaseModel):
    """Structured outcome of :meth:`RefreshService.refresh`.

    ``needsReauth`` distinguishes "reconnect your account" from a plain
    retryable failure.
    """

    success: bool
    trigger: TriggerKind = "manual"
    message: str = ""
    skipped: bool = False
    needsReauth: bool = False
    cardId: str | None = None
    isUpdate: bool | None = None
    title: str | None = None
    jobId: str | None = None
    fallbackReason: str | None = None
    race: dict[str, Any] | None = None
    deployment: DeploymentSummary | None = None
    deploymentError: str | None = None
    sideUploads: dict[str, str] = {}
    dataHash: str | None = None
    error: str | None = None
    errorKind: str | None = None
