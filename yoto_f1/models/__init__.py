"""Re-export all data models for convenient access."""

from yoto_f1.models.card import (
    Card,
    CardContent,
    CardCover,
    CardMedia,
    CardMetadata,
    Chapter,
    ChapterDisplay,
    Track,
    TrackDisplay,
    TranscodedAudio,
    TranscodedInfo,
    position_key,
)
from yoto_f1.models.device import DeploymentSummary, Device, DeviceDeployment
from yoto_f1.models.narration import NarrationScript, ScriptChapter, ScriptTrack
from yoto_f1.models.race import Race, RaceWeekendSnapshot, Session, Weather
from yoto_f1.models.results import (
    Attached,
    LabsJob,
    Omitted,
    ReconcileResult,
    RefreshResult,
    SideUpload,
    UploadJob,
    UploadState,
)
from yoto_f1.models.user import TokenData

__all__ = [
    # Card models
    "Card",
    "CardContent",
    "CardCover",
    "CardMedia",
    "CardMetadata",
    "Chapter",
    "ChapterDisplay",
    "Track",
    "TrackDisplay",
    "TranscodedAudio",
    "TranscodedInfo",
    "position_key",
    # Device models
    "DeploymentSummary",
    "Device",
    "DeviceDeployment",
    # Narration
    "NarrationScript",
    "ScriptChapter",
    "ScriptTrack",
    # Race data
    "Race",
    "RaceWeekendSnapshot",
    "Session",
    "Weather",
    # Pipeline results
    "Attached",
    "LabsJob",
    "Omitted",
    "ReconcileResult",
    "RefreshResult",
    "SideUpload",
    "UploadJob",
    "UploadState",
    # User models
    "TokenData",
]
