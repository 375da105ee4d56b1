"""Pydantic v2 models for Yoto cards, chapters, tracks and transcoded audio."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict


def position_key(index: int) -> str:
    """Return the card key for a zero-based *index* (``0`` -> ``"01"``).

    Keys are 1-based and zero-padded to width 2; the Yoto backend orders
    chapters and tracks by these keys.
    """
    return f"{index + 1:02d}"


class TrackDisplay(BaseModel):
    """Visual display metadata for a track (e.g. icon reference)."""

    model_config = ConfigDict(populate_by_name=True)

    icon16x16: str | None = None


class Track(BaseModel):
    """A single track within a chapter.

    Uploaded audio uses ``type="audio"`` with a ``yoto:#<sha256>`` track URL.
    Tracks submitted to the Labs text-to-speech job use ``type="elevenlabs"``
    and carry the narration text in *trackUrl*.
    """

    model_config = ConfigDict(populate_by_name=True)

    title: str
    trackUrl: str
    key: str
    format: str | None = None
    type: Literal["audio", "stream", "elevenlabs"]
    display: TrackDisplay | None = None
    overlayLabel: str | None = None
    duration: float | None = None
    fileSize: float | None = None
    channels: Literal["stereo", "mono", 1, 2] | None = None
    voiceId: str | None = None


class ChapterDisplay(BaseModel):
    """Visual display metadata for a chapter."""

    model_config = ConfigDict(populate_by_name=True)

    icon16x16: str | None = None


class Chapter(BaseModel):
    """A chapter groups one or more tracks with shared display metadata."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    key: str | None = None
    overlayLabel: str | None = None
    tracks: list[Track] = []
    duration: float | None = None
    fileSize: float | None = None
    display: ChapterDisplay | None = None


class CardCover(BaseModel):
    """Cover image reference for a card."""

    model_config = ConfigDict(populate_by_name=True)

    imageL: str | None = None


class CardMedia(BaseModel):
    """Aggregate media information for a card."""

    model_config = ConfigDict(populate_by_name=True)

    duration: float | None = None
    fileSize: float | None = None


class CardMetadata(BaseModel):
    """Metadata associated with a card (description, cover, media totals)."""

    model_config = ConfigDict(populate_by_name=True)

    title: str | None = None
    description: str | None = None
    category: Literal["", "none", "stories", "music", "radio", "podcast"] | None = None
    cover: CardCover | None = None
    media: CardMedia | None = None


class CardContent(BaseModel):
    """Playback content of a card."""

    model_config = ConfigDict(populate_by_name=True)

    chapters: list[Chapter] | None = None
    playbackType: Literal["linear", "interactive"] | None = None


class Card(BaseModel):
    """Top-level representation of a Yoto card.

    The only strictly required field is *title*; everything else is optional
    so that partial API responses can be parsed without error.
    """

    model_config = ConfigDict(populate_by_name=True)

    cardId: str | None = None
    title: str
    metadata: CardMetadata | None = None
    content: CardContent | None = None
    createdAt: str | None = None
    updatedAt: str | None = None

    @property
    def total_tracks(self) -> int:
        """Total number of tracks across all chapters."""
        if not self.content or not self.content.chapters:
            return 0
        return sum(len(chapter.tracks) for chapter in self.content.chapters)

    @property
    def is_labs_tts(self) -> bool:
        """``True`` when the card was produced by a Labs text-to-speech job."""
        if not self.content or not self.content.chapters:
            return False
        return any(
            track.type == "elevenlabs"
            for chapter in self.content.chapters
            for track in chapter.tracks
        )


class TranscodedMetadata(BaseModel):
    title: str | None = None


class TranscodedInfo(BaseModel):
    metadata: TranscodedMetadata | None = None
    duration: float | None = None
    fileSize: float | None = None
    channels: Literal["stereo", "mono", 1, 2] | None = None
    format: str | None = None


class TranscodedAudio(BaseModel):
    """Result of a finished transcode, referenced by tracks as ``yoto:#sha``."""

    transcodedSha256: str
    transcodedInfo: TranscodedInfo | None = None

    @property
    def track_url(self) -> str:
        return f"yoto:#{self.transcodedSha256}"
