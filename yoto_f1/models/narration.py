"""Narration script models: the ordered chapter/track tree before audio exists."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, model_validator

from .card import position_key


class ScriptTrack(BaseModel):
    """A track to be spoken (``text``) or uploaded as-is (``audio``)."""

    model_config = ConfigDict(frozen=True)

    title: str
    text: str | None = None
    audio: bytes | None = None
    audioFilename: str | None = None
    icon: str | None = None
    voiceId: str | None = None

    @model_validator(mode="after")
    def _one_source(self) -> ScriptTrack:
        if (self.text is None) == (self.audio is None):
            raise ValueError("a track needs exactly one of text or audio")
        return self

    @property
    def needs_synthesis(self) -> bool:
        return self.text is not None


class ScriptChapter(BaseModel):
    model_config = ConfigDict(frozen=True)

    title: str
    tracks: tuple[ScriptTrack, ...]
    icon: str | None = None


class NarrationScript(BaseModel):
    """Ordered chapters of ordered tracks; order is playback order."""

    model_config = ConfigDict(frozen=True)

    chapters: tuple[ScriptChapter, ...]

    def iter_tracks(self):
        """Yield ``(chapter_key, track_key, chapter, track)`` in playback order."""
        for ci, chapter in enumerate(self.chapters):
            for ti, track in enumerate(chapter.tracks):
                yield position_key(ci), position_key(ti), chapter, track

    def key_sequence(self) -> list[str]:
        """Return ``"<chapter>/<track>"`` keys in playback order."""
        return [f"{ck}/{tk}" for ck, tk, _, _ in self.iter_tracks()]

    @property
    def track_count(self) -> int:
        return sum(len(chapter.tracks) for chapter in self.chapters)
