"""Persistent identity record: tokens, managed card id, title and fingerprint.

Everything the application remembers between runs funnels through a narrow
``get``/``set``/``delete`` key-value contract (:class:`KeyValueStore`).  Two
implementations ship with the package:

* :class:`JsonFileStore` -- a JSON document on disk, written atomically.
* :class:`MemoryStore` -- a plain dict, used by tests and dry runs.

:class:`IdentityStore` layers typed accessors for the individual fields on
top of either backend and owns the single multi-field commit performed at
the end of a successful refresh.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Mapping, Protocol

from loguru import logger

from ..models.user import TokenData
from .paths import IDENTITY_FILE, atomic_write, ensure_parents

TOKENS_KEY = "tokens"
CARD_ID_KEY = "f1CardId"
PLAYLIST_TITLE_KEY = "f1PlaylistTitle"
FINGERPRINT_KEY = "f1DataHash"
MYO_CARD_ID_KEY = "f1MyoCardId"


class KeyValueStore(Protocol):
    """Minimal persistent key-value contract."""

    def get(self, key: str, default: Any = None) -> Any: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...

    def update(self, values: Mapping[str, Any]) -> None:
        """Apply several writes at once; ``None`` values delete their key."""
        ...


class MemoryStore:
    """In-process store backed by a dict."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def update(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            if value is None:
                self._data.pop(key, None)
            else:
                self._data[key] = value

    def as_dict(self) -> dict[str, Any]:
        return dict(self._data)


class JsonFileStore:
    """Store persisted as a single JSON object on disk.

    The file is re-read on every access so that a CLI invocation and a
    running server observe each other's writes.  A missing or corrupt file
    reads as empty.
    """

    def __init__(self, path: Path | None = None) -> None:
        self.path = Path(path) if path else IDENTITY_FILE

    def _read(self) -> dict[str, Any]:
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, ValueError) as exc:
            logger.warning(f"Failed to read identity store {self.path}: {exc}")
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict[str, Any]) -> None:
        ensure_parents(self.path)
        atomic_write(self.path, json.dumps(data, indent=2, ensure_ascii=False))

    def get(self, key: str, default: Any = None) -> Any:
        return self._read().get(key, default)

    def set(self, key: str, value: Any) -> None:
        self.update({key: value})

    def delete(self, key: str) -> None:
        self.update({key: None})

    def update(self, values: Mapping[str, Any]) -> None:
        data = self._read()
        for key, value in values.items():
            if value is None:
                data.pop(key, None)
            else:
                data[key] = value
        self._write(data)


class IdentityStore:
    """Typed view over the identity record held in a :class:`KeyValueStore`."""

    def __init__(self, backend: KeyValueStore) -> None:
        self.backend = backend

    # -- tokens -------------------------------------------------------------

    def load_tokens(self) -> TokenData | None:
        """Return the stored token bundle, or ``None`` when absent or invalid."""
        raw = self.backend.get(TOKENS_KEY)
        if not raw:
            return None
        try:
            return TokenData.model_validate(raw)
        except ValueError as exc:
            logger.warning(f"Ignoring malformed stored tokens: {exc}")
            return None

    def save_tokens(self, tokens: TokenData) -> None:
        self.backend.set(TOKENS_KEY, tokens.model_dump(exclude_none=True))
        logger.debug("Tokens saved to identity store")

    def clear_tokens(self) -> None:
        self.backend.delete(TOKENS_KEY)
        logger.debug("Tokens removed from identity store")

    # -- card state ---------------------------------------------------------

    @property
    def card_id(self) -> str | None:
        return self.backend.get(CARD_ID_KEY)

    @property
    def playlist_title(self) -> str | None:
        return self.backend.get(PLAYLIST_TITLE_KEY)

    @property
    def content_fingerprint(self) -> str | None:
        return self.backend.get(FINGERPRINT_KEY)

    @property
    def myo_card_id(self) -> str | None:
        return self.backend.get(MYO_CARD_ID_KEY)

    def commit_card(
        self,
        card_id: str,
        title: str,
        fingerprint: str | None = None,
        clear_fingerprint: bool = False,
    ) -> None:
        """Record a successful reconciliation in a single write.

        The fingerprint is only touched when one is supplied, so a refresh
        whose source carried no fingerprint leaves the previous one alone.
        With *clear_fingerprint* it is dropped instead, so that the next
        refresh rebuilds the card even if the race data is unchanged.
        """
        values: dict[str, Any] = {CARD_ID_KEY: card_id, PLAYLIST_TITLE_KEY: title}
        if fingerprint:
            values[FINGERPRINT_KEY] = fingerprint
        elif clear_fingerprint:
            values[FINGERPRINT_KEY] = None
        self.backend.update(values)
        logger.info(f"Stored card id {card_id} with title {title!r}")

    def commit_myo_card(self, card_id: str) -> None:
        self.backend.set(MYO_CARD_ID_KEY, card_id)

    def forget_card(self) -> None:
        """Drop the managed card so that the next refresh creates a new one."""
        self.backend.update(
            {CARD_ID_KEY: None, PLAYLIST_TITLE_KEY: None, FINGERPRINT_KEY: None}
        )
