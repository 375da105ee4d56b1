"""Disk-backed, TTL-aware cache for race weekend snapshots.

Used when race data is fetched straight from OpenF1 rather than from the
edge worker, so that repeated refreshes within the TTL do not hit the
rate-limited public API.
"""

from __future__ import annotations

import json
import time
from pathlib import Path
from typing import Any

from loguru import logger

from .paths import SNAPSHOT_CACHE_FILE, atomic_write, ensure_parents


class SnapshotCache:
    """Single-entry JSON cache with a maximum age.

    Parameters
    ----------
    path:
        File backing the cache.  Defaults to :data:`SNAPSHOT_CACHE_FILE`.
    max_age_seconds:
        Entries older than this are ignored.  ``0`` disables the cache.
    """

    def __init__(self, path: Path | None = None, max_age_seconds: int = 86400) -> None:
        self.path = Path(path) if path else SNAPSHOT_CACHE_FILE
        self.max_age_seconds = max_age_seconds

    @property
    def enabled(self) -> bool:
        return self.max_age_seconds > 0

    def get(self, now: float | None = None) -> dict[str, Any] | None:
        """Return the cached payload, or ``None`` on miss, expiry or disabled."""
        if not self.enabled or not self.path.exists():
            return None
        try:
            entry = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError, ValueError):
            return None
        if not isinstance(entry, dict) or "payload" not in entry:
            return None
        age = (now if now is not None else time.time()) - entry.get("timestamp", 0)
        if age > self.max_age_seconds:
            logger.debug(f"Snapshot cache expired ({age:.0f}s old)")
            return None
        return entry["payload"]

    def put(self, payload: dict[str, Any], now: float | None = None) -> None:
        """Store *payload*; the caller's dict is not modified."""
        if not self.enabled:
            return
        entry = {"timestamp": now if now is not None else time.time(), "payload": payload}
        try:
            ensure_parents(self.path)
            atomic_write(self.path, json.dumps(entry, ensure_ascii=False, default=str))
        except OSError as exc:
            logger.warning(f"Failed to save snapshot cache: {exc}")

    def clear(self) -> None:
        try:
            if self.path.exists():
                self.path.unlink()
        except OSError as exc:
            logger.warning(f"Failed to remove snapshot cache: {exc}")
