"""Persistence layer: identity record, snapshot cache, settings and paths."""

from yoto_f1.storage.cache import SnapshotCache
from yoto_f1.storage.config import Settings, get_settings
from yoto_f1.storage.identity import IdentityStore, JsonFileStore, KeyValueStore, MemoryStore

__all__ = [
    "IdentityStore",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "Settings",
    "SnapshotCache",
    "get_settings",
]
