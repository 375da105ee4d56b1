"""Cross-platform path management for yoto-f1.

All persistent file and directory locations are defined here so that
every module in the package can import a single, canonical set of paths.
Directory creation is deferred to helpers rather than happening at import
time, keeping imports side-effect-free.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Union

from platformdirs import user_cache_dir, user_config_dir, user_log_dir

# ---------------------------------------------------------------------------
# Application identifier
# ---------------------------------------------------------------------------

APP_NAME = "yoto-f1"

# ---------------------------------------------------------------------------
# Base directories
# ---------------------------------------------------------------------------

CONFIG_DIR: Path = Path(user_config_dir(APP_NAME))
CACHE_DIR: Path = Path(user_cache_dir(APP_NAME))
LOG_DIR: Path = Path(user_log_dir(APP_NAME))

# ---------------------------------------------------------------------------
# Standard file locations
# ---------------------------------------------------------------------------

IDENTITY_FILE = CONFIG_DIR / "identity.json"
SNAPSHOT_CACHE_FILE = CACHE_DIR / "race_snapshot.json"
LOG_FILE = LOG_DIR / "yoto-f1.log"

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def ensure_parents(path: Path) -> Path:
    """Create all parent directories for *path* if they do not exist.

    Returns *path* unchanged so the call can be used inline.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass
    return path


def atomic_write(
    path: Path,
    data: Union[str, bytes],
    text_mode: bool = True,
) -> None:
    """Write *data* to *path* atomically (write-to-tmp then replace).

    When *text_mode* is ``True`` (the default) the file is opened in
    text mode; pass ``False`` for binary payloads.
    """
    tmp = path.with_suffix(path.suffix + ".tmp")
    ensure_parents(tmp)

    mode = "w" if text_mode else "wb"
    with tmp.open(mode) as fh:
        if text_mode:
            fh.write(data.decode() if isinstance(data, bytes) else data)
        else:
            fh.write(data.encode() if isinstance(data, str) else data)

    try:
        os.replace(tmp, path)
    finally:
        # os.replace leaves the tmp file behind only when it fails.
        if tmp.exists():
            try:
                tmp.unlink()
            except OSError:
                pass
