"""Loguru sink configuration shared by the CLI and the HTTP server."""

from __future__ import annotations

import sys
from pathlib import Path

from loguru import logger

from .storage.paths import LOG_FILE, ensure_parents


def configure_logging(debug: bool = False, log_file: Path | None | bool = None) -> None:
    """Replace the default handler with a stderr sink and a rotating file sink.

    *log_file* defaults to :data:`LOG_FILE`; pass ``False`` to log to stderr
    only.
    """
    logger.remove()  # Remove default handler
    logger.add(
        sys.stderr,
        level="DEBUG" if debug else "INFO",
        format="{time:HH:mm:ss} {level} {message}",
    )
    if log_file is False:
        return
    path = Path(log_file) if log_file else LOG_FILE
    ensure_parents(path)
    logger.add(
        path,
        level="DEBUG",
        format="{time} {level} {name}:{line} {message}",
        rotation="1 MB",
        retention=5,
    )
