"""Image helpers for display icons."""

from __future__ import annotations

import io

from PIL import Image

ICON_SIZE = 16


def to_icon_png(data: bytes, size: int = ICON_SIZE) -> bytes:
    """Return *data* (any Pillow-readable image) as a ``size``x``size`` RGBA PNG.

    Nearest-neighbour resampling keeps pixel art crisp on the player's
    display.  Raises :class:`OSError` if the bytes are not an image.
    """
    with Image.open(io.BytesIO(data)) as src:
        img = src.convert("RGBA")
    if img.size != (size, size):
        img = img.resize((size, size), Image.Resampling.NEAREST)
    out = io.BytesIO()
    img.save(out, format="PNG")
    return out.getvalue()
