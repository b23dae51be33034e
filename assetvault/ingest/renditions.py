from __future__ import annotations

import os
import tempfile
from pathlib import Path

from PIL import Image

__all__ = ["RENDITION_EXTENSION", "RenditionError", "render_image", "supports_rendition"]

RENDITION_EXTENSION = "png"

_RENDERABLE_TYPES = frozenset({"image/png", "image/jpeg"})
_SAVEABLE_MODES = frozenset({"1", "L", "LA", "P", "RGB", "RGBA"})


class RenditionError(Exception):
    """Raised when a source image cannot be decoded or its rendition cannot be written."""


def supports_rendition(mime_type: str) -> bool:
    return mime_type in _RENDERABLE_TYPES


def render_image(source: Path, target: Path, *, width: int) -> Path:
    """Write a PNG rendition of ``source`` scaled down to ``width`` pixels wide.

    Images that are already narrower keep their size. The rendition goes to a
    temporary file beside ``target`` and is renamed into place.

    Args:
        source: The image to render.
        target: Destination path of the rendition.
        width: Maximum width of the rendition in pixels.

    Returns:
        The rendition path.
    """
    target.parent.mkdir(parents=True, exist_ok=True)
    try:
        with Image.open(source) as image:
            rendition = image
            if rendition.width > width:
                height = max(1, round(rendition.height * width / rendition.width))
                rendition = rendition.resize((width, height), Image.Resampling.LANCZOS)
            if rendition.mode not in _SAVEABLE_MODES:
                rendition = rendition.convert("RGBA")

            handle, temp_name = tempfile.mkstemp(dir=target.parent, prefix=".incoming-", suffix=f".{RENDITION_EXTENSION}")
            os.close(handle)
            try:
                rendition.save(temp_name, format="PNG")
                os.replace(temp_name, target)
            except BaseException:
                Path(temp_name).unlink(missing_ok=True)
                raise
    except (OSError, ValueError, Image.DecompressionBombError) as exc:
        raise RenditionError(f"{source}: {exc}") from exc
    return target
