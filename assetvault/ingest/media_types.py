from __future__ import annotations

import mimetypes
from dataclasses import dataclass
from typing import Optional

__all__ = ["MediaType", "ACCEPTED_TYPES", "get_media_type", "extension_for"]

ACCEPTED_TYPES = frozenset(
    {
        "application/pdf",
        "image/png",
        "image/jpeg",
        "application/msword",
        "video/mp4",
        "video/quicktime",
        "application/mxf",
        "application/x-subrip",
        "audio/mpeg",
        "video/x-ms-wmv",
        "audio/wav",
    }
)

# Aliases some platforms register for the accepted types.
_CANONICAL = {
    "audio/x-wav": "audio/wav",
    "audio/wave": "audio/wav",
    "audio/vnd.wave": "audio/wav",
}

_registry = mimetypes.MimeTypes()
for _mime_type, _extension in (
    ("application/mxf", ".mxf"),
    ("application/x-subrip", ".srt"),
    ("video/x-ms-wmv", ".wmv"),
    ("video/quicktime", ".mov"),
    ("audio/wav", ".wav"),
    ("video/mp4", ".mp4"),
    ("audio/mpeg", ".mp3"),
):
    _registry.add_type(_mime_type, _extension)


@dataclass(slots=True, frozen=True)
class MediaType:
    mime_type: str


def get_media_type(filename: str) -> Optional[MediaType]:
    """Resolve the media type of ``filename`` from its extension.

    Returns None when the extension is unknown or the type is not accepted
    by the archive.
    """
    mime_type, _ = _registry.guess_type(filename, strict=False)
    if not mime_type:
        return None
    mime_type = _CANONICAL.get(mime_type, mime_type)
    if mime_type in ACCEPTED_TYPES:
        return MediaType(mime_type=mime_type)
    return None


def extension_for(mime_type: str) -> Optional[str]:
    return _registry.guess_extension(mime_type, strict=False)
