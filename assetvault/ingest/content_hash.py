from __future__ import annotations

from hashlib import sha256
from pathlib import Path

__all__ = ["compute_sha256"]


def compute_sha256(path: Path, *, chunk_size: int = 8 * 1024 * 1024) -> str:
    """Return a hexadecimal SHA256 digest for the file.

    The file is streamed in chunks so memory use is bounded by ``chunk_size``.

    Args:
        path: The path to the file.
        chunk_size: The chunk size to use when reading the file.

    Returns:
        The hexadecimal SHA256 digest.
    """
    digest = sha256()
    with path.open("rb") as handle:
        while chunk := handle.read(chunk_size):
            digest.update(chunk)
    return digest.hexdigest()
