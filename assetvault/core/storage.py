from __future__ import annotations

import os
import shutil
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable


@dataclass(slots=True)
class BlobStat:
    sha256: str
    size_bytes: int


class BlobStore:
    """Content-addressed blob storage rooted at an archive's blob directory.

    Blobs live at ``<root>/<sha[:2]>/<sha>``. Writes go through a temporary
    file in the target directory followed by an atomic rename, so a blob is
    either absent or complete. Writing a hash that already exists is a no-op.
    """

    def __init__(self, base_path: Path):
        self.base_path = base_path
        self.base_path.mkdir(parents=True, exist_ok=True)

    def path_for(self, sha256: str) -> Path:
        if len(sha256) < 3 or not all(char in "0123456789abcdef" for char in sha256):
            raise ValueError(f"Not a sha256 hex digest: {sha256!r}")
        return self.base_path / sha256[:2] / sha256

    def rendition_path_for(self, sha256: str, extension: str) -> Path:
        return self.path_for(sha256).with_name(f"{sha256}.rendition.{extension}")

    def exists(self, sha256: str) -> bool:
        return self.path_for(sha256).is_file()

    def stat(self, sha256: str) -> BlobStat:
        path = self.path_for(sha256)
        if not path.exists():
            raise FileNotFoundError(sha256)
        return BlobStat(sha256=sha256, size_bytes=path.stat().st_size)

    def put(self, source: Path, sha256: str) -> Path:
        target = self.path_for(sha256)
        if target.exists():
            return target
        target.parent.mkdir(parents=True, exist_ok=True)
        handle, temp_name = tempfile.mkstemp(dir=target.parent, prefix=".incoming-")
        os.close(handle)
        try:
            shutil.copyfile(source, temp_name)
            os.replace(temp_name, target)
        except BaseException:
            Path(temp_name).unlink(missing_ok=True)
            raise
        return target

    def delete(self, sha256: str) -> bool:
        """Remove a blob together with its renditions. Returns False if the blob was absent."""
        path = self.path_for(sha256)
        for rendition in path.parent.glob(f"{sha256}.rendition.*"):
            rendition.unlink(missing_ok=True)
        try:
            path.unlink()
        except FileNotFoundError:
            return False
        try:
            path.parent.rmdir()
        except OSError:
            pass  # shard directory still holds other blobs
        return True

    def list(self) -> Iterable[str]:
        if not self.base_path.exists():
            return []
        return sorted(p.name for p in self.base_path.glob("??/*") if p.is_file() and "." not in p.name)


__all__ = ["BlobStore", "BlobStat"]
