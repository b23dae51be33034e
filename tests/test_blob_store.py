from __future__ import annotations

from hashlib import sha256
from pathlib import Path

import pytest

from assetvault.core.storage import BlobStore


def _source(tmp_path: Path, name: str, payload: bytes) -> tuple[Path, str]:
    path = tmp_path / name
    path.write_bytes(payload)
    return path, sha256(payload).hexdigest()


def test_put_writes_sharded_blob(tmp_path: Path):
    store = BlobStore(tmp_path / "blob")
    source, digest = _source(tmp_path, "a.png", b"payload")

    target = store.put(source, digest)

    assert target == tmp_path / "blob" / digest[:2] / digest
    assert target.read_bytes() == b"payload"
    assert store.exists(digest)
    assert store.stat(digest).size_bytes == len(b"payload")
    assert list(store.list()) == [digest]
    assert not list(target.parent.glob(".incoming-*"))


def test_put_existing_hash_is_noop(tmp_path: Path):
    store = BlobStore(tmp_path / "blob")
    source, digest = _source(tmp_path, "a.png", b"payload")
    target = store.put(source, digest)
    mtime = target.stat().st_mtime_ns

    other = tmp_path / "b.png"
    other.write_bytes(b"different bytes")
    assert store.put(other, digest) == target
    assert target.read_bytes() == b"payload"
    assert target.stat().st_mtime_ns == mtime


def test_put_missing_source_leaves_no_partial_blob(tmp_path: Path):
    store = BlobStore(tmp_path / "blob")
    digest = sha256(b"never written").hexdigest()

    with pytest.raises(FileNotFoundError):
        store.put(tmp_path / "missing.png", digest)

    assert not store.exists(digest)
    assert list(store.list()) == []
    assert not list((tmp_path / "blob").rglob(".incoming-*"))


def test_delete_removes_blob_and_empty_shard(tmp_path: Path):
    store = BlobStore(tmp_path / "blob")
    source, digest = _source(tmp_path, "a.png", b"payload")
    target = store.put(source, digest)

    assert store.delete(digest) is True
    assert not target.exists()
    assert not target.parent.exists()
    assert store.delete(digest) is False


def test_stat_missing_blob_raises(tmp_path: Path):
    store = BlobStore(tmp_path / "blob")
    with pytest.raises(FileNotFoundError):
        store.stat(sha256(b"absent").hexdigest())


@pytest.mark.parametrize("digest", ["", "ab", "../../etc/passwd", "ABCDEF0123", "zz" * 32])
def test_path_for_rejects_non_hex_digests(tmp_path: Path, digest):
    store = BlobStore(tmp_path / "blob")
    with pytest.raises(ValueError):
        store.path_for(digest)


def test_renditions_are_not_listed_and_go_with_their_blob(tmp_path: Path):
    store = BlobStore(tmp_path / "blob")
    source, digest = _source(tmp_path, "a.png", b"payload")
    store.put(source, digest)
    rendition = store.rendition_path_for(digest, "png")
    rendition.write_bytes(b"rendition")

    assert rendition == tmp_path / "blob" / digest[:2] / f"{digest}.rendition.png"
    assert list(store.list()) == [digest]

    assert store.delete(digest) is True
    assert not rendition.exists()
    assert not rendition.parent.exists()
