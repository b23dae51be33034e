from __future__ import annotations

from hashlib import sha256
from pathlib import Path

from assetvault.domain import compute_sha256


def test_compute_sha256_matches_hashlib(tmp_path: Path):
    sample = tmp_path / "sample.bin"
    sample.write_bytes(b"hello world")

    assert compute_sha256(sample) == sha256(b"hello world").hexdigest()


def test_compute_sha256_is_independent_of_chunk_size(tmp_path: Path):
    sample = tmp_path / "large.bin"
    sample.write_bytes(bytes(range(256)) * 40)

    assert compute_sha256(sample, chunk_size=3) == compute_sha256(sample, chunk_size=1 << 20)
