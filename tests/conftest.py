from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Any, Awaitable, Callable

import pytest
from sqlalchemy import func, select

from assetvault.core.archive import Archive
from assetvault.core.config import get_settings
from assetvault.services.ingest_service import IngestService

PNG_ONE = b"\x89PNG\r\n\x1a\n" + b"first-image-payload"
PNG_TWO = b"\x89PNG\r\n\x1a\n" + b"second-image-payload"


def pytest_configure(config):
    config.addinivalue_line(
        "markers",
        "no_default_env: disable the default assetvault environment bootstrap fixture for tests that manage their own .env",
    )


@pytest.fixture(autouse=True)
def configure_environment(request, monkeypatch, tmp_path):
    if request.node.get_closest_marker("no_default_env"):
        get_settings.cache_clear()
        yield
        get_settings.cache_clear()
        return

    monkeypatch.setenv("ASSETVAULT_ENVIRONMENT", "test")
    monkeypatch.setenv("ASSETVAULT_ENV", "test")
    monkeypatch.setenv("ASSETVAULT_LOG_LEVEL", "debug")
    monkeypatch.setenv("ASSETVAULT_ARCHIVE_ROOT", str(tmp_path / "archive"))
    monkeypatch.setenv("ASSETVAULT_HASH_CHUNK_SIZE", "4")

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


def write_import_dir(
    root: Path,
    *,
    documents: dict[str, Any] | None = None,
    media: dict[str, bytes] | None = None,
) -> Path:
    """Lay out ``root/metadata`` and ``root/media`` for an import.

    Document values that are dicts are written as JSON; strings are written verbatim.
    """
    (root / "metadata").mkdir(parents=True, exist_ok=True)
    (root / "media").mkdir(parents=True, exist_ok=True)
    for relative, content in (documents or {}).items():
        target = root / "metadata" / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content if isinstance(content, str) else json.dumps(content), encoding="utf-8")
    for relative, payload in (media or {}).items():
        target = root / "media" / relative
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(payload)
    return root


@pytest.fixture()
def basic_import(tmp_path) -> Path:
    return write_import_dir(
        tmp_path / "basic-fixture",
        documents={
            "asset1.json": {"metadata": {"property": "value1"}, "files": ["image1.png"]},
            "nested/asset2.json": {"metadata": {"property": "value2"}, "files": ["image2.png"]},
        },
        media={"image1.png": PNG_ONE, "image2.png": PNG_TWO},
    )


Scenario = Callable[[Archive, IngestService], Awaitable[Any]]


@pytest.fixture()
def run_scenario(tmp_path) -> Callable[[Scenario], Any]:
    """Run a coroutine against a freshly opened archive and ingest service on one event loop."""

    def _run(scenario: Scenario, *, location: Path | None = None) -> Any:
        async def _runner() -> Any:
            archive = await Archive.open(location or tmp_path / "archive")
            service = IngestService()
            try:
                return await scenario(archive, service)
            finally:
                await service.close()
                await archive.close()

        return asyncio.run(_runner())

    return _run


async def count_rows(archive: Archive, model: Any, *filters: Any) -> int:
    async with archive.session() as db:
        return await db.scalar(select(func.count()).select_from(model).where(*filters)) or 0


async def begin_and_wait(service: IngestService, archive: Archive, base_path: Path):
    operation = await service.begin_session(archive, base_path)
    await service.wait(archive, operation.id)
    return operation
