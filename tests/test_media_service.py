from __future__ import annotations

import asyncio
from hashlib import sha256
from pathlib import Path

import pytest
from PIL import Image
from sqlalchemy.exc import IntegrityError

from assetvault.core.results import LookupErrorCode, MediaDeleteError
from assetvault.db.models import FileImportError, MediaFile, StagedFileRef

from conftest import PNG_ONE, PNG_TWO, begin_and_wait, count_rows


def _write_image(path: Path, size: tuple[int, int], image_format: str = "PNG") -> Path:
    Image.new("RGB", size, (200, 30, 30)).save(path, format=image_format)
    return path


def test_put_file_stores_blob_and_record(tmp_path: Path, run_scenario):
    source = tmp_path / "image1.png"
    source.write_bytes(PNG_ONE)

    async def scenario(archive, service):
        media = service.media_service
        result = await media.put_file(archive, source)
        assert result.ok
        record = result.value
        assert record.sha256 == sha256(PNG_ONE).hexdigest()
        assert record.mime_type == "image/png"

        blob_path = media.get_media_path(archive, record)
        assert blob_path == archive.blob_path / record.sha256[:2] / record.sha256
        assert blob_path.read_bytes() == PNG_ONE

        listing = await media.list_media(archive)
        assert listing.total == 1
        assert [item.id for item in listing.items] == [record.id]

    run_scenario(scenario)


def test_identical_content_is_deduplicated(tmp_path: Path, run_scenario):
    first = tmp_path / "a.png"
    second = tmp_path / "copy-of-a.jpg"
    first.write_bytes(PNG_ONE)
    second.write_bytes(PNG_ONE)

    async def scenario(archive, service):
        media = service.media_service
        a = await media.put_file(archive, first)
        b = await media.put_file(archive, second)
        assert a.ok and b.ok
        assert a.value.id == b.value.id
        assert (await media.list_media(archive)).total == 1
        assert list(archive.blobs.list()) == [sha256(PNG_ONE).hexdigest()]

    run_scenario(scenario)


def test_put_file_rejects_unsupported_type(tmp_path: Path, run_scenario):
    source = tmp_path / "notes.txt"
    source.write_text("plain text")

    async def scenario(archive, service):
        result = await service.media_service.put_file(archive, source)
        assert result.error is FileImportError.UNSUPPORTED_MEDIA_TYPE
        assert list(archive.blobs.list()) == []

    run_scenario(scenario)


def test_put_file_missing_source_is_io_error(tmp_path: Path, run_scenario):
    async def scenario(archive, service):
        result = await service.media_service.put_file(archive, tmp_path / "missing.png")
        assert result.error is FileImportError.IO_ERROR
        assert (await service.media_service.list_media(archive)).total == 0

    run_scenario(scenario)


def test_failed_copy_creates_no_record(tmp_path: Path, run_scenario):
    source = tmp_path / "image1.png"
    source.write_bytes(PNG_ONE)

    async def scenario(archive, service):
        def failing_put(path, digest):
            raise OSError("disk full")

        archive.blobs.put = failing_put
        result = await service.media_service.put_file(archive, source)
        assert result.error is FileImportError.IO_ERROR
        assert (await service.media_service.list_media(archive)).total == 0

    run_scenario(scenario)


def test_delete_files_reports_per_id_in_request_order(tmp_path: Path, run_scenario):
    (tmp_path / "a.png").write_bytes(PNG_ONE)
    (tmp_path / "b.png").write_bytes(PNG_TWO)

    async def scenario(archive, service):
        media = service.media_service
        a = (await media.put_file(archive, tmp_path / "a.png")).unwrap()
        b = (await media.put_file(archive, tmp_path / "b.png")).unwrap()

        results = await media.delete_files(archive, [b.id, "does-not-exist", a.id])

        assert [result.ok for result in results] == [True, False, True]
        assert results[1].error is LookupErrorCode.DOES_NOT_EXIST
        assert list(archive.blobs.list()) == []
        assert (await media.list_media(archive)).total == 0
        assert await media.delete_files(archive, []) == []

    run_scenario(scenario)


def test_failed_unlink_is_io_error(tmp_path: Path, run_scenario):
    (tmp_path / "a.png").write_bytes(PNG_ONE)

    async def scenario(archive, service):
        media = service.media_service
        record = (await media.put_file(archive, tmp_path / "a.png")).unwrap()

        def failing_delete(digest):
            raise PermissionError("read-only filesystem")

        archive.blobs.delete = failing_delete
        results = await media.delete_files(archive, [record.id])

        assert results[0].error is FileImportError.IO_ERROR
        assert await archive.get(MediaFile, record.id) is None

    run_scenario(scenario)


def test_concurrent_puts_of_identical_content_share_one_record(tmp_path: Path, run_scenario):
    sources = []
    for name in ("a.png", "b.png", "c.png"):
        (tmp_path / name).write_bytes(PNG_ONE)
        sources.append(tmp_path / name)

    async def scenario(archive, service):
        media = service.media_service
        results = await asyncio.gather(*(media.put_file(archive, source) for source in sources))

        assert all(result.ok for result in results)
        assert len({result.value.id for result in results}) == 1
        assert await count_rows(archive, MediaFile) == 1
        assert list(archive.blobs.list()) == [sha256(PNG_ONE).hexdigest()]

    run_scenario(scenario)


def test_put_that_loses_the_insert_race_returns_the_stored_record(tmp_path: Path, run_scenario):
    (tmp_path / "a.png").write_bytes(PNG_ONE)
    (tmp_path / "b.png").write_bytes(PNG_ONE)

    async def scenario(archive, service):
        media = service.media_service
        original_lookup = media._lookup
        misses: list[str] = []

        async def stale_lookup(archive_, digest):
            # Both callers miss the pre-insert lookup.
            if len(misses) < 2:
                misses.append(digest)
                return None
            return await original_lookup(archive_, digest)

        media._lookup = stale_lookup
        a, b = await asyncio.gather(
            media.put_file(archive, tmp_path / "a.png"),
            media.put_file(archive, tmp_path / "b.png"),
        )

        assert len(misses) == 2
        assert a.ok and b.ok
        assert a.value.id == b.value.id
        assert await count_rows(archive, MediaFile) == 1

    run_scenario(scenario)


def test_database_rejects_a_second_record_for_a_hash(tmp_path: Path, run_scenario):
    (tmp_path / "a.png").write_bytes(PNG_ONE)

    async def scenario(archive, service):
        record = (await service.media_service.put_file(archive, tmp_path / "a.png")).unwrap()
        with pytest.raises(IntegrityError):
            async with archive.transaction() as db:
                db.add(MediaFile(sha256=record.sha256, mime_type=record.mime_type))
        assert await count_rows(archive, MediaFile) == 1

    run_scenario(scenario)


def test_delete_files_keeps_media_of_committed_assets(basic_import: Path, run_scenario):
    async def scenario(archive, service):
        operation = await begin_and_wait(service, archive, basic_import)
        (await service.commit_session(archive, operation.id)).unwrap()
        media_ids = [record.id for record in (await service.media_service.list_media(archive)).items]

        results = await service.media_service.delete_files(archive, [media_ids[0], "missing"])

        assert results[0].error is MediaDeleteError.IN_USE
        assert results[1].error is LookupErrorCode.DOES_NOT_EXIST
        assert await count_rows(archive, MediaFile) == 2
        assert len(list(archive.blobs.list())) == 2

    run_scenario(scenario)


def test_delete_files_keeps_media_staged_by_a_session(basic_import: Path, tmp_path: Path, run_scenario):
    loose_source = tmp_path / "loose.png"
    loose_source.write_bytes(PNG_ONE + b"-loose")

    async def scenario(archive, service):
        media = service.media_service
        await begin_and_wait(service, archive, basic_import)
        staged_ids = [record.id for record in (await media.list_media(archive)).items]
        loose = (await media.put_file(archive, loose_source)).unwrap()

        results = await media.delete_files(archive, [staged_ids[0], loose.id])

        assert results[0].error is MediaDeleteError.IN_USE
        assert results[1].ok
        assert await count_rows(archive, StagedFileRef, StagedFileRef.media_id.is_not(None)) == 2
        assert not archive.blobs.exists(loose.sha256)

    run_scenario(scenario)


def test_put_file_renders_wide_images(tmp_path: Path, run_scenario):
    source = _write_image(tmp_path / "wide.png", (2000, 1000))

    async def scenario(archive, service):
        media = service.media_service
        record = (await media.put_file(archive, source)).unwrap()

        rendition = media.get_rendition_path(archive, record)
        assert rendition == archive.blob_path / record.sha256[:2] / f"{record.sha256}.rendition.png"
        with Image.open(rendition) as image:
            assert image.format == "PNG"
            assert image.size == (1280, 640)
        assert media.get_rendition_uri(archive, record) == f"media://{record.sha256[:2]}/{record.sha256}.rendition.png"
        assert list(archive.blobs.list()) == [record.sha256]

    run_scenario(scenario)


def test_narrow_images_keep_their_size(tmp_path: Path, run_scenario):
    source = _write_image(tmp_path / "photo.jpg", (300, 200), image_format="JPEG")

    async def scenario(archive, service):
        media = service.media_service
        record = (await media.put_file(archive, source)).unwrap()
        assert record.mime_type == "image/jpeg"
        with Image.open(media.get_rendition_path(archive, record)) as image:
            assert (image.format, image.size) == ("PNG", (300, 200))

    run_scenario(scenario)


def test_files_without_a_rendition(tmp_path: Path, run_scenario):
    broken = tmp_path / "broken.png"
    broken.write_bytes(PNG_ONE)
    clip = tmp_path / "clip.mp4"
    clip.write_bytes(b"not really a video")

    async def scenario(archive, service):
        media = service.media_service
        for source in (broken, clip):
            record = (await media.put_file(archive, source)).unwrap()
            assert media.get_rendition_path(archive, record) is None
            assert media.get_rendition_uri(archive, record) is None
        assert (await media.list_media(archive)).total == 2

    run_scenario(scenario)


def test_delete_files_removes_the_rendition(tmp_path: Path, run_scenario):
    source = _write_image(tmp_path / "wide.png", (1600, 900))

    async def scenario(archive, service):
        media = service.media_service
        record = (await media.put_file(archive, source)).unwrap()
        rendition = media.get_rendition_path(archive, record)
        assert rendition is not None

        assert [result.ok for result in await media.delete_files(archive, [record.id])] == [True]
        assert not rendition.exists()
        assert not rendition.parent.exists()

    run_scenario(scenario)
