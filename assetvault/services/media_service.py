from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Iterable, Optional, Union

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from assetvault.core.archive import Archive, ResourceList
from assetvault.core.logging import get_logger
from assetvault.core.results import LookupErrorCode, MediaDeleteError, Result, error, ok
from assetvault.db.models import FileImportError, MediaFile, StagedFileRef, asset_media
from assetvault.ingest.content_hash import compute_sha256
from assetvault.ingest.media_types import get_media_type
from assetvault.ingest.renditions import RENDITION_EXTENSION, RenditionError, render_image, supports_rendition

DeleteResult = Result[None, Union[LookupErrorCode, MediaDeleteError, FileImportError]]


class MediaFileService:
    """Hashes, deduplicates and stores media files in an archive's blob store."""

    def __init__(self) -> None:
        self.logger = get_logger(component="media_service")

    async def put_file(self, archive: Archive, source: Path | str) -> Result[MediaFile, FileImportError]:
        """Persist a media file in the archive.

        Byte-identical sources collapse onto one record: when the content hash
        is already known the existing record is returned and nothing is copied.
        Images also get a PNG rendition stored beside their blob.

        Args:
            archive: Archive to store the file in.
            source: Path to the source file.

        Returns:
            The media record, or ``UNSUPPORTED_MEDIA_TYPE`` / ``IO_ERROR``.
        """
        source = Path(source)
        media_type = get_media_type(source.name)
        if media_type is None:
            return error(FileImportError.UNSUPPORTED_MEDIA_TYPE)

        try:
            sha256 = await asyncio.to_thread(
                compute_sha256,
                source,
                chunk_size=archive.settings.hash_chunk_size,
            )
        except OSError as exc:
            self.logger.warning("media_read_failed", path=str(source), error=str(exc))
            return error(FileImportError.IO_ERROR)

        existing = await self._lookup(archive, sha256)
        if existing is not None:
            self.logger.debug("media_deduplicated", path=str(source), media_id=existing.id)
            return ok(existing)

        try:
            blob_path = await asyncio.to_thread(archive.blobs.put, source, sha256)
        except OSError as exc:
            self.logger.warning("media_copy_failed", path=str(source), error=str(exc))
            return error(FileImportError.IO_ERROR)

        if supports_rendition(media_type.mime_type):
            await self._create_image_rendition(archive, blob_path, sha256)

        record = MediaFile(sha256=sha256, mime_type=media_type.mime_type)
        try:
            async with archive.transaction() as db:
                db.add(record)
        except IntegrityError:
            # A concurrent put stored the same content first.
            existing = await self._lookup(archive, sha256)
            if existing is None:
                raise
            self.logger.debug("media_deduplicated", path=str(source), media_id=existing.id)
            return ok(existing)

        self.logger.info("media_stored", path=str(source), media_id=record.id, sha256=sha256)
        return ok(record)

    async def delete_files(self, archive: Archive, ids: Iterable[str]) -> list[DeleteResult]:
        """Delete media records together with their blobs and renditions.

        Records still attached to a committed asset or a staged file reference
        are kept and reported as ``IN_USE``. The remaining records are removed
        in one transaction, and their blobs are unlinked after it commits.

        Args:
            archive: Archive holding the media.
            ids: Ids of the records to delete.

        Returns:
            One result per requested id, in request order.
        """
        requested = list(dict.fromkeys(ids))
        if not requested:
            return []

        async with archive.transaction() as db:
            records = (await db.execute(select(MediaFile).where(MediaFile.id.in_(requested)))).scalars().all()
            found = {record.id: record for record in records}

            in_use: set[str] = set()
            if found:
                committed = select(asset_media.c.media_id).where(asset_media.c.media_id.in_(list(found)))
                staged = select(StagedFileRef.media_id).where(StagedFileRef.media_id.in_(list(found)))
                in_use.update((await db.execute(committed)).scalars().all())
                in_use.update((await db.execute(staged)).scalars().all())

            removable = [record for media_id, record in found.items() if media_id not in in_use]
            if removable:
                await db.execute(delete(MediaFile).where(MediaFile.id.in_([record.id for record in removable])))

        failed: set[str] = set()
        for record in removable:
            try:
                await asyncio.to_thread(archive.blobs.delete, record.sha256)
            except OSError as exc:
                self.logger.warning("blob_delete_failed", sha256=record.sha256, error=str(exc))
                failed.add(record.id)

        results: list[DeleteResult] = []
        for media_id in requested:
            if media_id not in found:
                results.append(error(LookupErrorCode.DOES_NOT_EXIST))
            elif media_id in in_use:
                results.append(error(MediaDeleteError.IN_USE))
            elif media_id in failed:
                results.append(error(FileImportError.IO_ERROR))
            else:
                results.append(ok())
        self.logger.info("media_deleted", count=len(removable), in_use=len(in_use))
        return results

    async def list_media(self, archive: Archive, *, page: int = 0) -> ResourceList[MediaFile]:
        return await archive.list(MediaFile, page=page, order_by=MediaFile.created_at)

    def get_media_path(self, archive: Archive, record: MediaFile) -> Path:
        return archive.blobs.path_for(record.sha256)

    def get_rendition_path(self, archive: Archive, record: MediaFile) -> Optional[Path]:
        """Return the stored rendition of ``record``, or None when it has none."""
        path = archive.blobs.rendition_path_for(record.sha256, RENDITION_EXTENSION)
        return path if path.is_file() else None

    def get_rendition_uri(self, archive: Archive, record: MediaFile) -> Optional[str]:
        """Return a ``media://`` uri, relative to the blob directory, for viewing ``record``."""
        path = self.get_rendition_path(archive, record)
        if path is None:
            return None
        return "media://" + path.relative_to(archive.blob_path).as_posix()

    async def _create_image_rendition(self, archive: Archive, blob_path: Path, sha256: str) -> None:
        target = archive.blobs.rendition_path_for(sha256, RENDITION_EXTENSION)
        try:
            await asyncio.to_thread(render_image, blob_path, target, width=archive.settings.rendition_width)
        except RenditionError as exc:
            self.logger.warning("media_rendition_failed", sha256=sha256, error=str(exc))

    async def _lookup(self, archive: Archive, sha256: str) -> MediaFile | None:
        async with archive.session() as db:
            return await self._find_by_hash(db, sha256)

    @staticmethod
    async def _find_by_hash(db: AsyncSession, sha256: str) -> MediaFile | None:
        stmt = select(MediaFile).where(MediaFile.sha256 == sha256).limit(1)
        return (await db.execute(stmt)).scalar_one_or_none()


__all__ = ["DeleteResult", "MediaFileService"]
