from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError

from assetvault.core.archive import Archive
from assetvault.core.events import EventHub
from assetvault.core.logging import get_logger
from assetvault.db.models import FileImportError, ImportSession, IngestPhase, StagedAsset, StagedFileRef, new_id
from assetvault.ingest.metadata_sources import (
    MalformedMetadataSource,
    MetadataSourceKind,
    MetadataUnit,
    iter_sheet_units,
    load_sheets,
    read_json_document,
    source_kind,
)
from assetvault.services.media_service import MediaFileService

_TRANSITIONS = {
    IngestPhase.READ_METADATA: frozenset({IngestPhase.READ_FILES, IngestPhase.ERROR}),
    IngestPhase.READ_FILES: frozenset({IngestPhase.COMPLETED, IngestPhase.ERROR}),
    IngestPhase.COMPLETED: frozenset(),
    IngestPhase.ERROR: frozenset(),
}


class PhaseTransitionError(RuntimeError):
    """Raised when an ingest session would move backwards or leave a terminal phase."""


@dataclass(slots=True)
class ImportStateChanged:
    """Progress notification for one ingest session."""

    archive_id: str
    session_id: str
    phase: IngestPhase
    files_read: Optional[int] = None
    total_files: Optional[int] = None
    affected_asset_ids: list[str] = field(default_factory=list)


@dataclass(slots=True)
class _DirEntry:
    path: Path
    is_dir: bool
    is_file: bool


class ImportOperation:
    """Drives one ingest session through its phases.

    Import is the first stage of ingest. Metadata documents and spreadsheet
    rows under ``<base_path>/metadata`` are staged as assets, then every media
    file they reference under ``<base_path>/media`` is hashed and copied into
    the archive. Nothing is validated against a collection schema and no
    permanent asset is created; committing the session does that.

    All progress is persisted as it happens, so an interrupted operation
    resumes from its stored phase: staged locators are not staged twice and
    resolved file references are not ingested twice.
    """

    def __init__(
        self,
        archive: Archive,
        session: ImportSession,
        *,
        events: EventHub,
        media_service: MediaFileService,
    ):
        self.archive = archive
        self.events = events
        self.media_service = media_service
        self._id = session.id
        self._base_path = session.base_path
        self._phase = session.phase
        self._total_files: Optional[int] = None
        self._files_read: Optional[int] = None
        self._active = False
        self._running = False
        self.logger = get_logger(component="import_operation", session_id=self._id, archive_id=archive.id)

    @property
    def id(self) -> str:
        return self._id

    @property
    def title(self) -> str:
        return Path(self._base_path).name

    @property
    def base_path(self) -> str:
        return self._base_path

    @property
    def phase(self) -> IngestPhase:
        return self._phase

    @property
    def total_files(self) -> Optional[int]:
        """Number of media files referenced by the session, or None until known."""
        return self._total_files

    @property
    def files_read(self) -> int:
        return self._files_read or 0

    @property
    def active(self) -> bool:
        return self._active

    @property
    def running(self) -> bool:
        return self._running

    @property
    def metadata_path(self) -> Path:
        return Path(self._base_path) / self.archive.settings.metadata_dirname

    @property
    def media_path(self) -> Path:
        return Path(self._base_path) / self.archive.settings.media_dirname

    async def run(self) -> "ImportOperation":
        """Start the operation, or continue it from its persisted phase."""
        if self._running:
            self.logger.warning("run_already_active")
            return self

        self._running = True
        self._active = True
        self.logger.info("run_started", phase=self._phase.value)

        try:
            if self._phase is IngestPhase.READ_METADATA:
                await self.read_metadata()
            if self._phase is IngestPhase.READ_FILES and self._active:
                await self.read_media_files()
        finally:
            self._active = False
            self._running = False
            self.events.emit("run_completed", self)

        self.logger.info("run_finished", phase=self._phase.value)
        return self

    def teardown(self) -> None:
        """Stop at the next loop or I/O boundary, leaving staged state resumable."""
        if self._active:
            self.logger.info("teardown_requested")
        self._active = False

    async def read_metadata(self) -> None:
        """Stage every metadata unit under the metadata directory, then move to ``READ_FILES``."""
        self.emit_status()

        if not await self._read_directory_metadata(self.metadata_path):
            return
        if not self._active:
            return

        await self._advance(IngestPhase.READ_FILES)
        self.emit_status()

    async def read_media_files(self) -> None:
        """Resolve the media files of every asset still in ``READ_FILES``."""
        await self._refresh_counters()
        self.emit_status()

        async with self.archive.session() as db:
            stmt = (
                select(StagedAsset.id)
                .where(StagedAsset.session_id == self._id, StagedAsset.phase == IngestPhase.READ_FILES)
                .order_by(StagedAsset.path)
            )
            asset_ids = list((await db.execute(stmt)).scalars().all())

        for asset_id in asset_ids:
            if not self._active:
                return
            if not await self._read_asset_media_files(asset_id):
                return

            async with self.archive.transaction() as db:
                await db.execute(
                    update(StagedAsset).where(StagedAsset.id == asset_id).values(phase=IngestPhase.COMPLETED)
                )
            self.emit_status([asset_id])

        if not self._active:
            return

        await self._advance(IngestPhase.COMPLETED)
        self.emit_status()
        self.logger.info("media_files_read", total_files=self._total_files)

    def emit_status(self, affected_asset_ids: Optional[list[str]] = None) -> None:
        self.events.emit(
            "status",
            ImportStateChanged(
                archive_id=self.archive.id,
                session_id=self._id,
                phase=self._phase,
                files_read=self._files_read,
                total_files=self._total_files,
                affected_asset_ids=list(affected_asset_ids or []),
            ),
        )

    async def _read_directory_metadata(self, current_path: Path) -> bool:
        """Walk ``current_path`` depth first. Returns False when the walk must stop."""
        if not self._active:
            return False

        try:
            entries = await asyncio.to_thread(_list_directory, current_path)
        except FileNotFoundError:
            self.logger.warning("metadata_directory_missing", path=str(current_path))
            return True
        except OSError as exc:
            self.logger.error("metadata_directory_unreadable", path=str(current_path), error=str(exc))
            await self._advance(IngestPhase.ERROR)
            self.emit_status()
            return False

        for entry in entries:
            if not self._active:
                return False

            if entry.is_dir:
                if not await self._read_directory_metadata(entry.path):
                    return False
                continue
            if not entry.is_file:
                continue

            kind = source_kind(entry.path)
            try:
                if kind is MetadataSourceKind.JSON:
                    await self._read_json_metadata(entry.path)
                elif kind is MetadataSourceKind.SPREADSHEET:
                    await self._read_metadata_sheet(entry.path)
            except MalformedMetadataSource as exc:
                self.logger.error("metadata_source_malformed", path=str(exc.path), error=exc.reason)
                await self._advance(IngestPhase.ERROR)
                self.emit_status()
                return False

        return True

    async def _read_json_metadata(self, json_path: Path) -> None:
        self.logger.info("reading_metadata_file", path=str(json_path))
        unit = await asyncio.to_thread(read_json_document, json_path, self._locator(json_path))
        await self._stage(unit)

    async def _read_metadata_sheet(self, sheet_path: Path) -> None:
        self.logger.info("reading_metadata_sheet", path=str(sheet_path))
        sheets = await asyncio.to_thread(load_sheets, sheet_path)
        for unit in iter_sheet_units(self._locator(sheet_path), sheets):
            if not self._active:
                return
            await self._stage(unit)

    async def _stage(self, unit: MetadataUnit) -> None:
        """Stage one metadata unit unless its locator is already staged for this session."""
        asset_id = new_id()
        try:
            async with self.archive.transaction() as db:
                exists = await db.scalar(
                    select(func.count())
                    .select_from(StagedAsset)
                    .where(StagedAsset.session_id == self._id, StagedAsset.path == unit.locator)
                )
                if exists:
                    return

                asset = StagedAsset(
                    id=asset_id,
                    session_id=self._id,
                    path=unit.locator,
                    raw_metadata=unit.metadata,
                    phase=IngestPhase.READ_FILES,
                )
                asset.files = [
                    StagedFileRef(asset_id=asset_id, path=relative_path, position=position)
                    for position, relative_path in enumerate(unit.files)
                ]
                db.add(asset)
        except IntegrityError:
            # Another pass staged the same locator between our check and insert.
            self.logger.info("asset_already_staged", locator=unit.locator)
            return

        self.logger.info("asset_staged", locator=unit.locator, files=unit.files)
        self.emit_status([asset_id])

    async def _read_asset_media_files(self, asset_id: str) -> bool:
        """Ingest the unresolved files of one asset. Returns False if interrupted."""
        async with self.archive.session() as db:
            stmt = (
                select(StagedFileRef)
                .where(
                    StagedFileRef.asset_id == asset_id,
                    StagedFileRef.media_id.is_(None),
                    StagedFileRef.error.is_(None),
                )
                .order_by(StagedFileRef.position)
            )
            pending = list((await db.execute(stmt)).scalars().all())

        for file_ref in pending:
            if not self._active:
                return False

            media_id: Optional[str] = None
            file_error: Optional[FileImportError] = None
            try:
                source = self._media_source(file_ref.path)
                if source is None:
                    file_error = FileImportError.IO_ERROR
                else:
                    result = await self.media_service.put_file(self.archive, source)
                    if result.ok:
                        media_id = result.value.id
                    else:
                        file_error = result.error
            except Exception:
                self.logger.exception("media_file_failed", path=file_ref.path)
                file_error = FileImportError.UNEXPECTED_ERROR

            async with self.archive.transaction() as db:
                await db.execute(
                    update(StagedFileRef)
                    .where(StagedFileRef.id == file_ref.id)
                    .values(media_id=media_id, error=file_error)
                )

            if file_error is not None:
                self.logger.warning("media_file_rejected", path=file_ref.path, error=file_error.value)
            else:
                self.logger.info("media_file_read", path=file_ref.path, media_id=media_id)

            await self._refresh_counters()
            self.emit_status([asset_id])

        return True

    async def _refresh_counters(self) -> None:
        """Recount total and resolved file references from the staging tables."""
        base = (
            select(func.count(StagedFileRef.id))
            .join(StagedAsset, StagedFileRef.asset_id == StagedAsset.id)
            .where(StagedAsset.session_id == self._id)
        )
        async with self.archive.session() as db:
            total = await db.scalar(base)
            read = await db.scalar(
                base.where(or_(StagedFileRef.media_id.is_not(None), StagedFileRef.error.is_not(None)))
            )
        self._total_files = total or 0
        self._files_read = read or 0

    async def _advance(self, phase: IngestPhase) -> None:
        if phase not in _TRANSITIONS[self._phase]:
            raise PhaseTransitionError(f"{self._phase.value} -> {phase.value}")
        async with self.archive.transaction() as db:
            await db.execute(update(ImportSession).where(ImportSession.id == self._id).values(phase=phase))
        self.logger.info("phase_changed", previous=self._phase.value, phase=phase.value)
        self._phase = phase

    def _locator(self, path: Path) -> str:
        return path.relative_to(self.metadata_path).as_posix()

    def _media_source(self, relative_path: str) -> Optional[Path]:
        parts = PurePosixPath(relative_path.replace("\\", "/")).parts
        if not parts or ".." in parts or PurePosixPath(relative_path).is_absolute():
            self.logger.warning("media_path_outside_import", path=relative_path)
            return None
        return self.media_path.joinpath(*parts)


def _list_directory(path: Path) -> list[_DirEntry]:
    with os.scandir(path) as iterator:
        entries = [
            _DirEntry(
                path=Path(item.path),
                is_dir=item.is_dir(follow_symlinks=False),
                is_file=item.is_file(),
            )
            for item in iterator
        ]
    return sorted(entries, key=lambda entry: entry.path.name)


__all__ = ["ImportOperation", "ImportStateChanged", "PhaseTransitionError"]
