from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from pathlib import Path
from typing import Union

from sqlalchemy import delete, select
from sqlalchemy.orm import selectinload

from assetvault.core.archive import Archive, ResourceList
from assetvault.core.events import EventHub
from assetvault.core.logging import get_logger
from assetvault.core.results import (
    CommitError,
    LookupErrorCode,
    Result,
    SessionNotCompleted,
    error,
    ok,
    ok_if_exists,
)
from assetvault.db.models import ImportSession, IngestPhase, StagedAsset, StagedFileRef, asset_media, new_id
from assetvault.services.asset_service import AssetService
from assetvault.services.import_operation import ImportOperation, ImportStateChanged
from assetvault.services.media_service import MediaFileService


@dataclass(slots=True)
class _ArchiveSessions:
    archive: Archive
    operations: dict[str, ImportOperation] = field(default_factory=dict)


class _CommitRejected(Exception):
    def __init__(self, code: CommitError, locator: str):
        super().__init__(f"{locator}: {code.value}")
        self.code = code
        self.locator = locator


class IngestService:
    """Owns the live import operations of every open archive.

    Persisted import sessions are the source of truth. The in-memory registry
    only tracks the operations this service manages for archives that are
    currently open, and is rebuilt from the database by :meth:`add_archive`.

    Events:
        ``status``: :class:`ImportStateChanged` after every change to a session.
        ``run_completed``: the :class:`ImportOperation` whose ``run()`` returned.
    """

    def __init__(
        self,
        media_service: MediaFileService | None = None,
        asset_service: AssetService | None = None,
    ):
        self.media_service = media_service or MediaFileService()
        self.asset_service = asset_service or AssetService()
        self.events = EventHub("ingest")
        self.logger = get_logger(component="ingest_service")
        self._archives: dict[str, _ArchiveSessions] = {}
        self._tasks: dict[tuple[str, str], asyncio.Task[ImportOperation]] = {}

    async def add_archive(self, archive: Archive) -> list[ImportOperation]:
        """Start managing an open archive and resume its unfinished sessions.

        Runs left over from an earlier :meth:`remove_archive` are awaited first,
        so a session never has two passes in flight.
        """
        state = self._archive_state(archive)

        stale = [
            task
            for (archive_id, session_id), task in self._tasks.items()
            if archive_id == archive.id and session_id not in state.operations
        ]
        if stale:
            await asyncio.wait(stale)

        async with archive.session() as db:
            stmt = select(ImportSession).order_by(ImportSession.created_at, ImportSession.id)
            saved = list((await db.execute(stmt)).scalars().all())

        resumed: list[ImportOperation] = []
        for session in saved:
            if session.id in state.operations:
                continue
            operation = self._open_operation(archive, session)
            self._start(operation)
            resumed.append(operation)

        self.logger.info("archive_added", archive_id=archive.id, sessions=len(resumed))
        return resumed

    def remove_archive(self, archive: Archive) -> None:
        """Stop managing an archive. Persisted sessions stay resumable.

        Running passes are torn down and finish in the background.
        """
        state = self._archives.pop(archive.id, None)
        if state is None:
            return
        for operation in state.operations.values():
            operation.teardown()
        self.logger.info("archive_removed", archive_id=archive.id, sessions=len(state.operations))

    async def begin_session(self, archive: Archive, base_path: Path | str) -> ImportOperation:
        """Create a session importing from ``base_path`` and start it in the background."""
        session = ImportSession(
            id=new_id(),
            base_path=str(Path(base_path).expanduser().resolve()),
            phase=IngestPhase.READ_METADATA,
        )
        async with archive.transaction() as db:
            db.add(session)

        operation = self._open_operation(archive, session)
        self._start(operation)
        self.logger.info("session_started", archive_id=archive.id, session_id=operation.id, base_path=operation.base_path)
        return operation

    def get_session(self, archive: Archive, session_id: str) -> Result[ImportOperation, LookupErrorCode]:
        state = self._archives.get(archive.id)
        return ok_if_exists(state.operations.get(session_id) if state else None)

    def list_sessions(self, archive: Archive) -> ResourceList[ImportOperation]:
        state = self._archives.get(archive.id)
        operations = list(state.operations.values()) if state else []
        return ResourceList(total=len(operations), items=operations)

    async def list_session_assets(
        self,
        archive: Archive,
        session_id: str,
        *,
        page: int = 0,
    ) -> Result[ResourceList[StagedAsset], LookupErrorCode]:
        """List the staged assets of a session with their file references loaded."""
        if not self.get_session(archive, session_id).ok:
            return error(LookupErrorCode.DOES_NOT_EXIST)
        assets = await archive.list(
            StagedAsset,
            StagedAsset.session_id == session_id,
            page=page,
            order_by=StagedAsset.path,
            options=(selectinload(StagedAsset.files),),
        )
        return ok(assets)

    async def wait(self, archive: Archive, session_id: str) -> None:
        """Wait for the in-flight run of a session, if there is one."""
        task = self._tasks.get((archive.id, session_id))
        if task is not None:
            await asyncio.wait({task})

    async def commit_session(
        self,
        archive: Archive,
        session_id: str,
    ) -> Result[list[str], Union[LookupErrorCode, CommitError]]:
        """Promote every staged asset of a completed session into the asset store.

        Returns:
            The ids of the created assets.

        Raises:
            SessionNotCompleted: The session has not reached ``COMPLETED``.
        """
        found = self.get_session(archive, session_id)
        if not found.ok:
            return error(LookupErrorCode.DOES_NOT_EXIST)
        operation = found.value
        if operation.phase is not IngestPhase.COMPLETED or operation.running:
            raise SessionNotCompleted(f"Session {session_id} is {operation.phase.value}; only completed sessions can be committed.")

        created: list[str] = []
        try:
            async with archive.transaction() as db:
                stmt = (
                    select(StagedAsset)
                    .where(StagedAsset.session_id == session_id)
                    .options(selectinload(StagedAsset.files))
                    .order_by(StagedAsset.path)
                )
                for staged in (await db.execute(stmt)).scalars().all():
                    media_ids = [file_ref.media_id for file_ref in staged.files if file_ref.media_id is not None]
                    result = await self.asset_service.create_asset(db, metadata=staged.raw_metadata, media_ids=media_ids)
                    if not result.ok:
                        raise _CommitRejected(result.error, staged.path)
                    created.append(result.value.id)

                await db.execute(delete(ImportSession).where(ImportSession.id == session_id))
        except _CommitRejected as exc:
            self.logger.warning("commit_rejected", session_id=session_id, locator=exc.locator, error=exc.code.value)
            return error(exc.code)

        self._forget(archive, operation)
        self.logger.info("session_committed", session_id=session_id, assets=len(created))
        self._emit_removed(archive, operation)
        self.asset_service.notify_created(archive, created)
        return ok(created)

    async def cancel_session(self, archive: Archive, session_id: str) -> Result[None, LookupErrorCode]:
        """Discard a session, its staged rows, and any media only it referenced."""
        found = self.get_session(archive, session_id)
        if not found.ok:
            return error(LookupErrorCode.DOES_NOT_EXIST)
        operation = found.value

        operation.teardown()
        await self.wait(archive, session_id)

        async with archive.transaction() as db:
            staged_media = select(StagedFileRef.media_id).join(StagedAsset, StagedFileRef.asset_id == StagedAsset.id).where(
                StagedAsset.session_id == session_id,
                StagedFileRef.media_id.is_not(None),
            )
            media_ids = set((await db.execute(staged_media)).scalars().all())

            await db.execute(delete(ImportSession).where(ImportSession.id == session_id))

            still_referenced: set[str] = set()
            if media_ids:
                staged_elsewhere = select(StagedFileRef.media_id).where(StagedFileRef.media_id.in_(media_ids))
                committed = select(asset_media.c.media_id).where(asset_media.c.media_id.in_(media_ids))
                still_referenced.update((await db.execute(staged_elsewhere)).scalars().all())
                still_referenced.update((await db.execute(committed)).scalars().all())

        self._forget(archive, operation)

        orphaned = sorted(media_ids - still_referenced)
        if orphaned:
            await self.media_service.delete_files(archive, orphaned)

        self.logger.info("session_cancelled", session_id=session_id, media_deleted=len(orphaned))
        self._emit_removed(archive, operation)
        return ok()

    async def close(self) -> None:
        for state in list(self._archives.values()):
            self.remove_archive(state.archive)
        pending = list(self._tasks.values())
        if pending:
            await asyncio.wait(pending)

    def _archive_state(self, archive: Archive) -> _ArchiveSessions:
        state = self._archives.get(archive.id)
        if state is None:
            state = self._archives[archive.id] = _ArchiveSessions(archive=archive)
        return state

    def _open_operation(self, archive: Archive, session: ImportSession) -> ImportOperation:
        operation = ImportOperation(archive, session, events=self.events, media_service=self.media_service)
        self._archive_state(archive).operations[operation.id] = operation
        operation.emit_status()
        return operation

    def _start(self, operation: ImportOperation) -> None:
        key = (operation.archive.id, operation.id)
        task = asyncio.create_task(operation.run(), name=f"ingest-{operation.id}")
        self._tasks[key] = task
        task.add_done_callback(lambda finished: self._task_done(key, finished))

    def _task_done(self, key: tuple[str, str], task: asyncio.Task[ImportOperation]) -> None:
        if self._tasks.get(key) is task:
            del self._tasks[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.logger.error("run_failed", archive_id=key[0], session_id=key[1], exc_info=exc)

    def _forget(self, archive: Archive, operation: ImportOperation) -> None:
        operation.teardown()
        state = self._archives.get(archive.id)
        if state is not None:
            state.operations.pop(operation.id, None)

    def _emit_removed(self, archive: Archive, operation: ImportOperation) -> None:
        self.events.emit(
            "status",
            ImportStateChanged(
                archive_id=archive.id,
                session_id=operation.id,
                phase=operation.phase,
                files_read=operation.files_read,
                total_files=operation.total_files,
                affected_asset_ids=[],
            ),
        )


__all__ = ["IngestService"]
