from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from assetvault.core.archive import Archive, ResourceList
from assetvault.core.events import EventHub
from assetvault.core.logging import get_logger
from assetvault.core.results import CommitError, Result, error, ok
from assetvault.db.models import Asset, MediaFile


@dataclass(slots=True)
class AssetsChanged:
    archive_id: str
    created: list[str] = field(default_factory=list)


class AssetService:
    """Permanent asset store.

    Assets are created inside the caller's transaction so a batch of them can
    be committed or rolled back together. Validating metadata against a
    collection schema is not done here; only the shape of the metadata map is
    checked.
    """

    def __init__(self) -> None:
        self.events = EventHub("assets")
        self.logger = get_logger(component="asset_service")

    async def create_asset(
        self,
        db: AsyncSession,
        *,
        metadata: Mapping[str, Any],
        media_ids: Sequence[str] = (),
    ) -> Result[Asset, CommitError]:
        if not isinstance(metadata, Mapping) or not all(isinstance(key, str) for key in metadata):
            return error(CommitError.VALIDATION_ERROR)

        media: list[MediaFile] = []
        unique_ids = list(dict.fromkeys(media_ids))
        if unique_ids:
            records = (await db.execute(select(MediaFile).where(MediaFile.id.in_(unique_ids)))).scalars().all()
            by_id = {record.id: record for record in records}
            if len(by_id) != len(unique_ids):
                self.logger.warning("asset_media_missing", media_ids=unique_ids)
                return error(CommitError.VALIDATION_ERROR)
            media = [by_id[media_id] for media_id in unique_ids]

        asset = Asset(raw_metadata=dict(metadata))
        asset.media = media
        db.add(asset)
        await db.flush()
        return ok(asset)

    async def get_asset(self, archive: Archive, asset_id: str) -> Asset | None:
        async with archive.session() as db:
            stmt = select(Asset).where(Asset.id == asset_id).options(selectinload(Asset.media))
            return (await db.execute(stmt)).scalar_one_or_none()

    async def list_assets(self, archive: Archive, *, page: int = 0) -> ResourceList[Asset]:
        return await archive.list(
            Asset,
            page=page,
            order_by=Asset.created_at,
            options=(selectinload(Asset.media),),
        )

    def notify_created(self, archive: Archive, asset_ids: list[str]) -> None:
        self.events.emit("change", AssetsChanged(archive_id=archive.id, created=list(asset_ids)))


__all__ = ["AssetService", "AssetsChanged"]
