from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from assetvault.db.models import Asset, FileImportError, IngestPhase, StagedAsset
from assetvault.services.import_operation import ImportOperation


class IngestSessionView(BaseModel):
    id: str
    title: str = Field(..., description="Basename of the import base path.")
    base_path: str
    phase: IngestPhase
    total_files: Optional[int] = Field(default=None, description="Unknown until file resolution starts.")
    files_read: int = 0
    active: bool = False

    @classmethod
    def from_operation(cls, operation: ImportOperation) -> "IngestSessionView":
        return cls(
            id=operation.id,
            title=operation.title,
            base_path=operation.base_path,
            phase=operation.phase,
            total_files=operation.total_files,
            files_read=operation.files_read,
            active=operation.active,
        )


class StagedFileView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    path: str
    media_id: Optional[str] = None
    error: Optional[FileImportError] = None


class StagedAssetView(BaseModel):
    id: str
    locator: str = Field(..., description="Metadata path, or path:sheet,row for spreadsheet rows.")
    phase: IngestPhase
    metadata: Dict[str, Any]
    files: List[StagedFileView] = Field(default_factory=list)

    @classmethod
    def from_staged(cls, staged: StagedAsset) -> "StagedAssetView":
        return cls(
            id=staged.id,
            locator=staged.path,
            phase=staged.phase,
            metadata=staged.raw_metadata,
            files=[StagedFileView.model_validate(file_ref) for file_ref in staged.files],
        )


class MediaFileView(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sha256: str
    mime_type: str


class StoredMediaView(MediaFileView):
    extension: Optional[str] = None
    size_bytes: Optional[int] = Field(default=None, description="None when the blob is missing from the archive.")
    rendition_uri: Optional[str] = None


class AssetView(BaseModel):
    id: str
    metadata: Dict[str, Any]
    media: List[MediaFileView] = Field(default_factory=list)

    @classmethod
    def from_asset(cls, asset: Asset) -> "AssetView":
        return cls(
            id=asset.id,
            metadata=asset.raw_metadata,
            media=[MediaFileView.model_validate(record) for record in asset.media],
        )


__all__ = [
    "IngestSessionView",
    "StagedFileView",
    "StagedAssetView",
    "MediaFileView",
    "StoredMediaView",
    "AssetView",
]
