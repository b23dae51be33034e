from __future__ import annotations

import enum
from datetime import datetime
from typing import Any, List, Optional
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, Enum, ForeignKey, Integer, String, Table, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from assetvault.core.db import Base


def new_id() -> str:
    return uuid4().hex


class IngestPhase(str, enum.Enum):
    READ_METADATA = "READ_METADATA"
    READ_FILES = "READ_FILES"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class FileImportError(str, enum.Enum):
    UNSUPPORTED_MEDIA_TYPE = "UNSUPPORTED_MEDIA_TYPE"
    IO_ERROR = "IO_ERROR"
    UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class ImportSession(Base):
    """A bulk import of every asset found under `base_path`."""

    __tablename__ = "import_session"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    base_path: Mapped[str] = mapped_column(String(4096), nullable=False)
    phase: Mapped[IngestPhase] = mapped_column(Enum(IngestPhase), default=IngestPhase.READ_METADATA, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    assets: Mapped[List["StagedAsset"]] = relationship(
        back_populates="session",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
    )


class StagedAsset(Base):
    """One metadata unit staged by an import session, keyed by its source locator."""

    __tablename__ = "asset_import"
    __table_args__ = (UniqueConstraint("session_id", "path", name="uq_asset_import_session_path"),)

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    session_id: Mapped[str] = mapped_column(ForeignKey("import_session.id", ondelete="CASCADE"), nullable=False, index=True)
    path: Mapped[str] = mapped_column(String(4096), nullable=False)
    raw_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)
    phase: Mapped[IngestPhase] = mapped_column(Enum(IngestPhase), default=IngestPhase.READ_FILES, nullable=False)

    session: Mapped[ImportSession] = relationship(back_populates="assets", lazy="raise")
    files: Mapped[List["StagedFileRef"]] = relationship(
        back_populates="asset",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="raise",
        order_by="StagedFileRef.position",
    )


class StagedFileRef(Base):
    """A media file referenced by a staged asset, relative to the import's media directory."""

    __tablename__ = "file_import"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    asset_id: Mapped[str] = mapped_column(ForeignKey("asset_import.id", ondelete="CASCADE"), nullable=False, index=True)
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    path: Mapped[str] = mapped_column(String(4096), nullable=False)
    media_id: Mapped[str | None] = mapped_column(ForeignKey("media_file.id", ondelete="SET NULL"), nullable=True, index=True)
    error: Mapped[FileImportError | None] = mapped_column(Enum(FileImportError), nullable=True)

    asset: Mapped[StagedAsset] = relationship(back_populates="files", lazy="raise")
    media: Mapped[Optional["MediaFile"]] = relationship(lazy="raise")

    @property
    def resolved(self) -> bool:
        return self.media_id is not None or self.error is not None


class MediaFile(Base):
    """A content-addressed media blob. One record per distinct sha256."""

    __tablename__ = "media_file"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    sha256: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
    mime_type: Mapped[str] = mapped_column(String(128), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)


asset_media = Table(
    "asset_media",
    Base.metadata,
    Column("asset_id", ForeignKey("asset.id", ondelete="CASCADE"), primary_key=True),
    Column("media_id", ForeignKey("media_file.id"), primary_key=True),
)


class Asset(Base):
    """A permanent asset promoted from an ingest session."""

    __tablename__ = "asset"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=new_id)
    raw_metadata: Mapped[dict[str, Any]] = mapped_column("metadata", JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    media: Mapped[List[MediaFile]] = relationship(secondary=asset_media, lazy="raise")


__all__ = [
    "ImportSession",
    "StagedAsset",
    "StagedFileRef",
    "MediaFile",
    "Asset",
    "asset_media",
    "IngestPhase",
    "FileImportError",
    "new_id",
]
