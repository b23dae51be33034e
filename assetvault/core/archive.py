from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, AsyncIterator, Generic, List, Optional, Sequence, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import InstrumentedAttribute

from .config import Settings, get_settings
from .db import create_engine, create_schema, create_session_factory
from .logging import get_logger
from .storage import BlobStore

T = TypeVar("T")


@dataclass(slots=True)
class ResourceList(Generic[T]):
    """One page of a paginated listing."""

    total: int
    items: List[T] = field(default_factory=list)
    page: int = 0
    next: Optional[int] = None
    prev: Optional[int] = None


class Archive:
    """File and metadata storage for one archive directory.

    An archive owns a SQLite database and a content-addressed blob directory.
    Every database access goes through :meth:`session` (a unit of work) or
    :meth:`transaction` (a unit of work committed on success and rolled back
    on error).
    """

    def __init__(
        self,
        location: Path,
        *,
        engine: AsyncEngine,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ):
        self.location = location
        self.engine = engine
        self.session_factory = session_factory
        self.settings = settings
        self.blobs = BlobStore(self.blob_path)
        self.logger = get_logger(component="archive", archive_id=self.id)

    @classmethod
    async def open(cls, location: Path | str, settings: Settings | None = None) -> "Archive":
        settings = settings or get_settings()
        location = Path(location).expanduser().resolve()
        location.mkdir(parents=True, exist_ok=True)
        engine = create_engine(settings.database_url_for(location), busy_timeout_s=settings.sqlite_busy_timeout_s)
        await create_schema(engine)
        archive = cls(location, engine=engine, session_factory=create_session_factory(engine), settings=settings)
        archive.logger.info("archive_opened")
        return archive

    async def close(self) -> None:
        await self.engine.dispose()
        self.logger.info("archive_closed")

    @property
    def id(self) -> str:
        return str(self.location)

    @property
    def blob_path(self) -> Path:
        return self.location / self.settings.blob_dirname

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            yield session

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[AsyncSession]:
        async with self.session_factory() as session:
            async with session.begin():
                yield session

    async def get(self, model: type[T], id: str) -> Optional[T]:
        async with self.session() as session:
            return await session.get(model, id)

    async def list(
        self,
        model: type[T],
        *filters: Any,
        page: int = 0,
        order_by: Optional[InstrumentedAttribute] = None,
        options: Sequence[Any] = (),
    ) -> ResourceList[T]:
        page_size = self.settings.page_size
        page = max(page, 0)
        async with self.session() as session:
            total = await session.scalar(select(func.count()).select_from(model).where(*filters))
            stmt = select(model).where(*filters).options(*options).offset(page * page_size).limit(page_size)
            if order_by is not None:
                stmt = stmt.order_by(order_by)
            items = list((await session.execute(stmt)).scalars().all())

        total = total or 0
        last_page = max((total - 1) // page_size, 0)
        return ResourceList(
            total=total,
            items=items,
            page=page,
            next=page + 1 if page < last_page else None,
            prev=page - 1 if page > 0 else None,
        )


__all__ = ["Archive", "ResourceList"]
