from __future__ import annotations

import asyncio
from logging.config import fileConfig
from pathlib import Path

import sys

from alembic import context
from sqlalchemy.engine import Connection

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from assetvault.core.config import get_settings
from assetvault.core.db import Base, create_engine
import assetvault.db.models  # noqa: F401 - ensure models are imported for metadata


config = context.config

if config.config_file_name is not None:  # pragma: no cover - alembic runtime
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def _database_url() -> str:
    settings = get_settings()
    location = Path(settings.archive_root).expanduser().resolve()
    location.mkdir(parents=True, exist_ok=True)
    return settings.database_url_for(location)


def run_migrations_offline() -> None:
    context.configure(
        url=_database_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        render_as_batch=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    settings = get_settings()
    connectable = create_engine(_database_url(), busy_timeout_s=settings.sqlite_busy_timeout_s)

    async def run() -> None:
        async with connectable.connect() as connection:
            await connection.run_sync(run_migrations)
        await connectable.dispose()

    asyncio.run(run())


def run_migrations(connection: Connection) -> None:
    context.configure(connection=connection, target_metadata=target_metadata, render_as_batch=True)
    with context.begin_transaction():
        context.run_migrations()


if context.is_offline_mode():  # pragma: no cover - executed via alembic CLI
    run_migrations_offline()
else:  # pragma: no cover - executed via alembic CLI
    run_migrations_online()
