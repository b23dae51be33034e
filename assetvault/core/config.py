from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Centralised runtime configuration for assetvault archives and ingest."""

    model_config = SettingsConfigDict(
        env_prefix="ASSETVAULT_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    app_name: str = "assetvault"
    environment: str = Field(default="development", description="Deployment environment label.")
    log_level: str = Field(default="info")

    archive_root: Path = Field(default_factory=lambda: Path("archive"), description="Default archive location for the CLI.")
    database_filename: str = Field(default="archive.db", description="SQLite database file inside an archive.")
    blob_dirname: str = Field(default="blob", description="Content-addressed media directory inside an archive.")
    sqlite_busy_timeout_s: float = Field(default=30.0, description="How long SQLite waits on a locked database.")

    metadata_dirname: str = Field(default="metadata", description="Metadata directory under an import base path.")
    media_dirname: str = Field(default="media", description="Media directory under an import base path.")

    hash_chunk_size: int = Field(default=8 * 1024 * 1024, description="Read size used when hashing media.")
    rendition_width: int = Field(default=1280, description="Maximum width of the PNG rendition stored for images.")
    page_size: int = Field(default=100, description="Page size for paginated listings.")

    @property
    def environment_lower(self) -> str:
        return self.environment.lower()

    def database_url_for(self, location: Path) -> str:
        return f"sqlite+aiosqlite:///{location / self.database_filename}"


@lru_cache()
def get_settings() -> Settings:
    load_dotenv(".env", override=False)

    _ENV_ALIAS_MAP = {
        "ASSETVAULT_ENV": "ASSETVAULT_ENVIRONMENT",
        "ASSETVAULT_ARCHIVE": "ASSETVAULT_ARCHIVE_ROOT",
    }

    for source, target in _ENV_ALIAS_MAP.items():
        value = os.getenv(source)
        if value:
            os.environ[target] = value

    settings = Settings()

    if settings.page_size <= 0:
        raise ValueError("Page size must be a positive integer.")

    return settings


__all__ = ["Settings", "get_settings"]
