"""Domain entities and ingest helpers shared by the services and the CLI."""

from assetvault.db.models import FileImportError, IngestPhase
from assetvault.ingest.content_hash import compute_sha256
from assetvault.ingest.media_types import MediaType, get_media_type
from assetvault.ingest.metadata_schema import MetadataDocument, SchemaPath, export_schema
from assetvault.ingest.metadata_sources import MalformedMetadataSource, MetadataUnit

__all__ = [
    "FileImportError",
    "IngestPhase",
    "compute_sha256",
    "MediaType",
    "get_media_type",
    "MetadataDocument",
    "SchemaPath",
    "export_schema",
    "MalformedMetadataSource",
    "MetadataUnit",
]
