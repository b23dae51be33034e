from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, field_validator

SchemaPath = Path("schema/metadata_document.json")


class MetadataDocument(BaseModel):
    """Schema for a JSON metadata document under an import's metadata directory.

    A document describes one asset: a flat map of free-form metadata and the
    media files (relative to the import's media directory, posix separators)
    that belong to it. The metadata itself is not validated here.
    """

    model_config = ConfigDict(extra="ignore")

    metadata: Dict[str, Any]
    files: List[str] = Field(default_factory=list)

    @field_validator("files")
    @classmethod
    def _normalise_files(cls, value: List[str]) -> List[str]:
        return [item.strip().replace("\\", "/") for item in value if item.strip()]


def export_schema(output_path: Path = SchemaPath) -> Path:
    """Serialise the metadata document schema to disk.

    Args:
        output_path: The path to write the schema to.

    Returns:
        The path the schema was written to.
    """
    schema = MetadataDocument.model_json_schema()
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_text(json.dumps(schema, indent=2, sort_keys=True))
    return output_path


__all__ = [
    "MetadataDocument",
    "export_schema",
    "SchemaPath",
]
