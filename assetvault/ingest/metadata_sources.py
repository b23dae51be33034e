from __future__ import annotations

import enum
import math
from dataclasses import dataclass, field
from datetime import date, datetime, time
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

import pandas as pd
from pydantic import ValidationError

from .metadata_schema import MetadataDocument

__all__ = [
    "FILES_COLUMN",
    "CSV_SHEET_NAME",
    "JSON_TYPES",
    "SPREADSHEET_TYPES",
    "MetadataSourceKind",
    "MetadataUnit",
    "MalformedMetadataSource",
    "source_kind",
    "read_json_document",
    "load_sheets",
    "iter_sheet_units",
    "split_files",
]

FILES_COLUMN = "files"
CSV_SHEET_NAME = "Sheet1"
JSON_TYPES = (".json",)
SPREADSHEET_TYPES = (".xlsx", ".csv", ".xls", ".ods")


class MetadataSourceKind(str, enum.Enum):
    JSON = "json"
    SPREADSHEET = "spreadsheet"


@dataclass(slots=True)
class MetadataUnit:
    """One asset's worth of metadata, ready to be staged under ``locator``."""

    locator: str
    metadata: Dict[str, Any]
    files: List[str] = field(default_factory=list)


class MalformedMetadataSource(ValueError):
    """Raised when a metadata document or spreadsheet cannot be parsed."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


def source_kind(path: Path) -> Optional[MetadataSourceKind]:
    suffix = path.suffix.lower()
    if suffix in JSON_TYPES:
        return MetadataSourceKind.JSON
    if suffix in SPREADSHEET_TYPES:
        return MetadataSourceKind.SPREADSHEET
    return None


def split_files(value: Any) -> List[str]:
    """Split a ``;`` delimited cell into relative media paths, dropping blanks."""
    if value is None:
        return []
    return [item.strip().replace("\\", "/") for item in str(value).split(";") if item.strip()]


def read_json_document(path: Path, locator: str) -> MetadataUnit:
    """Parse a JSON metadata document.

    Args:
        path: Absolute path to the document.
        locator: The document's path relative to the metadata directory.

    Returns:
        The staged unit described by the document.

    Raises:
        MalformedMetadataSource: The file is unreadable, is not JSON, or does
            not match the metadata document schema.
    """
    try:
        payload = path.read_bytes()
        document = MetadataDocument.model_validate_json(payload)
    except (OSError, ValidationError) as exc:
        raise MalformedMetadataSource(path, str(exc)) from exc
    return MetadataUnit(locator=locator, metadata=dict(document.metadata), files=list(document.files))


def load_sheets(path: Path) -> Dict[str, List[Dict[str, Any]]]:
    """Read every sheet of a spreadsheet into rows keyed by column header.

    CSV files have a single sheet named ``Sheet1``. Empty cells are omitted
    from their row and fully blank rows are skipped.

    Raises:
        MalformedMetadataSource: The spreadsheet cannot be decoded.
    """
    try:
        if path.suffix.lower() == ".csv":
            frames = {CSV_SHEET_NAME: pd.read_csv(path)}
        else:
            frames = pd.read_excel(path, sheet_name=None)
    except Exception as exc:
        raise MalformedMetadataSource(path, str(exc)) from exc

    sheets: Dict[str, List[Dict[str, Any]]] = {}
    for sheet_name, frame in frames.items():
        frame = frame.dropna(how="all")
        rows: List[Dict[str, Any]] = []
        for record in frame.to_dict("records"):
            row = {}
            for column, raw in record.items():
                value = _cell_value(raw)
                if value is not None:
                    row[str(column)] = value
            rows.append(row)
        sheets[str(sheet_name)] = rows
    return sheets


def iter_sheet_units(relative_path: str, sheets: Dict[str, List[Dict[str, Any]]]) -> Iterator[MetadataUnit]:
    """Yield one unit per spreadsheet row, located as ``path:sheet,row``."""
    for sheet_name, rows in sheets.items():
        for index, row in enumerate(rows):
            metadata = dict(row)
            files = split_files(metadata.pop(FILES_COLUMN, None))
            yield MetadataUnit(locator=f"{relative_path}:{sheet_name},{index}", metadata=metadata, files=files)


def _cell_value(value: Any) -> Any:
    if value is None:
        return None
    if not isinstance(value, (list, dict)) and pd.isna(value):
        return None
    if isinstance(value, pd.Timestamp):
        return value.isoformat()
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    if hasattr(value, "item"):
        value = value.item()
    if isinstance(value, float) and not math.isinf(value) and value.is_integer():
        # Spreadsheets do not distinguish 3 from 3.0; pandas widens int columns with gaps to float.
        return int(value)
    return value
