from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

T = TypeVar("T")
E = TypeVar("E")


class LookupErrorCode(str, enum.Enum):
    DOES_NOT_EXIST = "DOES_NOT_EXIST"


class CommitError(str, enum.Enum):
    VALIDATION_ERROR = "VALIDATION_ERROR"


class MediaDeleteError(str, enum.Enum):
    IN_USE = "IN_USE"


class SessionNotCompleted(RuntimeError):
    """Raised when committing an ingest session that has not finished reading files."""


class ResultError(RuntimeError):
    """Raised when unwrapping a failed result."""


@dataclass(slots=True, frozen=True)
class Result(Generic[T, E]):
    """Outcome of an operation that reports expected failures as values."""

    value: Optional[T] = None
    error: Optional[E] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap(self) -> T:
        if self.error is not None:
            raise ResultError(str(self.error))
        return self.value  # type: ignore[return-value]


def ok(value: Optional[T] = None) -> Result[T, E]:
    return Result(value=value)


def error(code: E) -> Result[T, E]:
    return Result(error=code)


def ok_if_exists(value: Optional[T]) -> Result[T, LookupErrorCode]:
    if value is None:
        return error(LookupErrorCode.DOES_NOT_EXIST)
    return ok(value)


__all__ = [
    "Result",
    "ResultError",
    "LookupErrorCode",
    "CommitError",
    "MediaDeleteError",
    "SessionNotCompleted",
    "ok",
    "error",
    "ok_if_exists",
]
