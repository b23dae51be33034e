from __future__ import annotations

import logging
from typing import Any

import structlog


def resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(level: int | str = logging.INFO) -> None:
    numeric_level = resolve_level(level)
    logging.basicConfig(format="%(message)s", level=numeric_level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        cache_logger_on_first_use=True,
    )


def get_logger(**initial_values: Any) -> structlog.BoundLogger:
    return structlog.get_logger().bind(**initial_values)


__all__ = ["configure_logging", "get_logger", "resolve_level"]
