"""Structured logging configuration for rolematrix.

Format and level come from ``Settings``:
    RM_LOG_FORMAT  -- ``json`` for structured JSON output, ``text`` for human-readable (default).
    RM_LOG_LEVEL   -- Python log level name (default: ``INFO``).
"""

from __future__ import annotations

import logging
import traceback
from typing import Any

from rolematrix.config import Settings, settings

#: Extras the engine attaches to its log records.
STRUCTURED_FIELDS = (
    "role_id",
    "feature_id",
    "revision",
    "change_count",
    "reason",
)


class StructuredJsonFormatter(logging.Formatter):
    """JSON formatter that emits one JSON object per log line.

    Uses ``pythonjsonlogger`` under the hood and lifts the matrix
    engine's fields (role_id, feature_id, revision, change_count, reason)
    into the JSON object when they are present on the LogRecord.
    """

    def __init__(self) -> None:
        super().__init__()
        from pythonjsonlogger.json import JsonFormatter

        self._inner = JsonFormatter(
            fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        extras: dict[str, Any] = {}
        for key in STRUCTURED_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                extras[key] = value

        # Traceback goes in a field, not appended as free-form text.
        if record.exc_info and record.exc_info[1] is not None:
            extras["traceback"] = traceback.format_exception(*record.exc_info)
            record.exc_info = None
            record.exc_text = None

        for k, v in extras.items():
            setattr(record, k, v)

        return self._inner.format(record)


def setup_logging(config: Settings = settings) -> None:
    """Configure the root logger from ``config.log_format`` and ``config.log_level``."""
    level = getattr(logging, config.log_level)
    root = logging.getLogger()
    root.setLevel(level)

    # Remove any existing handlers so we don't double-log during tests.
    root.handlers.clear()

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if config.log_format == "json":
        handler.setFormatter(StructuredJsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    root.addHandler(handler)


def log_startup_info(feature_count: int, role_count: int, storage_backend: str | None = None) -> None:
    """Emit a structured startup line describing the loaded catalog."""
    import rolematrix

    logger = logging.getLogger("rolematrix")
    logger.info(
        "rolematrix started",
        extra={
            "version": rolematrix.__version__,
            "storage_backend": storage_backend or settings.storage,
            "feature_count": feature_count,
            "role_count": role_count,
        },
    )
