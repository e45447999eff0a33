"""Logging setup and the in-memory buffer behind the recent-logs endpoint."""

from __future__ import annotations

import json
import logging
import sys
from collections import deque
from datetime import UTC, datetime
from typing import Any

ROOT_LOGGER = "notibridge_core"
DEFAULT_BUFFER_SIZE = 100


def _record_to_dict(record: logging.LogRecord) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
        "level": record.levelname.lower(),
        "logger": record.name,
        "message": record.getMessage(),
    }
    if record.exc_info and record.exc_info[1]:
        entry["exception"] = repr(record.exc_info[1])
    return entry


class JSONFormatter(logging.Formatter):
    """Structured JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        entry = _record_to_dict(record)
        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class LogBuffer(logging.Handler):
    """Keeps the most recent records for the logs endpoint."""

    def __init__(self, capacity: int = DEFAULT_BUFFER_SIZE) -> None:
        super().__init__()
        self._records: deque[dict[str, Any]] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._records.append(_record_to_dict(record))
        except Exception:
            self.handleError(record)

    def recent(self, count: int = 50) -> list[dict[str, Any]]:
        """Return up to ``count`` records, oldest first."""
        if count <= 0:
            return []
        return list(self._records)[-count:]


def configure_logging(
    level: str = "info",
    *,
    json_format: bool = False,
    buffer: LogBuffer | None = None,
) -> LogBuffer:
    """Configure the package logger.

    Args:
        level: Level name (debug, info, warning, error)
        json_format: Emit JSON lines instead of human-readable text
        buffer: Buffer to attach; a new one is created when omitted

    Returns:
        The attached LogBuffer.
    """
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO

    root = logging.getLogger(ROOT_LOGGER)
    root.setLevel(numeric)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric)
    if json_format:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        )
    root.addHandler(handler)

    buffer = buffer or LogBuffer()
    buffer.setLevel(numeric)
    root.addHandler(buffer)
    return buffer
