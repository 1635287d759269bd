"""Log setup for the osslite server.

Request and ACL context rides on log records as ``extra=`` attributes.
Text output appends the ones present as ``name=value`` pairs; JSON
output adds them as keys.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

CONTEXT_FIELDS = (
    "request_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "bucket",
    "key",
    "acl",
)

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def record_context(record: logging.LogRecord) -> dict[str, Any]:
    """Return the context fields set on ``record``, in CONTEXT_FIELDS order."""
    return {
        name: getattr(record, name)
        for name in CONTEXT_FIELDS
        if getattr(record, name, None) is not None
    }


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **record_context(record),
        }
        if record.exc_info and record.exc_info[1] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    def __init__(self) -> None:
        super().__init__(_TEXT_FORMAT)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = record_context(record)
        if not context:
            return line
        pairs = " ".join(f"{name}={value}" for name, value in context.items())
        first, newline, rest = line.partition("\n")
        return f"{first} [{pairs}]{newline}{rest}"


_FORMATTERS: dict[str, type[logging.Formatter]] = {
    "json": JSONFormatter,
    "text": TextFormatter,
}


def configure_logging(level: str = "INFO", fmt: str = "text") -> None:
    """Send all logging to stderr at ``level``, shaped by ``fmt``.

    Unknown level names mean INFO and unknown formats mean text. Any
    handlers already on the root logger are replaced.
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(numeric_level)
    handler.setFormatter(_FORMATTERS.get(fmt, TextFormatter)())

    root = logging.getLogger()
    root.setLevel(numeric_level)
    root.handlers[:] = [handler]
