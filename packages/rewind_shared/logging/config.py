"""Stdout logging configuration for Rewind processes.

Logs always go to stdout, either as newline-delimited JSON or as a plain
line with the bound context appended as ``key=value`` pairs. Correlation
fields lead the plain suffix so one undo run reads left to right.
"""

from __future__ import annotations

import json
import logging
import sys
import time
from datetime import UTC, datetime
from typing import Any

from . import fields
from .context import bind_context, get_context

_LEADING_CONTEXT_KEYS = (fields.TRACE_ID, fields.ACTOR_ID, fields.ENTRY_ID)


class ContextFilter(logging.Filter):
    """Attach a snapshot of the bound context to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = get_context()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            fields.TIMESTAMP: datetime.fromtimestamp(record.created, UTC).isoformat(),
            fields.LEVEL: record.levelname,
            fields.LOGGER: record.name,
            fields.MESSAGE: record.getMessage(),
        }
        payload.update(_record_context(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str, separators=(",", ":"))


class PlainFormatter(logging.Formatter):
    """Single-line human format, UTC timestamps, context as ``key=value``."""

    converter = time.gmtime

    def __init__(self) -> None:
        super().__init__(
            fmt="%(asctime)sZ %(levelname)s %(name)s %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        context = _record_context(record)
        if not context:
            return message
        leading = [key for key in _LEADING_CONTEXT_KEYS if key in context]
        rest = sorted(key for key in context if key not in _LEADING_CONTEXT_KEYS)
        suffix = " ".join(f"{key}={context[key]}" for key in (*leading, *rest))
        return f"{message} {suffix}"


def _record_context(record: logging.LogRecord) -> dict[str, str]:
    context = getattr(record, "context", None)
    return context if isinstance(context, dict) else {}


def configure_logging(
    *,
    level: str = "INFO",
    json_output: bool = True,
    service: str | None = None,
    environment: str | None = None,
) -> None:
    """Install a single stdout handler on the root logger.

    Existing root handlers are replaced, so repeated calls never duplicate
    emissions. ``service`` and ``environment`` are bound into the context.
    """
    resolved_level = level.upper()
    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(resolved_level)
    handler.addFilter(ContextFilter())
    handler.setFormatter(JsonFormatter() if json_output else PlainFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(resolved_level)
    root.addHandler(handler)

    bind_context(
        **{fields.SERVICE: service or None, fields.ENVIRONMENT: environment or None}
    )


def get_logger(name: str | None = None) -> logging.Logger:
    return logging.getLogger(name)
