"""Logging setup with per-notification context fields.

Webhook processing binds ``message_id`` and ``channel`` into context vars so
every log line emitted while handling one notification carries them, including
lines from the reconciler and the task client.
"""

from __future__ import annotations

import contextlib
import json
import logging
from collections.abc import Iterator
from contextvars import ContextVar

_MESSAGE_ID: ContextVar[str | None] = ContextVar("message_id", default=None)
_CHANNEL: ContextVar[str | None] = ContextVar("channel", default=None)

# Cloud Logging severity names
_SEVERITY = {
    "DEBUG": "DEBUG",
    "INFO": "INFO",
    "WARNING": "WARNING",
    "ERROR": "ERROR",
    "CRITICAL": "CRITICAL",
}


def get_message_id() -> str | None:
    return _MESSAGE_ID.get()


def get_channel() -> str | None:
    return _CHANNEL.get()


@contextlib.contextmanager
def bind_log_context(*, message_id: str | None = None, channel: str | None = None) -> Iterator[None]:
    """Attach notification fields to all log records inside the block."""
    tok_id = _MESSAGE_ID.set(message_id)
    tok_ch = _CHANNEL.set(channel)
    try:
        yield
    finally:
        _CHANNEL.reset(tok_ch)
        _MESSAGE_ID.reset(tok_id)


class ContextFilter(logging.Filter):
    """Inject message_id / channel so formatters can always reference them."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.message_id = _MESSAGE_ID.get()
        record.channel = _CHANNEL.get()
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line, shaped for Cloud Logging ingestion."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "severity": _SEVERITY.get(record.levelname, record.levelname),
            "message": record.getMessage(),
            "logger": record.name,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S%z"),
        }
        for key in ("message_id", "channel"):
            value = getattr(record, key, None)
            if value:
                entry[key] = value
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


_TEXT_FORMAT = (
    "%(asctime)s %(levelname)s %(name)s "
    "message_id=%(message_id)s channel=%(channel)s %(message)s"
)


def configure_logging(level: str = "INFO", *, json_logs: bool = False) -> None:
    """Configure root logging once; later calls only adjust the level."""
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(lvl)

    # Uvicorn (or a test runner) may already own the handlers.
    if not any(getattr(h, "_chatsage", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler._chatsage = True  # type: ignore[attr-defined]
        handler.setFormatter(JsonFormatter() if json_logs else logging.Formatter(_TEXT_FORMAT))
        handler.addFilter(ContextFilter())
        root.addHandler(handler)

    for h in root.handlers:
        if getattr(h, "_chatsage", False):
            h.setLevel(lvl)
