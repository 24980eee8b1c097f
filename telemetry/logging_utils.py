from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from telemetry.pii import sanitize_log_payload, scrub_text

_CONFIGURED = False
_DEFAULT_LEVEL = "INFO"
_SERVICE_NAME = "propertyhub"

# LogRecord attributes that are never copied into the structured payload.
_RESERVED_ATTRS = frozenset(
    {
        "name",
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "taskName",
        "asctime",
        "message",
    }
)


def _safe_value(value: Any) -> Any:
    try:
        json.dumps(value)
        return value
    except (TypeError, ValueError):
        return str(value)


def _record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    extras: Dict[str, Any] = {}
    for key, value in record.__dict__.items():
        if key in _RESERVED_ATTRS or key.startswith("_"):
            continue
        extras[key] = _safe_value(value)
    return extras


class JsonFormatter(logging.Formatter):
    """One JSON object per line, with ``extra=`` fields merged in and PII scrubbed."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": _SERVICE_NAME,
            "logger": record.name,
            "message": scrub_text(record.getMessage()),
        }
        payload.update(sanitize_log_payload(_record_extras(record)))
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=True)


class PlainFormatter(logging.Formatter):
    """Human-readable variant for local runs (LOG_FORMAT=plain)."""

    def __init__(self) -> None:
        super().__init__("%(asctime)s %(levelname)-7s %(name)s: %(message)s")

    def formatMessage(self, record: logging.LogRecord) -> str:
        record.message = scrub_text(record.message)
        return super().formatMessage(record)

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        extras = sanitize_log_payload(_record_extras(record))
        if extras:
            line += " " + " ".join(f"{k}={v}" for k, v in sorted(extras.items()))
        return line


def _resolve_level(level_name: Optional[str]) -> int:
    level = logging.getLevelName((level_name or _DEFAULT_LEVEL).upper())
    return level if isinstance(level, int) else logging.INFO


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None, *, force: bool = False) -> None:
    """Install the root handler once. ``force`` re-applies level/format (used by the CLI)."""
    global _CONFIGURED
    if _CONFIGURED and not force:
        return
    handler = logging.StreamHandler()
    fmt_name = (fmt or os.getenv("LOG_FORMAT", "json")).lower()
    handler.setFormatter(PlainFormatter() if fmt_name == "plain" else JsonFormatter())
    root = logging.getLogger()
    if force:
        for existing in list(root.handlers):
            if getattr(existing, "_propertyhub", False):
                root.removeHandler(existing)
    if force or not root.handlers:
        handler._propertyhub = True  # type: ignore[attr-defined]
        root.addHandler(handler)
    root.setLevel(_resolve_level(level or os.getenv("LOG_LEVEL")))
    _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name)
