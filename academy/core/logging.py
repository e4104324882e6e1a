"""Logging configuration for academy-service.

LOG_JSON selects between two shapes:

  human  ``2026-01-05T10:00:00.123+0000 INFO  academy.services.sign_in  [rid=ab12 pid=..] Signed in``
         The bracket only appears inside a request.  WARNING and above
         end with the source location.

  json   one object per line with request context (request id,
         principal id, method, path, status, timing) as top-level keys,
         so an aggregator can filter on ``principal_id`` directly.

Secrets rule: provider tokens, session tokens and the bot credential
are never passed to a logger.  Code that needs to mention one logs its
length instead.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar

_DATEFMT = "%Y-%m-%dT%H:%M:%S%z"

# Attributes set by RequestContextMiddleware (or passed via ``extra=``).
CONTEXT_FIELDS = (
    "request_id",
    "principal_id",
    "method",
    "path",
    "status_code",
    "duration_ms",
)

# Loggers that would otherwise print every outbound URL or access line.
_NOISY_LOGGERS = ("uvicorn", "uvicorn.access", "uvicorn.error", "httpcore", "httpx")

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
principal_id_var: ContextVar[str | None] = ContextVar("principal_id", default=None)


class RequestContextFilter(logging.Filter):
    """Stamp the current request and principal ids onto each record.

    Attached to handlers, not loggers, so records propagated from
    module loggers are stamped too.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "request_id"):
            record.request_id = request_id_var.get()  # type: ignore[attr-defined]
        if not hasattr(record, "principal_id"):
            record.principal_id = principal_id_var.get()  # type: ignore[attr-defined]
        return True


def _timestamp(formatter: logging.Formatter, record: logging.LogRecord) -> str:
    base = formatter.formatTime(record, _DATEFMT)
    # milliseconds go before the +0000 offset
    return f"{base[:-5]}.{int(record.msecs):03d}{base[-5:]}"


class _HumanFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_timestamp(self, record), f"{record.levelname:<5}", record.name, ""]

        rid = getattr(record, "request_id", None)
        if rid and rid != "-":
            pid = getattr(record, "principal_id", None)
            parts.append(f"[rid={rid}{' pid=' + pid if pid else ''}]")

        parts.append(record.getMessage())
        line = " ".join(parts)
        if record.levelno >= logging.WARNING:
            line += f"  ({record.filename}:{record.lineno})"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "timestamp": _timestamp(self, record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(
            (key, value)
            for key in CONTEXT_FIELDS
            if (value := getattr(record, key, None)) not in (None, "-")
        )
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(level_name: str, *, json_format: bool = False) -> None:
    """Install a single stdout handler on the root logger.

    Unknown level names fall back to INFO.  Calling this twice replaces
    the handler instead of stacking a second one.
    """
    level = logging.getLevelName(level_name.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(_JsonFormatter() if json_format else _HumanFormatter())
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.setLevel(level)
    root.handlers[:] = [handler]

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
