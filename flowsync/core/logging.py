"""Logging setup and the per-execution log context.

Coordinators and the poller bind ``execution_id`` and ``workflow_id`` with
``log_context``. The fields live in a ``ContextVar``, so every record emitted
inside the block carries them, including records from poll tasks created
there (an asyncio task copies the context it was created in).
"""

import json
import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar, Token
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(context)s%(message)s"

_QUIET_LOGGERS = {
    "uvicorn.access": logging.WARNING,
    "sqlalchemy.engine": logging.WARNING,
    "sqlalchemy.pool": logging.WARNING,
    "httpx": logging.WARNING,
    "httpcore": logging.WARNING,
    "asyncio": logging.WARNING,
}

_log_context: ContextVar[Dict[str, Any]] = ContextVar("flowsync_log_context", default={})
_installed_handlers: List[logging.Handler] = []


def current_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


def bind_log_context(**fields) -> Token:
    """Add fields to the current context; ``None`` values are skipped.

    Undo with ``reset_log_context(token)``.
    """
    merged = dict(_log_context.get())
    merged.update((key, value) for key, value in fields.items() if value is not None)
    return _log_context.set(merged)


def reset_log_context(token: Token):
    _log_context.reset(token)


@contextmanager
def log_context(**fields) -> Iterator[Dict[str, Any]]:
    """Bind fields for the duration of a block."""
    token = bind_log_context(**fields)
    try:
        yield current_log_context()
    finally:
        reset_log_context(token)


class ContextFilter(logging.Filter):
    """Attaches the bound context to each record.

    ``record.log_context`` holds the fields and ``record.context`` renders
    them as ``"[key=value] "`` text for the plain formatter.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        fields = current_log_context()
        record.log_context = fields
        record.context = "".join(f"[{key}={value}] " for key, value in fields.items())
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line; context fields and ``extra={"log_fields": ...}`` are top-level keys."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(getattr(record, "log_context", {}))
        entry.update(getattr(record, "log_fields", {}))
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    log_format: Optional[str] = None,
    structured: bool = False,
    max_size: int = 10 * 1024 * 1024,
    backup_count: int = 5
) -> logging.Logger:
    """
    Install the console handler and, with ``log_file``, a rotating file handler.

    Calling it again replaces the handlers it installed before; handlers added
    by anything else (a test runner, a host application) are left alone.

    Returns:
        The ``flowsync`` logger
    """
    if structured:
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(log_format or DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        handlers.append(RotatingFileHandler(log_file, maxBytes=max_size, backupCount=backup_count))

    root = logging.getLogger()
    for handler in _installed_handlers:
        root.removeHandler(handler)
        handler.close()
    _installed_handlers.clear()

    for handler in handlers:
        handler.setFormatter(formatter)
        handler.addFilter(ContextFilter())
        root.addHandler(handler)
        _installed_handlers.append(handler)

    root.setLevel(level.upper())
    for name, quiet_level in _QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)

    return logging.getLogger("flowsync")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
