# handoff/utils/logger.py
from __future__ import annotations

"""Logging
----------
Console output goes through Rich; JSON files (global and per run) carry the
same lines plus whatever run/step context is active. Context lives in a
ContextVar, so it follows the run's task across awaits and never leaks into
another run.
"""

import json
import logging
import os
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Any, Dict, Iterator, Optional

from rich.console import Console
from rich.logging import RichHandler

from handoff.utils.config import LogLevel, get_settings


__all__ = [
    "get_logger",
    "set_log_level",
    "log_context",
    "current_context",
    "attach_file_logger",
    "detach_file_logger",
]

_context: ContextVar[Dict[str, Any]] = ContextVar("handoff_log_context", default={})
_configured = False

# Console prefix order; anything else only reaches the JSON files.
_PREFIX_KEYS = ("run_id", "step", "kind")


def current_context() -> Dict[str, Any]:
    return dict(_context.get())


@contextmanager
def log_context(**kwargs: Any) -> Iterator[Dict[str, Any]]:
    """
    Layer context onto every record logged inside the block.

        with log_context(run_id="20261019T120000Z"):
            with log_context(step=3, kind="text_entry"):
                log.info("typing")   # -> [20261019T120000Z step=3 text_entry] typing
    """
    merged = {**_context.get(), **{k: v for k, v in kwargs.items() if v is not None}}
    token = _context.set(merged)
    try:
        yield merged
    finally:
        _context.reset(token)


class _ContextFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        record.ctx = current_context()
        return True


class ConsoleFormatter(logging.Formatter):
    """Prefix the message with the run id and step, when a run is active."""

    def format(self, record: logging.LogRecord) -> str:
        ctx = getattr(record, "ctx", {}) or {}
        parts = []
        for key in _PREFIX_KEYS:
            if key not in ctx:
                continue
            parts.append(f"{key}={ctx[key]}" if key == "step" else str(ctx[key]))
        msg = super().format(record)
        return f"[{' '.join(parts)}] {msg}" if parts else msg


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, message and context."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for k, v in (getattr(record, "ctx", {}) or {}).items():
            payload[k] = v if isinstance(v, (str, int, float, bool)) or v is None else str(v)
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _to_level(level: LogLevel | str) -> int:
    name = level.value if isinstance(level, LogLevel) else str(level)
    return getattr(logging, name.upper(), logging.INFO)


def _json_file_handler(path: str, level: int, backups: int) -> logging.Handler:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    fh = RotatingFileHandler(filename=path, maxBytes=5 * 1024 * 1024, backupCount=backups, encoding="utf-8", delay=True)
    fh.setLevel(level)
    fh.setFormatter(JsonFormatter())
    fh.addFilter(_ContextFilter())
    return fh


def _ensure_configured() -> None:
    """Install the handoff handlers on the package logger once."""
    global _configured
    if _configured:
        return

    settings = get_settings()
    level = _to_level(settings.LOG_LEVEL)

    pkg = logging.getLogger("handoff")
    pkg.setLevel(level)
    pkg.propagate = False
    for h in list(pkg.handlers):
        pkg.removeHandler(h)

    console = RichHandler(
        console=Console(stderr=True, color_system="auto"),
        show_time=True,
        show_path=False,
        rich_tracebacks=True,
        markup=False,
        omit_repeated_times=False,
    )
    console.setFormatter(ConsoleFormatter("%(message)s"))
    console.addFilter(_ContextFilter())
    console.setLevel(level)
    pkg.addHandler(console)

    if settings.LOG_TO_FILE:
        pkg.addHandler(_json_file_handler(str(settings.LOG_FILE), level, backups=5))

    logging.getLogger("playwright").setLevel(max(level, logging.WARNING))
    _configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Logger under the `handoff` namespace, configured on first use."""
    _ensure_configured()
    if not name or name == "handoff" or name.startswith("handoff."):
        return logging.getLogger(name or "handoff")
    return logging.getLogger(f"handoff.{name}")


def set_log_level(level: LogLevel | str) -> None:
    _ensure_configured()
    lvl = _to_level(level)
    pkg = logging.getLogger("handoff")
    pkg.setLevel(lvl)
    for h in pkg.handlers:
        h.setLevel(lvl)


def attach_file_logger(path: os.PathLike | str, level: Optional[int] = None) -> logging.Handler:
    """Add a JSON file for the duration of one run; pair with detach_file_logger."""
    _ensure_configured()
    pkg = logging.getLogger("handoff")
    fh = _json_file_handler(os.fspath(path), level if level is not None else pkg.level, backups=3)
    pkg.addHandler(fh)
    return fh


def detach_file_logger(handler: logging.Handler) -> None:
    logging.getLogger("handoff").removeHandler(handler)
    handler.close()
