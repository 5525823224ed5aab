"""Route the ``logging`` tree of a CLI process into one log file.

Command output on stdout must stay machine-readable, so console handlers
on the root logger are replaced by a single file handler.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from convoy.core.utils.io import ensure_directory

LOG_FORMAT = "%(asctime)s %(levelname)s %(threadName)s %(name)s: %(message)s"


class ConvoyFileHandler(logging.FileHandler):
    """Marker type so the handler can be found and replaced later."""


def _level(name: str) -> int:
    level = logging.getLevelName(str(name).upper())
    return level if isinstance(level, int) else logging.INFO


def _installed() -> Optional[ConvoyFileHandler]:
    for handler in logging.getLogger().handlers:
        if isinstance(handler, ConvoyFileHandler):
            return handler
    return None


def _drop(handler: logging.Handler) -> None:
    logging.getLogger().removeHandler(handler)
    handler.close()


def configure_stdlib_logging(*, log_path: Path, level: str = "INFO") -> None:
    """Log to ``log_path`` at ``level``; repeated calls for the same file are no-ops."""
    target = Path(log_path).resolve()
    current = _installed()
    if current is not None and Path(current.baseFilename) == target:
        return

    root = logging.getLogger()
    root.setLevel(_level(level))
    for handler in list(root.handlers):
        # FileHandler subclasses StreamHandler; match on the stream instead.
        if getattr(handler, "stream", None) in (sys.stdout, sys.stderr):
            _drop(handler)
    if current is not None:
        _drop(current)

    ensure_directory(target.parent)
    handler = ConvoyFileHandler(target, encoding="utf-8")
    handler.setLevel(_level(level))
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)


def reset_stdlib_logging_for_tests() -> None:
    """Remove the file handler installed by :func:`configure_stdlib_logging`."""
    current = _installed()
    if current is not None:
        _drop(current)


__all__ = ["ConvoyFileHandler", "configure_stdlib_logging", "reset_stdlib_logging_for_tests"]
