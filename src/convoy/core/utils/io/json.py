"""JSON documents and append-only JSONL logs."""
from __future__ import annotations

import fcntl
import json
import os
from pathlib import Path
from typing import Any, Dict

from .core import atomic_write, ensure_directory
from .locking import acquire_file_lock

_MISSING = object()


def _json_default(value: Any) -> Any:
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (set, frozenset)):
        return sorted(value, key=str)
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def read_json(file_path: Path | str, *, default: Any = _MISSING) -> Any:
    """Load ``file_path`` under a shared lock.

    A missing file returns ``default`` when given, otherwise raises
    FileNotFoundError. Malformed content raises ``json.JSONDecodeError``.
    """
    path = Path(file_path)
    if not path.exists():
        if default is _MISSING:
            raise FileNotFoundError(f"JSON file not found: {path}")
        return default

    with path.open("r", encoding="utf-8") as fh:
        fcntl.flock(fh.fileno(), fcntl.LOCK_SH)
        try:
            return json.load(fh)
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


def write_json_atomic(file_path: Path | str, data: Any, *, indent: int = 2, sort_keys: bool = True) -> None:
    def _write(fh) -> None:
        json.dump(data, fh, indent=indent, sort_keys=sort_keys, ensure_ascii=False, default=_json_default)
        fh.write("\n")

    atomic_write(file_path, _write)


def append_jsonl(*, path: Path, payload: Dict[str, Any]) -> None:
    """Append one JSON line to ``path`` under an exclusive lock, then fsync.

    Concurrent writers are serialized by the lock so records never interleave.
    """
    path = Path(path)
    ensure_directory(path.parent)
    line = json.dumps(payload, ensure_ascii=False, default=_json_default) + "\n"

    with acquire_file_lock(path):
        with path.open("a", encoding="utf-8") as fh:
            fh.write(line)
            fh.flush()
            os.fsync(fh.fileno())


__all__ = ["append_jsonl", "read_json", "write_json_atomic"]
