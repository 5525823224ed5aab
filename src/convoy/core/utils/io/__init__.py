"""I/O utilities for Convoy.

- Core: atomic writes, directory management, idempotent line appends
- JSON: read/write with locking, append-only JSONL
- Locking: file locking primitives
"""
from __future__ import annotations

from .core import (
    PathLike,
    atomic_write,
    ensure_directory,
    ensure_lines_present,
    write_text,
)
from .json import (
    append_jsonl,
    read_json,
    write_json_atomic,
)
from .locking import (
    LockTimeoutError,
    acquire_file_lock,
)

__all__ = [
    # core
    "PathLike",
    "ensure_directory",
    "atomic_write",
    "write_text",
    "ensure_lines_present",
    # json
    "read_json",
    "write_json_atomic",
    "append_jsonl",
    # locking
    "LockTimeoutError",
    "acquire_file_lock",
]
