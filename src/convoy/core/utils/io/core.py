"""Filesystem primitives: directories, atomic text writes, line appends."""
from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Callable, Iterable, List, TextIO, Union

PathLike = Union[str, Path]


def ensure_directory(path: PathLike) -> Path:
    """Create ``path`` (and parents) if needed and return it.

    Raises NotADirectoryError when something other than a directory is there.
    """
    path = Path(path)
    if path.exists() and not path.is_dir():
        raise NotADirectoryError(f"Path exists but is not a directory: {path}")
    path.mkdir(parents=True, exist_ok=True)
    return path


def atomic_write(path: PathLike, write_fn: Callable[[TextIO], None], *, encoding: str = "utf-8") -> None:
    """Write ``path`` through a sibling temp file, fsync it, then rename over.

    Readers see either the old or the new content, never a partial file.
    """
    path = Path(path)
    ensure_directory(path.parent)
    fd, tmp_name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    tmp = Path(tmp_name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as fh:
            write_fn(fh)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp, path)
    finally:
        tmp.unlink(missing_ok=True)


def write_text(path: PathLike, content: str) -> None:
    atomic_write(path, lambda fh: fh.write(content))


def ensure_lines_present(path: Path, lines: Iterable[str]) -> List[str]:
    """Append each of ``lines`` to ``path`` unless already present.

    Returns the lines that were added.
    """
    path = Path(path)
    existing = path.read_text(encoding="utf-8").splitlines() if path.exists() else []
    present = {line.strip() for line in existing}

    added: List[str] = []
    for line in lines:
        stripped = line.strip()
        if stripped and stripped not in present:
            added.append(line)
            present.add(stripped)
    if added:
        write_text(path, "".join(f"{line}\n" for line in existing + added))
    return added


__all__ = ["PathLike", "atomic_write", "ensure_directory", "ensure_lines_present", "write_text"]
