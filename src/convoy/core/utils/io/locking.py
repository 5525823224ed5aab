"""Exclusive sidecar locks shared by threads and processes."""
from __future__ import annotations

import fcntl
import threading
import time
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Iterator

from .core import ensure_directory

DEFAULT_LOCK_TIMEOUT_SECONDS = 10.0
DEFAULT_POLL_INTERVAL_SECONDS = 0.05

_mutexes: dict[str, threading.Lock] = {}
_mutexes_guard = threading.Lock()


class LockTimeoutError(TimeoutError):
    """The lock for a file could not be taken before the deadline."""


def _mutex_for(lock_path: Path) -> threading.Lock:
    # flock is per open file description; threads need their own mutex.
    with _mutexes_guard:
        return _mutexes.setdefault(str(lock_path.resolve()), threading.Lock())


def _flock_until(fh: IO[str], deadline: float, poll_interval: float, target: Path) -> None:
    while True:
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
            return
        except OSError:
            if time.monotonic() >= deadline:
                raise LockTimeoutError(f"Timed out waiting for the lock on {target}") from None
            time.sleep(poll_interval)


@contextmanager
def acquire_file_lock(
    file_path: Path | str,
    timeout: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
    *,
    poll_interval: float = DEFAULT_POLL_INTERVAL_SECONDS,
) -> Iterator[IO[str]]:
    """Hold an exclusive lock on ``<file_path>.lock`` for the ``with`` body.

    Raises LockTimeoutError when neither the in-process mutex nor the OS lock
    can be taken within ``timeout`` seconds.
    """
    if timeout <= 0 or poll_interval <= 0:
        raise ValueError(f"timeout and poll_interval must be positive (got {timeout}, {poll_interval})")

    target = Path(file_path)
    lock_path = target.with_name(target.name + ".lock")
    ensure_directory(lock_path.parent)
    deadline = time.monotonic() + timeout

    mutex = _mutex_for(lock_path)
    if not mutex.acquire(timeout=timeout):
        raise LockTimeoutError(f"Timed out waiting for the lock on {target}")
    try:
        with lock_path.open("a+", encoding="utf-8") as fh:
            _flock_until(fh, deadline, poll_interval, target)
            try:
                yield fh
            finally:
                fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
    finally:
        mutex.release()


__all__ = ["LockTimeoutError", "acquire_file_lock"]
