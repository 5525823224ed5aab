"""Counting semaphore with FIFO hand-off for git mutations on one repository."""
from __future__ import annotations

import logging
import math
import threading
from collections import deque
from contextlib import contextmanager
from typing import Callable, Deque, Iterator, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_CONCURRENCY = 6


class ConcurrencyLimiter:
    """Bound how many mutating commands run at once.

    Waiters are served strictly in arrival order: a released permit goes to
    the oldest waiter, never to a thread that arrives later.

    Args:
        max_concurrent: Number of permits; must be a positive finite integer.
        on_change: Optional hook called with ``(active, waiting)`` after every
            acquire and release, under the limiter's lock. Errors raised by
            the hook are logged and never affect permit accounting.
    """

    def __init__(
        self,
        max_concurrent: int = DEFAULT_MAX_CONCURRENCY,
        *,
        on_change: Optional[Callable[[int, int], None]] = None,
    ) -> None:
        if isinstance(max_concurrent, bool) or not isinstance(max_concurrent, (int, float)):
            raise ValueError(f"max_concurrent must be a positive integer (got {max_concurrent!r})")
        if not math.isfinite(max_concurrent) or max_concurrent < 1 or int(max_concurrent) != max_concurrent:
            raise ValueError(f"max_concurrent must be a positive integer (got {max_concurrent!r})")

        self.max_concurrent = int(max_concurrent)
        self._on_change = on_change
        self._cond = threading.Condition()
        self._active = 0
        self._peak = 0
        self._waiters: Deque[object] = deque()

    @property
    def active(self) -> int:
        with self._cond:
            return self._active

    @property
    def waiting(self) -> int:
        with self._cond:
            return len(self._waiters)

    @property
    def peak(self) -> int:
        """Highest number of permits held at the same time since construction."""
        with self._cond:
            return self._peak

    def acquire(self) -> None:
        ticket = object()
        with self._cond:
            self._waiters.append(ticket)
            try:
                while self._waiters[0] is not ticket or self._active >= self.max_concurrent:
                    self._cond.wait()
            except BaseException:
                self._waiters.remove(ticket)
                self._cond.notify_all()
                raise
            self._waiters.popleft()
            self._active += 1
            self._peak = max(self._peak, self._active)
            self._notify_change()
            # The next waiter may also fit if more permits are free.
            self._cond.notify_all()

    def release(self) -> None:
        with self._cond:
            if self._active <= 0:
                raise RuntimeError("release() called without a matching acquire()")
            self._active -= 1
            self._notify_change()
            self._cond.notify_all()

    @contextmanager
    def permit(self) -> Iterator[None]:
        self.acquire()
        try:
            yield
        finally:
            self.release()

    def with_permit(self, fn: Callable[..., T], *args, **kwargs) -> T:
        """Run ``fn(*args, **kwargs)`` while holding a permit."""
        with self.permit():
            return fn(*args, **kwargs)

    def _notify_change(self) -> None:
        if self._on_change is None:
            return
        try:
            self._on_change(self._active, len(self._waiters))
        except Exception:
            logger.warning("Concurrency on_change hook failed", exc_info=True)


__all__ = ["ConcurrencyLimiter", "DEFAULT_MAX_CONCURRENCY"]
