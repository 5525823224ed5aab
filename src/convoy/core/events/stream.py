"""Totally ordered, in-process event stream."""
from __future__ import annotations

import logging
import threading
from typing import Callable, List, Optional

from convoy.core.utils.time import utc_timestamp

from .models import EventRecord, ParallelEvent

logger = logging.getLogger(__name__)

EventListener = Callable[[EventRecord], None]


class EventStream:
    """Stamp events with a sequence number and fan them out to listeners.

    ``emit`` is serialized by a lock and listeners run inside it, so every
    listener observes records in the same order, strictly increasing ``seq``.
    A failing listener is logged and does not stop delivery to the others.
    """

    def __init__(self, *, keep_history: bool = True) -> None:
        self._lock = threading.RLock()
        self._seq = 0
        self._listeners: List[EventListener] = []
        self._history: Optional[List[EventRecord]] = [] if keep_history else None

    def subscribe(self, listener: EventListener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        with self._lock:
            self._listeners.append(listener)

        def _unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _unsubscribe

    def emit(self, event: ParallelEvent) -> EventRecord:
        with self._lock:
            self._seq += 1
            record = EventRecord(seq=self._seq, timestamp=utc_timestamp(), event=event)
            if self._history is not None:
                self._history.append(record)
            for listener in list(self._listeners):
                try:
                    listener(record)
                except Exception:
                    logger.exception("Event listener failed for %s", event.type)
            return record

    @property
    def history(self) -> List[EventRecord]:
        with self._lock:
            return list(self._history or [])

    def types(self) -> List[str]:
        """Event type tags emitted so far, in order."""
        return [r.type for r in self.history]


__all__ = ["EventStream", "EventListener"]
