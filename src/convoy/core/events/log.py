"""Append-only JSONL sink for the event stream."""
from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Iterable, List, Optional

from convoy.core.utils.io import append_jsonl

from .models import EventRecord, event_from_dict
from .stream import EventStream

logger = logging.getLogger(__name__)

DEFAULT_EVENTS_LOG = Path(".convoy") / "parallel-events.jsonl"


class JsonlEventSink:
    """Write each :class:`EventRecord` as one JSON line.

    Lines are appended in emission order. A write failure is logged and the
    record is dropped from the file only; the in-memory stream is unaffected.
    """

    def __init__(self, path: Path, *, types: Optional[Iterable[str]] = None) -> None:
        self.path = Path(path)
        self._types = frozenset(types) if types is not None else None

    def __call__(self, record: EventRecord) -> None:
        if self._types is not None and record.type not in self._types:
            return
        try:
            append_jsonl(path=self.path, payload=record.to_dict())
        except OSError as exc:
            logger.warning("Failed to append event %s to %s: %s", record.type, self.path, exc)

    def attach(self, stream: EventStream):
        """Subscribe this sink to ``stream``; returns the unsubscribe callable."""
        return stream.subscribe(self)


def read_events(path: Path) -> List[EventRecord]:
    """Read an event log, skipping blank or unparseable lines."""
    path = Path(path)
    if not path.exists():
        return []
    records: List[EventRecord] = []
    for lineno, line in enumerate(path.read_text(encoding="utf-8").splitlines(), start=1):
        if not line.strip():
            continue
        try:
            records.append(event_from_dict(json.loads(line)))
        except (ValueError, KeyError, TypeError) as exc:
            logger.warning("Skipping malformed event at %s:%d: %s", path, lineno, exc)
    return records


__all__ = ["JsonlEventSink", "read_events", "DEFAULT_EVENTS_LOG"]
