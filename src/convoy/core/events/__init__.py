"""Lifecycle event types, the ordered event stream and its JSONL sink."""
from __future__ import annotations

from . import models
from .log import DEFAULT_EVENTS_LOG, JsonlEventSink, read_events
from .models import EVENT_TYPES, EventRecord, ParallelEvent, event_from_dict
from .stream import EventListener, EventStream

__all__ = [
    "models",
    "DEFAULT_EVENTS_LOG",
    "EVENT_TYPES",
    "EventListener",
    "EventRecord",
    "EventStream",
    "JsonlEventSink",
    "ParallelEvent",
    "event_from_dict",
    "read_events",
]
