"""Lifecycle events emitted by the coordination core.

Every event is a frozen dataclass with a ``type`` tag; :data:`ParallelEvent`
is the closed union of all of them. Field names are the JSON keys written to
the event log.
"""
from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from typing import Any, ClassVar, Dict, Optional, Tuple, Type, Union


@dataclass(frozen=True)
class ParallelStarted:
    type: ClassVar[str] = "parallel:started"
    repo_root: str
    worker_count: int


@dataclass(frozen=True)
class ParallelStopped:
    type: ClassVar[str] = "parallel:stopped"
    reason: str = "completed"


@dataclass(frozen=True)
class WorkerIdle:
    type: ClassVar[str] = "parallel:worker-idle"
    worker_id: str


@dataclass(frozen=True)
class TaskClaimed:
    type: ClassVar[str] = "parallel:task-claimed"
    worker_id: str
    task_id: str


@dataclass(frozen=True)
class TaskStarted:
    type: ClassVar[str] = "parallel:task-started"
    worker_id: str
    task_id: str


@dataclass(frozen=True)
class TaskFinished:
    type: ClassVar[str] = "parallel:task-finished"
    worker_id: str
    task_id: str
    success: bool


@dataclass(frozen=True)
class WorktreeCreated:
    type: ClassVar[str] = "parallel:worktree-created"
    worker_id: str
    path: str
    branch_name: str
    commit: str


@dataclass(frozen=True)
class WorktreeRemoved:
    type: ClassVar[str] = "parallel:worktree-removed"
    worker_id: str
    path: str


@dataclass(frozen=True)
class MergeQueued:
    type: ClassVar[str] = "parallel:merge-queued"
    task_id: str
    commit: str
    worker_id: Optional[str] = None
    subject: str = ""
    files_changed: int = 0
    queue_depth: int = 0


@dataclass(frozen=True)
class MergeStarted:
    type: ClassVar[str] = "parallel:merge-started"
    task_id: str
    commit: str


@dataclass(frozen=True)
class MergeResolving:
    type: ClassVar[str] = "parallel:merge-resolving"
    task_id: str
    commit: str
    attempt: int
    max_attempts: int
    conflict_files: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MergeBlocked:
    type: ClassVar[str] = "parallel:merge-blocked"
    task_id: str
    commit: str
    attempts_used: int
    conflict_files: Tuple[str, ...]
    reason: str
    escalation: str


@dataclass(frozen=True)
class MergeSucceeded:
    type: ClassVar[str] = "parallel:merge-succeeded"
    task_id: str
    commit: str
    integrated_commit: Optional[str]
    resolved: bool = False
    files_changed: int = 0
    conflict_files: Tuple[str, ...] = ()


@dataclass(frozen=True)
class MergeFailed:
    type: ClassVar[str] = "parallel:merge-failed"
    task_id: str
    commit: str
    reason: str
    conflict_files: Tuple[str, ...] = ()


@dataclass(frozen=True)
class TrainHalted:
    type: ClassVar[str] = "parallel:train-halted"
    reason: str
    task_id: Optional[str] = None


@dataclass(frozen=True)
class TrainResumed:
    type: ClassVar[str] = "parallel:train-resumed"
    pending: int = 0


@dataclass(frozen=True)
class MainSyncSucceeded:
    type: ClassVar[str] = "parallel:main-sync-succeeded"
    previous_commit: Optional[str]
    current_commit: Optional[str]
    updated: bool


@dataclass(frozen=True)
class MainSyncSkipped:
    type: ClassVar[str] = "parallel:main-sync-skipped"
    reason: str
    code: Optional[str] = None


@dataclass(frozen=True)
class MainSyncFailed:
    type: ClassVar[str] = "parallel:main-sync-failed"
    reason: str
    code: Optional[str] = None
    task_id: Optional[str] = None


@dataclass(frozen=True)
class MainSyncRetrying:
    type: ClassVar[str] = "parallel:main-sync-retrying"
    retry_attempt: int
    max_retries: int
    delay_ms: int
    reason: str


@dataclass(frozen=True)
class MainSyncAlert:
    type: ClassVar[str] = "parallel:main-sync-alert"
    retry_attempt: int
    max_retries: int
    reason: str
    affected_task_count: int


@dataclass(frozen=True)
class ValidationQueued:
    type: ClassVar[str] = "parallel:validation-queued"
    plan_id: str
    task_ids: Tuple[str, ...]
    queue_depth: int = 0


@dataclass(frozen=True)
class ValidationStarted:
    type: ClassVar[str] = "parallel:validation-started"
    plan_id: str
    task_ids: Tuple[str, ...]
    check_ids: Tuple[str, ...]


@dataclass(frozen=True)
class ValidationCheckStarted:
    type: ClassVar[str] = "parallel:validation-check-started"
    plan_id: str
    check_id: str
    attempt: int


@dataclass(frozen=True)
class ValidationCheckFinished:
    type: ClassVar[str] = "parallel:validation-check-finished"
    plan_id: str
    check_id: str
    attempt: int
    exit_code: int
    duration_ms: int
    log_path: Optional[str] = None


@dataclass(frozen=True)
class ValidationPassed:
    type: ClassVar[str] = "parallel:validation-passed"
    plan_id: str
    outcome: str = "passed"


@dataclass(frozen=True)
class ValidationFailed:
    type: ClassVar[str] = "parallel:validation-failed"
    plan_id: str
    reason: str
    failed_checks: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ValidationFixStarted:
    type: ClassVar[str] = "parallel:validation-fix-started"
    plan_id: str
    attempt: int


@dataclass(frozen=True)
class ValidationFixSucceeded:
    type: ClassVar[str] = "parallel:validation-fix-succeeded"
    plan_id: str
    attempt: int
    fix_commits: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ValidationFixFailed:
    type: ClassVar[str] = "parallel:validation-fix-failed"
    plan_id: str
    attempt: int
    reason: str


@dataclass(frozen=True)
class ValidationReverted:
    type: ClassVar[str] = "parallel:validation-reverted"
    plan_id: str
    reverted_commits: Tuple[str, ...]
    reason: str


@dataclass(frozen=True)
class ValidationBlocked:
    type: ClassVar[str] = "parallel:validation-blocked"
    plan_id: str
    task_ids: Tuple[str, ...]
    reason: str


@dataclass(frozen=True)
class ValidationPaused:
    type: ClassVar[str] = "parallel:validation-paused"
    plan_id: str
    reason: str


@dataclass(frozen=True)
class CleanupCompleted:
    type: ClassVar[str] = "parallel:cleanup-completed"
    cleaned_up: Tuple[str, ...]
    errors: Tuple[str, ...] = field(default_factory=tuple)


ParallelEvent = Union[
    ParallelStarted,
    ParallelStopped,
    WorkerIdle,
    TaskClaimed,
    TaskStarted,
    TaskFinished,
    WorktreeCreated,
    WorktreeRemoved,
    MergeQueued,
    MergeStarted,
    MergeResolving,
    MergeBlocked,
    MergeSucceeded,
    MergeFailed,
    TrainHalted,
    TrainResumed,
    MainSyncSucceeded,
    MainSyncSkipped,
    MainSyncFailed,
    MainSyncRetrying,
    MainSyncAlert,
    ValidationQueued,
    ValidationStarted,
    ValidationCheckStarted,
    ValidationCheckFinished,
    ValidationPassed,
    ValidationFailed,
    ValidationFixStarted,
    ValidationFixSucceeded,
    ValidationFixFailed,
    ValidationReverted,
    ValidationBlocked,
    ValidationPaused,
    CleanupCompleted,
]

EVENT_TYPES: Dict[str, Type[Any]] = {cls.type: cls for cls in ParallelEvent.__args__}


@dataclass(frozen=True)
class EventRecord:
    """An event stamped with its position in the stream."""

    seq: int
    timestamp: str
    event: ParallelEvent

    @property
    def type(self) -> str:
        return self.event.type

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.event.type, "seq": self.seq, "timestamp": self.timestamp}
        for key, value in asdict(self.event).items():
            payload[key] = list(value) if isinstance(value, tuple) else value
        return payload


def event_from_dict(payload: Dict[str, Any]) -> EventRecord:
    """Rebuild an :class:`EventRecord` from its logged dictionary form."""
    cls = EVENT_TYPES.get(str(payload.get("type")))
    if cls is None:
        raise ValueError(f"Unknown event type: {payload.get('type')!r}")
    kwargs: Dict[str, Any] = {}
    for f in fields(cls):
        if f.name not in payload:
            continue
        value = payload[f.name]
        kwargs[f.name] = tuple(value) if isinstance(value, list) else value
    return EventRecord(seq=int(payload["seq"]), timestamp=str(payload["timestamp"]), event=cls(**kwargs))


__all__ = [
    "ParallelStarted",
    "ParallelStopped",
    "WorkerIdle",
    "TaskClaimed",
    "TaskStarted",
    "TaskFinished",
    "WorktreeCreated",
    "WorktreeRemoved",
    "MergeQueued",
    "MergeStarted",
    "MergeResolving",
    "MergeBlocked",
    "MergeSucceeded",
    "MergeFailed",
    "TrainHalted",
    "TrainResumed",
    "MainSyncSucceeded",
    "MainSyncSkipped",
    "MainSyncFailed",
    "MainSyncRetrying",
    "MainSyncAlert",
    "ValidationQueued",
    "ValidationStarted",
    "ValidationCheckStarted",
    "ValidationCheckFinished",
    "ValidationPassed",
    "ValidationFailed",
    "ValidationFixStarted",
    "ValidationFixSucceeded",
    "ValidationFixFailed",
    "ValidationReverted",
    "ValidationBlocked",
    "ValidationPaused",
    "CleanupCompleted",
    "EventRecord",
    "ParallelEvent",
    "EVENT_TYPES",
    "event_from_dict",
]
