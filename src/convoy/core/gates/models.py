"""Data types for validation plans and their checks."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Protocol, Tuple

from convoy.core.exceptions import InvalidTransitionError
from convoy.core.utils.time import utc_timestamp


class ValidationStatus(str, Enum):
    QUEUED = "queued"
    STARTED = "started"
    PASSED = "passed"
    FAILED = "failed"
    FIX_STARTED = "fix-started"
    FIX_SUCCEEDED = "fix-succeeded"
    FIX_FAILED = "fix-failed"
    REVERTED = "reverted"
    BLOCKED = "blocked"


ALLOWED_TRANSITIONS: Dict[ValidationStatus, FrozenSet[ValidationStatus]] = {
    ValidationStatus.QUEUED: frozenset({ValidationStatus.STARTED}),
    ValidationStatus.STARTED: frozenset({ValidationStatus.PASSED, ValidationStatus.FAILED}),
    ValidationStatus.FAILED: frozenset(
        {ValidationStatus.FIX_STARTED, ValidationStatus.REVERTED, ValidationStatus.BLOCKED}
    ),
    ValidationStatus.FIX_STARTED: frozenset({ValidationStatus.FIX_SUCCEEDED, ValidationStatus.FIX_FAILED}),
    ValidationStatus.FIX_SUCCEEDED: frozenset({ValidationStatus.STARTED}),
    ValidationStatus.FIX_FAILED: frozenset(
        {ValidationStatus.FIX_STARTED, ValidationStatus.REVERTED, ValidationStatus.BLOCKED}
    ),
    ValidationStatus.PASSED: frozenset(),
    ValidationStatus.REVERTED: frozenset(),
    ValidationStatus.BLOCKED: frozenset(),
}


class GateMode(str, Enum):
    PER_MERGE = "per-merge"
    COALESCE = "coalesce"
    BATCH_WINDOW = "batch-window"


class FallbackStrategy(str, Enum):
    REVERT = "revert"
    QUARANTINE = "quarantine"
    PAUSE = "pause"


@dataclass(frozen=True)
class CheckConfig:
    id: str
    command: str
    required: bool = False
    timeout_seconds: Optional[float] = None
    retry_on_failure: bool = False
    max_reruns: Optional[int] = None

    @classmethod
    def from_mapping(cls, check_id: str, data: Mapping[str, Any]) -> "CheckConfig":
        timeout_ms = data.get("timeoutMs")
        max_reruns = data.get("maxReruns")
        return cls(
            id=check_id,
            command=str(data.get("command", "")),
            required=bool(data.get("required", False)),
            timeout_seconds=int(timeout_ms) / 1000.0 if timeout_ms is not None else None,
            retry_on_failure=bool(data.get("retryOnFailure", False)),
            max_reruns=int(max_reruns) if max_reruns is not None else None,
        )

    def reruns(self, max_test_reruns: int) -> int:
        """Extra executions allowed after a failure."""
        if self.max_reruns is not None:
            return max(0, self.max_reruns)
        return max(0, max_test_reruns) if self.retry_on_failure else 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "required": self.required,
            "timeoutMs": int(self.timeout_seconds * 1000) if self.timeout_seconds is not None else None,
            "retryOnFailure": self.retry_on_failure,
            "maxReruns": self.max_reruns,
        }


@dataclass
class CheckOutcome:
    id: str
    command: str
    exit_code: int
    duration_ms: int
    log_path: Optional[Path] = None
    rerun_exit_codes: List[int] = field(default_factory=list)
    timed_out: bool = False

    @property
    def executions(self) -> int:
        return 1 + len(self.rerun_exit_codes)

    @property
    def passed(self) -> bool:
        return self.exit_code == 0 or 0 in self.rerun_exit_codes

    @property
    def flaky(self) -> bool:
        return self.exit_code != 0 and 0 in self.rerun_exit_codes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "command": self.command,
            "exitCode": self.exit_code,
            "durationMs": self.duration_ms,
            "logPath": str(self.log_path) if self.log_path else None,
            "rerunExitCodes": list(self.rerun_exit_codes),
            "timedOut": self.timed_out,
            "passed": self.passed,
            "flaky": self.flaky,
        }


@dataclass(frozen=True)
class ValidationRequest:
    """Integrated work waiting for validation: one merge, or several coalesced."""

    task_ids: Tuple[str, ...]
    commits: Tuple[str, ...]
    files_changed: Tuple[str, ...] = ()

    def combine(self, other: "ValidationRequest") -> "ValidationRequest":
        def _merge(a: Tuple[str, ...], b: Tuple[str, ...]) -> Tuple[str, ...]:
            return a + tuple(x for x in b if x not in a)

        return ValidationRequest(
            task_ids=_merge(self.task_ids, other.task_ids),
            commits=self.commits + tuple(c for c in other.commits if c not in self.commits),
            files_changed=_merge(self.files_changed, other.files_changed),
        )


@dataclass
class ValidationPlan:
    """A batch of checks evaluated against integrated commits.

    ``status`` only changes through :meth:`transition`, which enforces
    :data:`ALLOWED_TRANSITIONS`. A paused plan keeps its last status and
    sets ``paused``.
    """

    plan_id: str
    task_ids: Tuple[str, ...]
    commits: Tuple[str, ...]
    checks: List[CheckConfig]
    fallback_strategy: FallbackStrategy = FallbackStrategy.REVERT
    files_changed: Tuple[str, ...] = ()
    rationale: str = ""
    created_at: str = field(default_factory=utc_timestamp)
    status: ValidationStatus = ValidationStatus.QUEUED
    history: List[ValidationStatus] = field(default_factory=lambda: [ValidationStatus.QUEUED])
    fix_attempts: int = 0
    outcome: Optional[str] = None
    reason: Optional[str] = None
    failed_check: Optional[str] = None
    paused: bool = False
    reverted_commits: List[str] = field(default_factory=list)
    fix_commits: List[str] = field(default_factory=list)
    check_outcomes: List[CheckOutcome] = field(default_factory=list)
    log_dir: Optional[Path] = None

    def can_transition(self, new_status: ValidationStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]

    def transition(self, new_status: ValidationStatus) -> None:
        if not self.can_transition(new_status):
            raise InvalidTransitionError(
                f"Validation plan {self.plan_id} cannot move from {self.status.value} to {new_status.value}",
                context={"plan_id": self.plan_id, "from": self.status.value, "to": new_status.value},
            )
        self.status = new_status
        self.history.append(new_status)

    @property
    def is_terminal(self) -> bool:
        return not ALLOWED_TRANSITIONS[self.status] or self.paused

    @property
    def succeeded(self) -> bool:
        return self.status is ValidationStatus.PASSED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "planId": self.plan_id,
            "taskIds": list(self.task_ids),
            "commits": list(self.commits),
            "checks": [c.to_dict() for c in self.checks],
            "fallbackStrategy": self.fallback_strategy.value,
            "filesChanged": list(self.files_changed),
            "rationale": self.rationale,
            "createdAt": self.created_at,
            "status": self.status.value,
            "history": [s.value for s in self.history],
            "fixAttempts": self.fix_attempts,
            "outcome": self.outcome,
            "reason": self.reason,
            "failedCheck": self.failed_check,
            "paused": self.paused,
            "revertedCommits": list(self.reverted_commits),
            "fixCommits": list(self.fix_commits),
        }


@dataclass(frozen=True)
class FixRequest:
    """Context handed to the external fix action."""

    plan_id: str
    attempt: int
    failed_check: Optional[str]
    log_path: Optional[Path]
    worktree_path: Path
    reason: str


class FixAction(Protocol):
    def fix(self, request: FixRequest) -> bool: ...


__all__ = [
    "ALLOWED_TRANSITIONS",
    "CheckConfig",
    "CheckOutcome",
    "FallbackStrategy",
    "FixAction",
    "FixRequest",
    "GateMode",
    "ValidationPlan",
    "ValidationRequest",
    "ValidationStatus",
]
