"""Data types for managed worktrees."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Optional


class WorktreeHealth(str, Enum):
    ACTIVE = "active"
    LOCKED = "locked"
    STALE = "stale"
    PRUNABLE = "prunable"


@dataclass(frozen=True)
class CreateWorktreeRequest:
    """Ask for one worker worktree on ``branch_name`` starting at ``base_ref``."""

    worker_id: str
    branch_name: str
    base_ref: str = "HEAD"
    lock_reason: Optional[str] = None


@dataclass
class Worktree:
    """A worktree created and owned by :class:`WorktreeManager`."""

    path: Path
    worker_id: str
    branch_name: str
    base_ref: str
    expected_commit: str
    locked: bool = False
    lock_reason: Optional[str] = None
    health_status: WorktreeHealth = WorktreeHealth.ACTIVE


@dataclass(frozen=True)
class WorktreeStatus:
    """One entry of ``git worktree list``, classified."""

    path: Path
    relative_path: str
    head: Optional[str]
    branch: Optional[str]
    locked: bool
    lock_reason: Optional[str]
    prunable: bool
    prunable_reason: Optional[str]
    bare: bool
    detached: bool
    health_status: WorktreeHealth


@dataclass(frozen=True)
class WorktreeValidation:
    valid: bool
    path: Path
    expected_branch: str
    expected_commit: str
    current_branch: Optional[str] = None
    current_commit: Optional[str] = None
    error: Optional[str] = None


@dataclass
class WorktreeHealthSummary:
    total: int = 0
    counts: Dict[WorktreeHealth, int] = field(
        default_factory=lambda: {status: 0 for status in WorktreeHealth}
    )

    @property
    def active(self) -> int:
        return self.counts[WorktreeHealth.ACTIVE]

    @property
    def locked(self) -> int:
        return self.counts[WorktreeHealth.LOCKED]

    @property
    def stale(self) -> int:
        return self.counts[WorktreeHealth.STALE]

    @property
    def prunable(self) -> int:
        return self.counts[WorktreeHealth.PRUNABLE]

    def to_dict(self) -> Dict[str, int]:
        return {"total": self.total, **{status.value: n for status, n in self.counts.items()}}


__all__ = [
    "CreateWorktreeRequest",
    "Worktree",
    "WorktreeHealth",
    "WorktreeHealthSummary",
    "WorktreeStatus",
    "WorktreeValidation",
]
