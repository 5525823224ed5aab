"""Data types for the merge train."""
from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple


class MergeStatus(str, Enum):
    QUEUED = "queued"
    STARTED = "started"
    RESOLVING = "resolving"
    VALIDATED = "validated"
    BLOCKED = "blocked"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (MergeStatus.BLOCKED, MergeStatus.SUCCEEDED, MergeStatus.FAILED)


class Escalation(str, Enum):
    BLOCK = "block"
    ABORT = "abort"


@dataclass(frozen=True)
class CommitMetadata:
    hash: str
    short_hash: str
    subject: str
    body: str = ""
    author_name: str = ""
    author_email: str = ""
    author_date: str = ""
    committer_name: str = ""
    committer_email: str = ""
    committer_date: str = ""
    parents: Tuple[str, ...] = ()
    tree_hash: str = ""
    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0
    file_names: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hash": self.hash,
            "shortHash": self.short_hash,
            "subject": self.subject,
            "body": self.body,
            "authorName": self.author_name,
            "authorEmail": self.author_email,
            "authorDate": self.author_date,
            "committerName": self.committer_name,
            "committerEmail": self.committer_email,
            "committerDate": self.committer_date,
            "parents": list(self.parents),
            "treeHash": self.tree_hash,
            "filesChanged": self.files_changed,
            "insertions": self.insertions,
            "deletions": self.deletions,
            "fileNames": list(self.file_names),
        }


@dataclass
class MergeAttempt:
    """One worker commit on its way into the target branch."""

    task_id: str
    commit_hash: str
    seq: int
    worker_id: Optional[str] = None
    commit_metadata: Optional[CommitMetadata] = None
    status: MergeStatus = MergeStatus.QUEUED
    attempt_count: int = 0
    conflict_files: List[str] = field(default_factory=list)
    integrated_commit: Optional[str] = None
    resolved: bool = False
    reason: Optional[str] = None
    plan_id: Optional[str] = None
    _settled: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def files(self) -> Tuple[str, ...]:
        return self.commit_metadata.file_names if self.commit_metadata else ()

    @property
    def short_commit(self) -> str:
        return self.commit_hash[:7]

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def settle(self, status: MergeStatus, reason: Optional[str] = None) -> None:
        self.status = status
        if reason is not None:
            self.reason = reason
        self._settled.set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the attempt reaches a terminal status."""
        return self._settled.wait(timeout)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "taskId": self.task_id,
            "commitHash": self.commit_hash,
            "workerId": self.worker_id,
            "status": self.status.value,
            "attemptCount": self.attempt_count,
            "conflictFiles": list(self.conflict_files),
            "integratedCommit": self.integrated_commit,
            "resolved": self.resolved,
            "reason": self.reason,
            "planId": self.plan_id,
            "commitMetadata": self.commit_metadata.to_dict() if self.commit_metadata else None,
        }


@dataclass(frozen=True)
class ConflictResolutionRequest:
    """What an external resolver is asked to fix."""

    task_id: str
    commit: str
    worktree_path: Path
    conflict_files: Tuple[str, ...]
    attempt: int
    max_attempts: int
    task_title: Optional[str] = None


__all__ = [
    "CommitMetadata",
    "ConflictResolutionRequest",
    "Escalation",
    "MergeAttempt",
    "MergeStatus",
]
