"""Merge train: serialized, conflict-aware integration into the target branch."""
from __future__ import annotations

from .commits import commit_files, is_empty_cherry_pick, read_commit_metadata, unmerged_files
from .independence import IndependencePredicate, different_task, disjoint_files
from .models import (
    CommitMetadata,
    ConflictResolutionRequest,
    Escalation,
    MergeAttempt,
    MergeStatus,
)
from .resolver import CheckoutSideResolver, ConflictResolver
from .train import MergeTrain, TaskLookup, build_failure_message, prepare_merge_worktree

__all__ = [
    "CheckoutSideResolver",
    "CommitMetadata",
    "ConflictResolutionRequest",
    "ConflictResolver",
    "Escalation",
    "IndependencePredicate",
    "MergeAttempt",
    "MergeStatus",
    "MergeTrain",
    "TaskLookup",
    "build_failure_message",
    "commit_files",
    "different_task",
    "disjoint_files",
    "is_empty_cherry_pick",
    "prepare_merge_worktree",
    "read_commit_metadata",
    "unmerged_files",
]
