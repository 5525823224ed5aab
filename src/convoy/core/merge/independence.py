"""Predicates deciding whether a queued attempt may pass a blocked one."""
from __future__ import annotations

from typing import Callable

from .models import MergeAttempt

IndependencePredicate = Callable[[MergeAttempt, MergeAttempt], bool]


def disjoint_files(candidate: MergeAttempt, blocked: MergeAttempt) -> bool:
    """Different task and no file touched by both commits."""
    if candidate.task_id == blocked.task_id:
        return False
    return not set(candidate.files) & set(blocked.files)


def different_task(candidate: MergeAttempt, blocked: MergeAttempt) -> bool:
    return candidate.task_id != blocked.task_id


__all__ = ["IndependencePredicate", "different_task", "disjoint_files"]
