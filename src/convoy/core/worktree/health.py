"""Parsing and health classification for ``git worktree list``."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, List

from .models import WorktreeHealth, WorktreeStatus


def classify_health(*, prunable: bool, locked: bool, exists: bool) -> WorktreeHealth:
    """Classify a worktree from git's flags and whether its directory exists.

    Precedence: prunable, then locked, then active/stale by existence.
    """
    if prunable:
        return WorktreeHealth.PRUNABLE
    if locked:
        return WorktreeHealth.LOCKED
    return WorktreeHealth.ACTIVE if exists else WorktreeHealth.STALE


def parse_worktree_porcelain(stdout: str) -> List[Dict[str, Any]]:
    """Parse ``git worktree list --porcelain [-z]`` output into raw records.

    With ``-z`` attributes are NUL-terminated and records end with an empty
    attribute; without it, newlines play the same roles.
    """
    separator = "\0" if "\0" in stdout else "\n"
    records: List[Dict[str, Any]] = []
    current: Dict[str, Any] = {}

    for token in stdout.split(separator):
        if separator == "\n":
            token = token.rstrip("\r")
        if not token:
            if current:
                records.append(current)
                current = {}
            continue

        key, _, value = token.partition(" ")
        if key == "worktree":
            if current:
                records.append(current)
            current = {"path": value}
        elif key == "HEAD":
            current["head"] = value
        elif key == "branch":
            current["branch"] = value[len("refs/heads/"):] if value.startswith("refs/heads/") else value
        elif key == "detached":
            current["detached"] = True
        elif key == "bare":
            current["bare"] = True
        elif key == "locked":
            current["locked"] = True
            current["lock_reason"] = value or None
        elif key == "prunable":
            current["prunable"] = True
            current["prunable_reason"] = value or None

    if current:
        records.append(current)
    return records


def build_statuses(
    records: List[Dict[str, Any]],
    *,
    repo_root: Path,
    exists: Callable[[str], bool] = os.path.exists,
) -> List[WorktreeStatus]:
    statuses: List[WorktreeStatus] = []
    for rec in records:
        path = Path(rec["path"])
        try:
            relative = os.path.relpath(path, repo_root)
        except ValueError:
            relative = str(path)
        locked = bool(rec.get("locked"))
        prunable = bool(rec.get("prunable"))
        statuses.append(
            WorktreeStatus(
                path=path,
                relative_path="" if relative == "." else relative,
                head=rec.get("head"),
                branch=rec.get("branch"),
                locked=locked,
                lock_reason=rec.get("lock_reason"),
                prunable=prunable,
                prunable_reason=rec.get("prunable_reason"),
                bare=bool(rec.get("bare")),
                detached=bool(rec.get("detached")),
                health_status=classify_health(prunable=prunable, locked=locked, exists=exists(str(path))),
            )
        )
    return statuses


__all__ = ["classify_health", "parse_worktree_porcelain", "build_statuses"]
