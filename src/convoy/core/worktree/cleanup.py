"""Tear down every ephemeral worktree of a repository.

Used by shutdown hooks and the ``convoy cleanup`` command. Removal failures
are collected, never raised, so one stuck directory cannot stop the rest of
the teardown; running it against an already-clean repository is a no-op.
"""
from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from convoy.core.events import EventStream
from convoy.core.events.models import CleanupCompleted

from .manager import WorktreeManager

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_PATTERNS = ("worker-*", "merge", "merge-*", "validator")


@dataclass
class CleanupResult:
    cleaned_up: List[Path] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "cleanedUp": [str(p) for p in self.cleaned_up],
            "errors": list(self.errors),
        }


@dataclass(frozen=True)
class EphemeralWorktree:
    name: str
    path: Path
    exists: bool


@dataclass
class CleanupStatus:
    worktrees_dir: Path
    main_sync: EphemeralWorktree
    workers: List[EphemeralWorktree] = field(default_factory=list)

    @property
    def total_workers(self) -> int:
        return len(self.workers)

    def to_dict(self) -> dict:
        return {
            "worktreesDir": str(self.worktrees_dir),
            "mainSync": {"path": str(self.main_sync.path), "exists": self.main_sync.exists},
            "workers": [{"name": w.name, "path": str(w.path), "exists": w.exists} for w in self.workers],
            "totalWorkers": self.total_workers,
        }


class WorktreeCleanupService:
    """Idempotent teardown of worker, merge and main-sync worktrees."""

    def __init__(
        self,
        manager: WorktreeManager,
        *,
        main_sync_name: str = "main-sync",
        patterns: Sequence[str] = DEFAULT_CLEANUP_PATTERNS,
        events: Optional[EventStream] = None,
    ) -> None:
        self.manager = manager
        self.main_sync_path = manager.worktrees_dir / main_sync_name
        self.patterns = tuple(patterns)
        self.events = events

    def _matches(self, name: str) -> bool:
        return any(fnmatch.fnmatchcase(name, pattern) for pattern in self.patterns)

    def ephemeral_paths(self) -> List[Path]:
        """Existing directories under the worktrees root matching the cleanup patterns."""
        root = self.manager.worktrees_dir
        if not root.is_dir():
            return []
        return sorted(
            entry for entry in root.iterdir() if entry.is_dir() and self._matches(entry.name)
        )

    def _remove(self, path: Path, label: str, result: CleanupResult) -> None:
        existed = path.exists()
        try:
            error = self.manager.remove_worktree_path(path)
        except Exception as exc:
            logger.warning("Cleanup of %s raised", path, exc_info=True)
            error = str(exc) or exc.__class__.__name__
        if error:
            result.errors.append(f"{label}: {error}")
        elif existed:
            result.cleaned_up.append(path)

    def cleanup_all(self) -> CleanupResult:
        """Remove main-sync and every pattern-matching worktree, then prune once."""
        result = CleanupResult()

        self._remove(self.main_sync_path, "main-sync", result)
        for path in self.ephemeral_paths():
            if path == self.main_sync_path:
                continue
            self._remove(path, str(path), result)

        # Prune failures are logged by the manager and do not fail the teardown.
        self.manager.prune()

        logger.info(
            "Worktree cleanup finished: %d removed, %d error(s)", len(result.cleaned_up), len(result.errors)
        )
        if self.events is not None:
            self.events.emit(
                CleanupCompleted(
                    cleaned_up=tuple(str(p) for p in result.cleaned_up),
                    errors=tuple(result.errors),
                )
            )
        return result

    def status(self) -> CleanupStatus:
        return CleanupStatus(
            worktrees_dir=self.manager.worktrees_dir,
            main_sync=EphemeralWorktree(
                name=self.main_sync_path.name,
                path=self.main_sync_path,
                exists=self.main_sync_path.exists(),
            ),
            workers=[
                EphemeralWorktree(name=p.name, path=p, exists=True)
                for p in self.ephemeral_paths()
                if p != self.main_sync_path
            ],
        )


def format_cleanup_result(result: CleanupResult) -> str:
    if not result.cleaned_up and not result.errors:
        return "No worktrees to clean up."

    lines: List[str] = []
    if result.cleaned_up:
        lines.append("Cleaned up:")
        lines.extend(f"  ✓ {p.name}" for p in result.cleaned_up)
    if result.errors:
        lines.append("")
        lines.append("Errors:")
        lines.extend(f"  ✗ {e}" for e in result.errors)
    lines.append("")
    lines.append(f"Status: {'Success' if result.success else 'Completed with errors'}")
    return "\n".join(lines)


def format_worktree_status(status: CleanupStatus) -> str:
    lines: List[str] = [
        "",
        "Worktree Status:",
        "",
        "  main-sync:",
        f"    Path: {status.main_sync.path}",
        f"    Exists: {'Yes' if status.main_sync.exists else 'No'}",
        "",
        f"  Workers ({status.total_workers}):",
    ]
    if not status.workers:
        lines.append("    (none)")
    else:
        lines.extend(f"    {'✓' if w.exists else '○'} {w.name}" for w in status.workers)
    return "\n".join(lines)


__all__ = [
    "CleanupResult",
    "CleanupStatus",
    "EphemeralWorktree",
    "WorktreeCleanupService",
    "format_cleanup_result",
    "format_worktree_status",
    "DEFAULT_CLEANUP_PATTERNS",
]
