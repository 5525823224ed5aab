"""Worker worktree lifecycle: creation, health, ownership metadata and teardown."""
from __future__ import annotations

from .cleanup import (
    CleanupResult,
    CleanupStatus,
    WorktreeCleanupService,
    format_cleanup_result,
    format_worktree_status,
)
from .health import classify_health, parse_worktree_porcelain
from .manager import WorktreeManager, sanitize_path_segment
from .metadata import ManagedMetadata, read_managed_metadata
from .models import (
    CreateWorktreeRequest,
    Worktree,
    WorktreeHealth,
    WorktreeHealthSummary,
    WorktreeStatus,
    WorktreeValidation,
)

__all__ = [
    "CleanupResult",
    "CleanupStatus",
    "CreateWorktreeRequest",
    "ManagedMetadata",
    "Worktree",
    "WorktreeCleanupService",
    "WorktreeHealth",
    "WorktreeHealthSummary",
    "WorktreeManager",
    "WorktreeStatus",
    "WorktreeValidation",
    "classify_health",
    "format_cleanup_result",
    "format_worktree_status",
    "parse_worktree_porcelain",
    "read_managed_metadata",
    "sanitize_path_segment",
]
