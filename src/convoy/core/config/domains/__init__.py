"""Typed accessors for each configuration section."""
from __future__ import annotations

from .git import GitConfig
from .logging import LoggingConfig
from .main_sync import MainSyncConfig
from .merge import MergeConfig, ResolverConfig
from .parallel import ParallelConfig, SchedulerMode
from .quality_gates import QualityGatesConfig
from .worktrees import WorktreesConfig

__all__ = [
    "GitConfig",
    "LoggingConfig",
    "MainSyncConfig",
    "MergeConfig",
    "ParallelConfig",
    "QualityGatesConfig",
    "ResolverConfig",
    "SchedulerMode",
    "WorktreesConfig",
]
