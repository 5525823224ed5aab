"""Domain-specific configuration for managed worktrees."""
from __future__ import annotations

from functools import cached_property
from pathlib import Path
from typing import List

from ..base import BaseDomainConfig


class WorktreesConfig(BaseDomainConfig):
    def _config_section(self) -> str:
        return "worktrees"

    @cached_property
    def base_directory(self) -> Path:
        return self.resolve_path(str(self.section.get("baseDirectory", "worktrees")))

    @cached_property
    def max_concurrency(self) -> int:
        return int(self.section.get("maxConcurrency", 6))

    @cached_property
    def lock_on_create(self) -> bool:
        return bool(self.section.get("lockOnCreate", True))

    @cached_property
    def metadata_directory(self) -> str:
        return str(self.section.get("metadataDirectory", ".convoy"))

    @cached_property
    def ephemeral_branch_prefixes(self) -> List[str]:
        raw = self.section.get("ephemeralBranchPrefixes") or ["worker/", "merge/", "parallel/", "convoy/", "wt/"]
        return [str(p) for p in raw]

    @cached_property
    def cleanup_patterns(self) -> List[str]:
        raw = self.section.get("cleanupPatterns") or ["worker-*", "merge", "merge-*", "validator"]
        return [str(p) for p in raw]


__all__ = ["WorktreesConfig"]
