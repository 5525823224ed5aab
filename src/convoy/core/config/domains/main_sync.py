"""Domain-specific configuration for the main-branch mirror."""
from __future__ import annotations

from functools import cached_property

from ..base import BaseDomainConfig


class MainSyncConfig(BaseDomainConfig):
    def _config_section(self) -> str:
        return "mainSync"

    @cached_property
    def remote(self) -> str:
        return str(self.section.get("remote", "origin"))

    @cached_property
    def branch(self) -> str:
        return str(self.section.get("branch", "main"))

    @cached_property
    def worktree_name(self) -> str:
        return str(self.section.get("worktreeName", "main-sync"))

    @cached_property
    def branch_name(self) -> str:
        return str(self.section.get("branchName", "parallel/main-sync"))

    @cached_property
    def max_retries(self) -> int:
        return int(self.section.get("maxRetries", 10))

    @cached_property
    def retry_base_delay_seconds(self) -> float:
        return int(self.section.get("retryBaseDelayMs", 2000)) / 1000.0

    @cached_property
    def retry_max_delay_seconds(self) -> float:
        return int(self.section.get("retryMaxDelayMs", 30000)) / 1000.0


__all__ = ["MainSyncConfig"]
