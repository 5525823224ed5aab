"""Domain-specific configuration for git command execution."""
from __future__ import annotations

from functools import cached_property

from ..base import BaseDomainConfig


class GitConfig(BaseDomainConfig):
    def _config_section(self) -> str:
        return "git"

    @cached_property
    def binary(self) -> str:
        return str(self.section.get("binary", "git"))

    @cached_property
    def timeout_seconds(self) -> float:
        return int(self.section.get("timeoutMs", 60000)) / 1000.0

    @cached_property
    def lock_retry_attempts(self) -> int:
        return int(self.section.get("lockRetryAttempts", 4))

    @cached_property
    def lock_retry_base_delay_seconds(self) -> float:
        return int(self.section.get("lockRetryBaseDelayMs", 150)) / 1000.0


__all__ = ["GitConfig"]
