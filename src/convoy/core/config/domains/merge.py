"""Domain-specific configuration for the merge train and conflict resolver."""
from __future__ import annotations

from functools import cached_property

from ..base import BaseDomainConfig


class MergeConfig(BaseDomainConfig):
    """Accessor for the ``merge`` section."""

    def _config_section(self) -> str:
        return "merge"

    @cached_property
    def target_branch(self) -> str:
        return str(self.section.get("targetBranch", "parallel/integration"))

    @cached_property
    def base_ref(self) -> str:
        return str(self.section.get("baseRef", "HEAD"))

    @cached_property
    def continue_on_blocked_independent(self) -> bool:
        return bool(self.section.get("continueOnBlockedIndependent", True))


class ResolverConfig(BaseDomainConfig):
    """Accessor for the ``resolver`` section.

    ``max_attempts`` bounds conflict-resolution retries only; validation
    retries are configured separately under ``qualityGates``.
    """

    def _config_section(self) -> str:
        return "resolver"

    @cached_property
    def enabled(self) -> bool:
        return bool(self.section.get("enabled", True))

    @cached_property
    def max_attempts(self) -> int:
        return int(self.section.get("maxAttempts", 3))

    @cached_property
    def retry_delay_seconds(self) -> float:
        return int(self.section.get("retryDelayMs", 2000)) / 1000.0

    @cached_property
    def escalation(self) -> str:
        return str(self.section.get("escalation", "block"))


__all__ = ["MergeConfig", "ResolverConfig"]
