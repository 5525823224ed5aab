"""Domain-specific configuration for quality gates."""
from __future__ import annotations

from functools import cached_property
from typing import Any, Dict, List

from ..base import BaseDomainConfig


class QualityGatesConfig(BaseDomainConfig):
    """Accessor for the ``qualityGates`` section."""

    def _config_section(self) -> str:
        return "qualityGates"

    @cached_property
    def enabled(self) -> bool:
        return bool(self.section.get("enabled", True))

    @cached_property
    def mode(self) -> str:
        return str(self.section.get("mode", "per-merge"))

    @cached_property
    def batch_window_seconds(self) -> float:
        return int(self.section.get("batchWindowMs", 5000)) / 1000.0

    @cached_property
    def max_fix_attempts(self) -> int:
        return int(self.section.get("maxFixAttempts", 2))

    @cached_property
    def max_test_reruns(self) -> int:
        return int(self.section.get("maxTestReruns", 2))

    @cached_property
    def clean_before_run(self) -> bool:
        return bool(self.section.get("cleanBeforeRun", True))

    @cached_property
    def fallback_strategy(self) -> str:
        return str(self.section.get("fallbackStrategy", "revert"))

    @cached_property
    def validator_branch(self) -> str:
        return str(self.section.get("validatorBranch", "parallel/validator"))

    @cached_property
    def checks(self) -> Dict[str, Dict[str, Any]]:
        raw = self.section.get("checks") or {}
        return {str(k): dict(v or {}) for k, v in raw.items()}

    @cached_property
    def rules(self) -> Dict[str, List[str]]:
        raw = self.section.get("rules") or {}
        return {str(k): [str(c) for c in (v or [])] for k, v in raw.items()}


__all__ = ["QualityGatesConfig"]
