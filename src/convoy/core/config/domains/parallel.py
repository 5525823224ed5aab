"""Domain-specific configuration for parallel scheduling."""
from __future__ import annotations

from enum import Enum
from functools import cached_property

from ..base import BaseDomainConfig


class SchedulerMode(str, Enum):
    STRICT = "strict"
    BALANCED = "balanced"
    OFF = "off"


class ParallelConfig(BaseDomainConfig):
    def _config_section(self) -> str:
        return "parallel"

    @cached_property
    def scheduler_mode(self) -> SchedulerMode:
        raw = self.section.get("schedulerMode", "balanced")
        if raw is False:
            return SchedulerMode.OFF
        return SchedulerMode(str(raw))


__all__ = ["ParallelConfig", "SchedulerMode"]
