"""Domain-specific configuration for log files and the event log."""
from __future__ import annotations

from functools import cached_property
from pathlib import Path

from ..base import BaseDomainConfig


class LoggingConfig(BaseDomainConfig):
    def _config_section(self) -> str:
        return "logging"

    @cached_property
    def enabled(self) -> bool:
        return bool(self.section.get("enabled", True))

    @cached_property
    def level(self) -> str:
        return str(self.section.get("level", "INFO"))

    @cached_property
    def path(self) -> Path:
        return self.resolve_path(str(self.section.get("path", ".convoy/logs/convoy.log")))

    @cached_property
    def events_enabled(self) -> bool:
        events = self.section.get("events") or {}
        return bool(events.get("enabled", True))

    @cached_property
    def events_path(self) -> Path:
        events = self.section.get("events") or {}
        return self.resolve_path(str(events.get("path", ".convoy/parallel-events.jsonl")))

    @cached_property
    def validation_logs_directory(self) -> Path:
        return self.resolve_path(
            str(self.section.get("validationLogsDirectory", ".convoy/logs/validations"))
        )


__all__ = ["LoggingConfig"]
