"""Base class for domain-specific configuration accessors."""
from __future__ import annotations

from abc import ABC, abstractmethod
from functools import cached_property
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .cache import get_cached_config


class BaseDomainConfig(ABC):
    """Typed view over one top-level configuration section.

    Usage:
        class MergeConfig(BaseDomainConfig):
            def _config_section(self) -> str:
                return "merge"

            @cached_property
            def target_branch(self) -> str:
                return str(self.section.get("targetBranch", "parallel/integration"))

        cfg = MergeConfig(repo_root=Path("/path/to/project"))

    ``config`` may be passed explicitly (tests, embedding applications); when it
    is omitted the cached, validated configuration for ``repo_root`` is used.
    """

    def __init__(self, repo_root: Path, *, config: Optional[Mapping[str, Any]] = None) -> None:
        self.repo_root = Path(repo_root).expanduser().resolve()
        self._config: Mapping[str, Any] = (
            config if config is not None else get_cached_config(self.repo_root)
        )

    @abstractmethod
    def _config_section(self) -> str:
        """Return the top-level config key for this domain."""
        ...

    @cached_property
    def section(self) -> Dict[str, Any]:
        return dict(self._config.get(self._config_section(), {}) or {})

    def resolve_path(self, value: str) -> Path:
        """Resolve a configured path relative to the repository root."""
        path = Path(value).expanduser()
        return path if path.is_absolute() else self.repo_root / path


__all__ = ["BaseDomainConfig"]
