"""Bundled defaults (``config/*.yaml``) and JSON schemas (``schemas/*.yaml``)."""

from __future__ import annotations

from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml


def get_data_path(subpackage: str, filename: str = "") -> Path:
    """Filesystem path of ``convoy/data/<subpackage>[/<filename>]``."""
    base = Path(str(resources.files(__name__) / subpackage))
    return base / filename if filename else base


@lru_cache(maxsize=32)
def read_yaml(subpackage: str, filename: str) -> dict[str, Any]:
    return yaml.safe_load(get_data_path(subpackage, filename).read_text(encoding="utf-8")) or {}


def list_yaml_files(subpackage: str) -> list[Path]:
    """Bundled YAML files of ``subpackage``, sorted by name."""
    base = get_data_path(subpackage)
    if not base.is_dir():
        return []
    return sorted(p for p in base.iterdir() if p.suffix in (".yaml", ".yml"))


__all__ = ["get_data_path", "list_yaml_files", "read_yaml"]
