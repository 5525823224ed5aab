"""
Convoy configuration management.

Configuration sources (highest to lowest priority):
1. Environment variables: CONVOY_<SECTION>__<KEY>[__<KEY>...]
2. Project config: <repo>/.convoy/config/*.yaml (alphabetical order)
3. Bundled defaults: convoy.data/config/*.yaml (alphabetical order)
"""
from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Tuple

import yaml
from jsonschema import Draft202012Validator

from convoy.core.exceptions import ConfigError
from convoy.core.utils.merge import deep_merge
from convoy.data import get_data_path, list_yaml_files, read_yaml

logger = logging.getLogger(__name__)

ENV_PREFIX = "CONVOY_"
PROJECT_CONFIG_DIRNAME = ".convoy"
CONFIG_SCHEMA = "config.schema.yaml"


class ConfigManager:
    """Load, merge, and validate Convoy configuration for one repository."""

    def __init__(self, repo_root: Path, *, environ: Optional[Mapping[str, str]] = None) -> None:
        self.repo_root = Path(repo_root).expanduser().resolve()
        self.core_config_dir = get_data_path("config")
        self.project_config_dir = self.repo_root / PROJECT_CONFIG_DIRNAME / "config"
        self._environ = environ if environ is not None else os.environ

    def load_yaml(self, path: Path) -> Dict[str, Any]:
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            raise ConfigError(f"Invalid YAML in {path}: {exc}", context={"path": str(path)}) from exc
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"Config file must contain a mapping: {path}",
                context={"path": str(path)},
            )
        return data

    def _project_files(self) -> List[Path]:
        if not self.project_config_dir.is_dir():
            return []
        return sorted(
            p for p in self.project_config_dir.iterdir() if p.is_file() and p.suffix in {".yaml", ".yml"}
        )

    def _iter_env_overrides(self) -> Iterator[Tuple[List[str], Any]]:
        for key in sorted(self._environ):
            if not key.startswith(ENV_PREFIX):
                continue
            raw = key[len(ENV_PREFIX):]
            segments = raw.split("__")
            if not raw or any(seg == "" for seg in segments):
                logger.warning("Ignoring malformed config override %s", key)
                continue
            value = self._environ[key]
            try:
                typed = yaml.safe_load(value) if value.strip() else value
            except yaml.YAMLError:
                typed = value
            yield segments, typed

    @staticmethod
    def _set_nested(root: Dict[str, Any], path: List[str], value: Any) -> None:
        cur = root
        for part in path[:-1]:
            key = _match_key(cur, part)
            nxt = cur.get(key)
            if not isinstance(nxt, dict):
                nxt = {}
                cur[key] = nxt
            cur = nxt
        cur[_match_key(cur, path[-1])] = value

    def apply_env_overrides(self, cfg: Dict[str, Any]) -> Dict[str, Any]:
        for path, value in self._iter_env_overrides():
            self._set_nested(cfg, path, value)
        return cfg

    def validate(self, cfg: Dict[str, Any]) -> None:
        schema = read_yaml("schemas", CONFIG_SCHEMA)
        validator = Draft202012Validator(schema)
        errors = sorted(validator.iter_errors(cfg), key=lambda e: list(e.path))
        if not errors:
            return
        first = errors[0]
        location = ".".join(str(p) for p in first.path) or "<root>"
        raise ConfigError(
            f"Invalid configuration at {location}: {first.message}",
            context={"path": location, "errors": [e.message for e in errors]},
        )

    def load_config(self, *, validate: bool = True) -> Dict[str, Any]:
        """Return the merged configuration dictionary."""
        cfg: Dict[str, Any] = {}
        for path in list_yaml_files("config"):
            cfg = deep_merge(cfg, self.load_yaml(path))
        for path in self._project_files():
            logger.debug("Loading project config %s", path)
            cfg = deep_merge(cfg, self.load_yaml(path))
        cfg = self.apply_env_overrides(cfg)
        if validate:
            self.validate(cfg)
        return cfg


def _match_key(container: Dict[str, Any], segment: str) -> str:
    """Case-insensitive lookup so ``CONVOY_MERGE__TARGETBRANCH`` hits ``targetBranch``."""
    for existing in container:
        if isinstance(existing, str) and existing.lower() == segment.lower():
            return existing
    return segment.lower()


__all__ = ["ConfigManager", "ENV_PREFIX", "PROJECT_CONFIG_DIRNAME"]
