"""Per-repository configuration cache shared by all domain configs."""
from __future__ import annotations

import hashlib
import os
import threading
from pathlib import Path
from typing import Any, Dict

from .manager import ENV_PREFIX, PROJECT_CONFIG_DIRNAME, ConfigManager

_config_cache: Dict[str, Dict[str, Any]] = {}
_cache_lock = threading.Lock()


def _cache_key(repo_root: Path) -> str:
    """Key on repo root, CONVOY_* env vars and project config file mtimes."""
    base = str(Path(repo_root).expanduser().resolve())
    env_items = sorted((k, v) for k, v in os.environ.items() if k.startswith(ENV_PREFIX))
    files = []
    cfg_dir = Path(base) / PROJECT_CONFIG_DIRNAME / "config"
    if cfg_dir.is_dir():
        for p in sorted(cfg_dir.iterdir()):
            if p.suffix in {".yaml", ".yml"}:
                st = p.stat()
                files.append((p.name, st.st_mtime_ns, st.st_size))
    fp = hashlib.sha256(repr((env_items, files)).encode("utf-8")).hexdigest()[:12]
    return f"{base}:{fp}"


def get_cached_config(repo_root: Path, *, validate: bool = True) -> Dict[str, Any]:
    """Return the merged configuration for ``repo_root``, loading it once per fingerprint."""
    key = _cache_key(repo_root)
    with _cache_lock:
        cached = _config_cache.get(key)
    if cached is not None:
        return cached
    cfg = ConfigManager(repo_root).load_config(validate=validate)
    with _cache_lock:
        _config_cache[key] = cfg
    return cfg


def clear_all_caches() -> None:
    with _cache_lock:
        _config_cache.clear()


__all__ = ["get_cached_config", "clear_all_caches"]
