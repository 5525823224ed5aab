from __future__ import annotations

from pathlib import Path

import pytest

from convoy.core.config import ConfigManager, get_cached_config
from convoy.core.config.domains import (
    GitConfig,
    MainSyncConfig,
    MergeConfig,
    ParallelConfig,
    QualityGatesConfig,
    ResolverConfig,
    SchedulerMode,
    WorktreesConfig,
)
from convoy.core.exceptions import ConfigError


def _write_project_config(repo: Path, name: str, text: str) -> None:
    cfg_dir = repo / ".convoy" / "config"
    cfg_dir.mkdir(parents=True, exist_ok=True)
    (cfg_dir / name).write_text(text, encoding="utf-8")


def test_bundled_defaults(tmp_path: Path) -> None:
    cfg = ConfigManager(tmp_path, environ={}).load_config()

    assert cfg["merge"]["targetBranch"] == "parallel/integration"
    assert cfg["worktrees"]["maxConcurrency"] == 6
    assert cfg["mainSync"]["maxRetries"] == 10
    assert cfg["qualityGates"]["fallbackStrategy"] == "revert"


def test_project_config_overrides_defaults(tmp_path: Path) -> None:
    _write_project_config(tmp_path, "merge.yaml", "merge:\n  targetBranch: parallel/release\n")

    cfg = ConfigManager(tmp_path, environ={}).load_config()

    assert cfg["merge"]["targetBranch"] == "parallel/release"
    assert cfg["merge"]["baseRef"] == "HEAD"


def test_env_override_matches_keys_case_insensitively(tmp_path: Path) -> None:
    environ = {
        "CONVOY_MERGE__TARGETBRANCH": "parallel/env",
        "CONVOY_WORKTREES__MAXCONCURRENCY": "3",
    }

    cfg = ConfigManager(tmp_path, environ=environ).load_config()

    assert cfg["merge"]["targetBranch"] == "parallel/env"
    assert cfg["worktrees"]["maxConcurrency"] == 3


def test_env_override_wins_over_project_config(tmp_path: Path) -> None:
    _write_project_config(tmp_path, "merge.yaml", "merge:\n  targetBranch: parallel/project\n")

    cfg = ConfigManager(tmp_path, environ={"CONVOY_MERGE__TARGETBRANCH": "parallel/env"}).load_config()

    assert cfg["merge"]["targetBranch"] == "parallel/env"


def test_malformed_env_override_is_ignored(tmp_path: Path) -> None:
    cfg = ConfigManager(tmp_path, environ={"CONVOY_MERGE____X": "1"}).load_config()

    assert "x" not in cfg["merge"]


def test_invalid_value_raises_config_error(tmp_path: Path) -> None:
    _write_project_config(tmp_path, "worktrees.yaml", "worktrees:\n  maxConcurrency: 0\n")

    with pytest.raises(ConfigError) as excinfo:
        ConfigManager(tmp_path, environ={}).load_config()

    assert "worktrees.maxConcurrency" in str(excinfo.value)


def test_non_mapping_yaml_raises_config_error(tmp_path: Path) -> None:
    _write_project_config(tmp_path, "broken.yaml", "- just\n- a list\n")

    with pytest.raises(ConfigError):
        ConfigManager(tmp_path, environ={}).load_config()


def test_invalid_yaml_raises_config_error(tmp_path: Path) -> None:
    _write_project_config(tmp_path, "broken.yaml", "merge: [unclosed\n")

    with pytest.raises(ConfigError):
        ConfigManager(tmp_path, environ={}).load_config()


def test_cached_config_tracks_env_changes(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    first = get_cached_config(tmp_path)
    assert get_cached_config(tmp_path) is first

    monkeypatch.setenv("CONVOY_MERGE__TARGETBRANCH", "parallel/changed")

    assert get_cached_config(tmp_path)["merge"]["targetBranch"] == "parallel/changed"


def test_domain_accessors_read_defaults(tmp_path: Path) -> None:
    cfg = ConfigManager(tmp_path, environ={}).load_config()

    git = GitConfig(tmp_path, config=cfg)
    worktrees = WorktreesConfig(tmp_path, config=cfg)
    main_sync = MainSyncConfig(tmp_path, config=cfg)
    resolver = ResolverConfig(tmp_path, config=cfg)
    gates = QualityGatesConfig(tmp_path, config=cfg)

    assert git.binary == "git"
    assert worktrees.base_directory == tmp_path.resolve() / "worktrees"
    assert worktrees.max_concurrency == 6
    assert "worker/" in worktrees.ephemeral_branch_prefixes
    assert main_sync.retry_base_delay_seconds == 2.0
    assert main_sync.retry_max_delay_seconds == 30.0
    assert resolver.max_attempts == 3
    assert gates.max_fix_attempts == 2
    assert gates.max_test_reruns == 2
    assert MergeConfig(tmp_path, config=cfg).continue_on_blocked_independent is True
    assert ParallelConfig(tmp_path, config=cfg).scheduler_mode is SchedulerMode.BALANCED


def test_scheduler_mode_off_from_env(tmp_path: Path) -> None:
    cfg = ConfigManager(tmp_path, environ={"CONVOY_PARALLEL__SCHEDULERMODE": "off"}).load_config()

    assert ParallelConfig(tmp_path, config=cfg).scheduler_mode is SchedulerMode.OFF


def test_explicit_config_mapping_skips_loading(tmp_path: Path) -> None:
    cfg = {"merge": {"targetBranch": "parallel/explicit"}}

    assert MergeConfig(tmp_path, config=cfg).target_branch == "parallel/explicit"
    assert MergeConfig(tmp_path, config={}).target_branch == "parallel/integration"
