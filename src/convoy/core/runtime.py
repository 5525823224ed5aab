"""Wire the coordination components for one repository from its configuration."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, List, Mapping, Optional

from convoy.core.config.cache import get_cached_config
from convoy.core.config.domains import (
    GitConfig,
    LoggingConfig,
    MainSyncConfig,
    MergeConfig,
    ParallelConfig,
    QualityGatesConfig,
    ResolverConfig,
    WorktreesConfig,
)
from convoy.core.events import EventStream, JsonlEventSink
from convoy.core.gates import FixAction, ValidationGate, prepare_validator_worktree
from convoy.core.merge import ConflictResolver, MergeTrain, TaskLookup, prepare_merge_worktree
from convoy.core.sync import MainSyncCoordinator
from convoy.core.utils.subprocess import CommandExecutor
from convoy.core.worktree import WorktreeCleanupService, WorktreeManager

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Components sharing one executor, limiter and event stream."""

    repo_root: Path
    config: Mapping[str, Any]
    events: EventStream
    executor: CommandExecutor
    manager: WorktreeManager
    main_sync: MainSyncCoordinator
    cleanup: WorktreeCleanupService
    _detach: List[Callable[[], None]] = field(default_factory=list, repr=False)

    def domain(self, cls):
        return cls(self.repo_root, config=self.config)

    def close(self) -> None:
        for detach in self._detach:
            detach()
        self._detach.clear()


def build_runtime(
    repo_root: Path,
    *,
    config: Optional[Mapping[str, Any]] = None,
    events: Optional[EventStream] = None,
    executor: Optional[CommandExecutor] = None,
    attach_sinks: bool = True,
) -> Runtime:
    """Build the shared components for ``repo_root``.

    With ``attach_sinks=False`` nothing is written under the repository until
    a component performs a mutation itself.
    """
    repo_root = Path(repo_root).resolve()
    cfg = config if config is not None else get_cached_config(repo_root)
    events = events or EventStream()

    detach: List[Callable[[], None]] = []
    logging_cfg = LoggingConfig(repo_root, config=cfg)
    if attach_sinks and logging_cfg.enabled and logging_cfg.events_enabled:
        detach.append(JsonlEventSink(logging_cfg.events_path).attach(events))

    executor = executor or CommandExecutor.from_config(GitConfig(repo_root, config=cfg))
    worktrees_cfg = WorktreesConfig(repo_root, config=cfg)
    manager = WorktreeManager.from_config(repo_root, worktrees_cfg, executor=executor, events=events)
    main_sync_cfg = MainSyncConfig(repo_root, config=cfg)
    main_sync = MainSyncCoordinator.from_config(manager, main_sync_cfg, events=events)
    cleanup = WorktreeCleanupService(
        manager,
        main_sync_name=main_sync_cfg.worktree_name,
        patterns=worktrees_cfg.cleanup_patterns,
        events=events,
    )
    return Runtime(
        repo_root=repo_root,
        config=cfg,
        events=events,
        executor=executor,
        manager=manager,
        main_sync=main_sync,
        cleanup=cleanup,
        _detach=detach,
    )


def build_merge_train(
    runtime: Runtime,
    *,
    resolver: Optional[ConflictResolver] = None,
    fix_action: Optional[FixAction] = None,
    task_lookup: Optional[TaskLookup] = None,
    sync_main: bool = True,
) -> MergeTrain:
    """Prepare the merge and validator worktrees and return an idle train."""
    merge_cfg = runtime.domain(MergeConfig)
    gates_cfg = runtime.domain(QualityGatesConfig)
    logging_cfg = runtime.domain(LoggingConfig)

    merge_path = prepare_merge_worktree(
        runtime.manager,
        target_branch=merge_cfg.target_branch,
        base_ref=merge_cfg.base_ref,
    )
    lock = threading.Lock()
    gate: Optional[ValidationGate] = None
    if gates_cfg.enabled and gates_cfg.checks:
        validator_path = prepare_validator_worktree(
            runtime.manager,
            branch_name=gates_cfg.validator_branch,
            target_branch=merge_cfg.target_branch,
        )
        gate = ValidationGate.from_config(
            runtime.executor,
            gates_cfg,
            validator_worktree=validator_path,
            target_branch=merge_cfg.target_branch,
            merge_worktree=merge_path,
            logs_dir=logging_cfg.validation_logs_directory,
            metadata_dir=runtime.manager.metadata_dir,
            fix_action=fix_action,
            integration_lock=lock,
            events=runtime.events,
        )

    train = MergeTrain.from_config(
        runtime.executor,
        merge_worktree=merge_path,
        merge_config=merge_cfg,
        resolver_config=runtime.domain(ResolverConfig),
        parallel_config=runtime.domain(ParallelConfig),
        repo_root=runtime.repo_root,
        resolver=resolver,
        gate=gate,
        main_sync=runtime.main_sync if sync_main else None,
        task_lookup=task_lookup,
        integration_lock=lock,
        events=runtime.events,
    )
    if gate is not None:
        gate.on_pause = lambda plan: train.halt(f"Validation {plan.plan_id} paused the train")
    logger.info("Merge train ready on %s at %s", merge_cfg.target_branch, merge_path)
    return train


__all__ = ["Runtime", "build_merge_train", "build_runtime"]
