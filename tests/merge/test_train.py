from __future__ import annotations

from pathlib import Path

import pytest

from convoy.core.events import EventStream
from convoy.core.gates import CheckConfig, ValidationGate, ValidationStatus, prepare_validator_worktree
from convoy.core.merge import MergeStatus, MergeTrain, prepare_merge_worktree
from convoy.core.sync import MainSyncCoordinator
from convoy.core.utils.subprocess import CommandExecutor
from convoy.core.worktree import WorktreeManager
from helpers.fakes import RecordingResolver, worker_commit
from helpers.git_helpers import git, git_commit, git_head, git_log_subjects, git_status_porcelain

pytestmark = pytest.mark.requires_git

TARGET = "parallel/integration"


@pytest.fixture
def merge_path(manager: WorktreeManager) -> Path:
    return prepare_merge_worktree(manager, target_branch=TARGET)


def _train(executor: CommandExecutor, merge_path: Path, manager: WorktreeManager, events: EventStream, **kwargs) -> MergeTrain:
    kwargs.setdefault("sleep", lambda _s: None)
    return MergeTrain(
        executor,
        merge_worktree=merge_path,
        target_branch=TARGET,
        repo_root=manager.repo_root,
        events=events,
        **kwargs,
    )


def test_clean_merge_is_validated_and_succeeds(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path, tmp_path: Path
) -> None:
    commit = worker_commit(
        manager,
        "worker-1",
        "Add parser module",
        {"src/parser.py": "def parse():\n    return 1\n", "src/lexer.py": "TOKENS = []\n", "docs/parser.md": "# Parser\n"},
    )
    validator = prepare_validator_worktree(manager, branch_name="parallel/validator", target_branch=TARGET)
    gate = ValidationGate(
        executor,
        validator_worktree=validator,
        target_branch=TARGET,
        merge_worktree=merge_path,
        checks={
            "lint": CheckConfig(id="lint", command="true", required=True),
            "unit": CheckConfig(id="unit", command="true", required=True),
        },
        logs_dir=tmp_path / "logs",
        events=events,
    )
    train = _train(executor, merge_path, manager, events, gate=gate)

    attempt = train.enqueue("T1", commit, worker_id="worker-1")
    train.drain()

    assert attempt.status is MergeStatus.SUCCEEDED
    assert attempt.commit_metadata is not None
    assert attempt.commit_metadata.files_changed == 3
    assert attempt.plan_id is not None
    plan = gate.plans[0]
    assert plan.status is ValidationStatus.PASSED
    assert [o.id for o in plan.check_outcomes] == ["lint", "unit"]
    assert (merge_path / "src" / "parser.py").exists()
    assert git_log_subjects(merge_path)[0] == "Add parser module"
    assert (tmp_path / "logs" / plan.plan_id / "summary.json").is_file()

    types = events.types()
    assert types.index("parallel:merge-queued") < types.index("parallel:merge-started")
    assert types.index("parallel:validation-passed") < types.index("parallel:merge-succeeded")
    gate.stop(timeout=5)


def test_unresolved_conflict_blocks_and_halts(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    first = worker_commit(manager, "worker-1", "Rewrite readme intro", {"README.md": "# version one\n"})
    second = worker_commit(manager, "worker-2", "Reword readme intro", {"README.md": "# version two\n"})
    resolver = RecordingResolver(False)
    train = _train(executor, merge_path, manager, events, resolver=resolver, max_attempts=2)

    a1 = train.enqueue("T1", first)
    a2 = train.enqueue("T2", second)
    train.drain()

    assert a1.status is MergeStatus.SUCCEEDED
    assert a2.status is MergeStatus.BLOCKED
    assert [r.attempt for r in resolver.requests] == [1, 2]
    assert resolver.requests[0].conflict_files == ("README.md",)
    assert a2.conflict_files == ["README.md"]
    assert a2.attempt_count == 2
    assert "Conflict files: README.md" in (a2.reason or "")
    assert train.halted
    assert git_status_porcelain(merge_path) == ""
    assert events.types().count("parallel:merge-resolving") == 2
    assert "parallel:train-halted" in events.types()


def test_resolver_that_fixes_conflict_lets_merge_continue(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    first = worker_commit(manager, "worker-1", "Rewrite readme intro", {"README.md": "# version one\n"})
    second = worker_commit(manager, "worker-2", "Reword readme intro", {"README.md": "# version two\n"})

    def _rewrite_and_stage(request) -> None:
        (request.worktree_path / "README.md").write_text("# merged\n", encoding="utf-8")
        git(request.worktree_path, "add", "README.md")

    resolver = RecordingResolver(True, on_resolve=_rewrite_and_stage)
    train = _train(executor, merge_path, manager, events, resolver=resolver)

    train.enqueue("T1", first)
    a2 = train.enqueue("T2", second)
    train.drain()

    assert a2.status is MergeStatus.SUCCEEDED
    assert a2.resolved
    assert (merge_path / "README.md").read_text(encoding="utf-8") == "# merged\n"
    assert not train.halted


def test_resolver_disabled_blocks_immediately(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    first = worker_commit(manager, "worker-1", "Rewrite readme intro", {"README.md": "# version one\n"})
    second = worker_commit(manager, "worker-2", "Reword readme intro", {"README.md": "# version two\n"})
    resolver = RecordingResolver(True)
    train = _train(executor, merge_path, manager, events, resolver=resolver, resolver_enabled=False)

    train.enqueue("T1", first)
    a2 = train.enqueue("T2", second)
    train.drain()

    assert a2.status is MergeStatus.BLOCKED
    assert resolver.requests == []


def test_balanced_abort_lets_independent_work_pass(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    c1 = worker_commit(manager, "worker-1", "Rewrite readme intro", {"README.md": "# version one\n"})
    c2 = worker_commit(manager, "worker-2", "Reword readme intro", {"README.md": "# version two\n"})
    c3 = worker_commit(manager, "worker-3", "Add changelog", {"CHANGELOG.md": "## 0.1\n"})
    c4 = worker_commit(manager, "worker-4", "Polish readme intro", {"README.md": "# version four\n"})
    train = _train(
        executor,
        merge_path,
        manager,
        events,
        resolver=RecordingResolver(False),
        max_attempts=1,
        escalation="abort",
        scheduler_mode="balanced",
    )

    attempts = [train.enqueue(f"T{i}", c) for i, c in enumerate((c1, c2, c3, c4), start=1)]
    train.drain()

    assert [a.status for a in attempts] == [
        MergeStatus.SUCCEEDED,
        MergeStatus.BLOCKED,
        MergeStatus.SUCCEEDED,
        MergeStatus.BLOCKED,
    ]
    assert "Depends on blocked task T2" in (attempts[3].reason or "")
    assert not train.halted
    assert [a.task_id for a in train.blocked] == ["T2", "T4"]
    assert (merge_path / "CHANGELOG.md").exists()


def test_strict_mode_halts_even_with_abort_escalation(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    c1 = worker_commit(manager, "worker-1", "Rewrite readme intro", {"README.md": "# version one\n"})
    c2 = worker_commit(manager, "worker-2", "Reword readme intro", {"README.md": "# version two\n"})
    c3 = worker_commit(manager, "worker-3", "Add changelog", {"CHANGELOG.md": "## 0.1\n"})
    train = _train(
        executor,
        merge_path,
        manager,
        events,
        resolver=RecordingResolver(False),
        max_attempts=1,
        escalation="abort",
        scheduler_mode="strict",
    )

    train.enqueue("T1", c1)
    train.enqueue("T2", c2)
    a3 = train.enqueue("T3", c3)
    train.drain()

    assert train.halted
    assert a3.status is MergeStatus.QUEUED
    assert [a.task_id for a in train.pending] == ["T3"]

    train.resume()
    train.drain()

    assert a3.status is MergeStatus.SUCCEEDED
    assert "parallel:train-resumed" in events.types()


def test_attempts_integrate_in_enqueue_order(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    commits = [
        worker_commit(manager, f"worker-{i}", f"Add file {i}", {f"file-{i}.txt": f"{i}\n"}) for i in range(4)
    ]
    train = _train(executor, merge_path, manager, events)

    for i, commit in enumerate(commits):
        train.enqueue(f"T{i}", commit)
    train.drain()

    assert git_log_subjects(merge_path)[:4] == ["Add file 3", "Add file 2", "Add file 1", "Add file 0"]
    assert [a.seq for a in train.attempts] == [1, 2, 3, 4]


def test_already_applied_commit_succeeds_without_new_commit(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    commit = worker_commit(manager, "worker-1", "Add notes", {"notes.txt": "hello\n"})
    train = _train(executor, merge_path, manager, events)

    train.enqueue("T1", commit)
    train.drain()
    head = git_head(merge_path)
    again = train.enqueue("T1-again", commit)
    train.drain()

    assert again.status is MergeStatus.SUCCEEDED
    assert again.integrated_commit is None
    assert git_head(merge_path) == head
    assert git_status_porcelain(merge_path) == ""


def test_dirty_merge_worktree_fails_attempt(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    commit = worker_commit(manager, "worker-1", "Add notes", {"notes.txt": "hello\n"})
    (merge_path / "README.md").write_text("uncommitted\n", encoding="utf-8")
    train = _train(executor, merge_path, manager, events)

    attempt = train.enqueue("T1", commit)
    train.drain()

    assert attempt.status is MergeStatus.FAILED
    assert "uncommitted changes" in (attempt.reason or "")


def test_success_fast_forwards_main_sync(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    main_sync = MainSyncCoordinator(manager, events=events, sleep=lambda _s: None)
    main_sync.create()
    commit = worker_commit(manager, "worker-1", "Add notes", {"notes.txt": "hello\n"})
    train = _train(executor, merge_path, manager, events, main_sync=main_sync)

    train.enqueue("T1", commit)
    train.drain()

    assert git_head(main_sync.path) == git_head(merge_path)
    assert train.pending_main_sync == {}


def test_background_consumer(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    commit = worker_commit(manager, "worker-1", "Add notes", {"notes.txt": "hello\n"})
    train = _train(executor, merge_path, manager, events)
    train.start()
    try:
        attempt = train.enqueue("T1", commit)
        assert attempt.wait(timeout=30)
    finally:
        train.stop(timeout=10)

    assert attempt.status is MergeStatus.SUCCEEDED


def _failing_gate(executor: CommandExecutor, manager: WorktreeManager, merge_path: Path, tmp_path: Path, events: EventStream) -> ValidationGate:
    validator = prepare_validator_worktree(manager, branch_name="parallel/validator", target_branch=TARGET)
    return ValidationGate(
        executor,
        validator_worktree=validator,
        target_branch=TARGET,
        merge_worktree=merge_path,
        checks={"unit": CheckConfig(id="unit", command="test ! -f bad.txt", required=True)},
        max_fix_attempts=0,
        max_test_reruns=0,
        fallback_strategy="quarantine",
        logs_dir=tmp_path / "logs",
        events=events,
    )


def test_strict_mode_quarantined_validation_halts_independent_work(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path, tmp_path: Path
) -> None:
    c1 = worker_commit(manager, "worker-1", "Add bad marker", {"bad.txt": "broken\n"})
    c2 = worker_commit(manager, "worker-2", "Add changelog", {"CHANGELOG.md": "## 0.1\n"})
    gate = _failing_gate(executor, manager, merge_path, tmp_path, events)
    train = _train(executor, merge_path, manager, events, gate=gate, scheduler_mode="strict")

    a1 = train.enqueue("T1", c1)
    a2 = train.enqueue("T2", c2)
    try:
        train.drain()
    finally:
        gate.stop(timeout=10)

    assert a1.status is MergeStatus.BLOCKED
    blocked = [r.event for r in events.history if r.type == "parallel:merge-blocked"]
    assert [e.escalation for e in blocked] == ["quarantine"]
    assert train.halted
    assert a2.status is MergeStatus.QUEUED
    assert [a.task_id for a in train.pending] == ["T2"]
    assert not (merge_path / "CHANGELOG.md").exists()


def test_blocked_attempt_stops_independent_work_when_continuation_is_off(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    c1 = worker_commit(manager, "worker-1", "Rewrite readme intro", {"README.md": "# version one\n"})
    c2 = worker_commit(manager, "worker-2", "Reword readme intro", {"README.md": "# version two\n"})
    c3 = worker_commit(manager, "worker-3", "Add changelog", {"CHANGELOG.md": "## 0.1\n"})
    train = _train(
        executor,
        merge_path,
        manager,
        events,
        resolver=RecordingResolver(False),
        max_attempts=1,
        escalation="abort",
        scheduler_mode="balanced",
        continue_on_blocked_independent=False,
    )

    attempts = [train.enqueue(f"T{i}", c) for i, c in enumerate((c1, c2, c3), start=1)]
    train.drain()

    assert [a.status for a in attempts] == [MergeStatus.SUCCEEDED, MergeStatus.BLOCKED, MergeStatus.QUEUED]
    assert train.halted
    assert not (merge_path / "CHANGELOG.md").exists()

    train.resume()
    train.drain()

    assert attempts[2].status is MergeStatus.SUCCEEDED


def test_coalescing_gate_settles_attempts_when_verdict_arrives(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path, tmp_path: Path
) -> None:
    c1 = worker_commit(manager, "worker-1", "Add notes", {"notes.txt": "hello\n"})
    c2 = worker_commit(manager, "worker-2", "Add changelog", {"CHANGELOG.md": "## 0.1\n"})
    validator = prepare_validator_worktree(manager, branch_name="parallel/validator", target_branch=TARGET)
    gate = ValidationGate(
        executor,
        validator_worktree=validator,
        target_branch=TARGET,
        merge_worktree=merge_path,
        checks={"unit": CheckConfig(id="unit", command="true", required=True)},
        mode="coalesce",
        logs_dir=tmp_path / "logs",
        events=events,
    )
    train = _train(executor, merge_path, manager, events, gate=gate)

    a1 = train.enqueue("T1", c1)
    a2 = train.enqueue("T2", c2)
    try:
        train.drain()
        assert a1.wait(timeout=30)
        assert a2.wait(timeout=30)
    finally:
        gate.stop(timeout=10)

    assert a1.status is MergeStatus.SUCCEEDED
    assert a2.status is MergeStatus.SUCCEEDED
    assert a1.plan_id is not None and a2.plan_id is not None
    assert {a1.plan_id, a2.plan_id} <= {plan.plan_id for plan in gate.plans}
    assert all(plan.status is ValidationStatus.PASSED for plan in gate.plans)


def test_failed_main_sync_is_retried_then_alerts(
    manager: WorktreeManager, executor: CommandExecutor, events: EventStream, merge_path: Path
) -> None:
    sleeps = []
    main_sync = MainSyncCoordinator(
        manager, events=events, max_retries=2, retry_base_delay=1.0, retry_max_delay=5.0, sleep=sleeps.append
    )
    main_sync.create()
    git_commit(main_sync.path, "Mirror-only commit", {"mirror.txt": "local\n"})
    commit = worker_commit(manager, "worker-1", "Add notes", {"notes.txt": "hello\n"})
    train = _train(executor, merge_path, manager, events, main_sync=main_sync)

    attempt = train.enqueue("T1", commit)
    train.drain()

    assert attempt.status is MergeStatus.SUCCEEDED
    assert list(train.pending_main_sync) == ["T1"]
    assert events.types()[-1] == "parallel:main-sync-failed"

    result = train.retry_main_sync()

    assert result is not None and not result.success
    assert sleeps == [1.0, 2.0]
    types = events.types()
    assert types.count("parallel:main-sync-retrying") == 2
    alerts = [r for r in events.history if r.type == "parallel:main-sync-alert"]
    assert len(alerts) == 1
    assert alerts[0].event.affected_task_count == 1
    assert list(train.pending_main_sync) == ["T1"]

    git(main_sync.path, "reset", "--hard", "HEAD~1")
    result = train.retry_main_sync()

    assert result is not None and result.success
    assert git_head(main_sync.path) == git_head(merge_path)
    assert train.pending_main_sync == {}
    assert train.retry_main_sync() is None
