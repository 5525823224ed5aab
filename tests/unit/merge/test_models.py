from __future__ import annotations

from convoy.core.merge import (
    CommitMetadata,
    MergeAttempt,
    MergeStatus,
    build_failure_message,
    different_task,
    disjoint_files,
    is_empty_cherry_pick,
)
from convoy.core.utils.subprocess import CommandResult


def _attempt(task_id: str, *files: str, seq: int = 1) -> MergeAttempt:
    meta = CommitMetadata(hash="a" * 40, short_hash="aaaaaaa", subject="s", file_names=tuple(files))
    return MergeAttempt(task_id=task_id, commit_hash="a" * 40, seq=seq, commit_metadata=meta)


def test_terminal_statuses() -> None:
    terminal = {s for s in MergeStatus if s.is_terminal}

    assert terminal == {MergeStatus.BLOCKED, MergeStatus.SUCCEEDED, MergeStatus.FAILED}


def test_settle_wakes_waiters() -> None:
    attempt = _attempt("T1")
    assert not attempt.wait(timeout=0)

    attempt.settle(MergeStatus.SUCCEEDED)

    assert attempt.wait(timeout=0)
    assert attempt.is_terminal


def test_disjoint_files_requires_other_task_and_no_shared_file() -> None:
    blocked = _attempt("T1", "src/a.py")

    assert disjoint_files(_attempt("T2", "src/b.py"), blocked)
    assert not disjoint_files(_attempt("T2", "src/a.py"), blocked)
    assert not disjoint_files(_attempt("T1", "src/b.py"), blocked)


def test_different_task() -> None:
    assert different_task(_attempt("T2"), _attempt("T1"))
    assert not different_task(_attempt("T1"), _attempt("T1"))


def test_failure_message_lists_conflicts_and_suggestions() -> None:
    message = build_failure_message(
        task_id="T7",
        task_title=None,
        commit="0123456789abcdef",
        reason="Conflicts remain after 2 attempts",
        conflict_files=["src/a.py", "src/b.py"],
    )

    lines = message.splitlines()
    assert lines[:5] == [
        "Task: T7",
        "Title: T7",
        "Commit: 0123456",
        "Reason: Conflicts remain after 2 attempts",
        "Conflict files: src/a.py, src/b.py",
    ]
    assert "git cherry-pick --abort" in message


def test_failure_message_without_conflicts() -> None:
    message = build_failure_message(task_id="T7", task_title="Add parser", commit="abc", reason="boom")

    assert "Title: Add parser" in message
    assert "Conflict files" not in message


def test_empty_cherry_pick_detection() -> None:
    empty = CommandResult(
        args=("cherry-pick", "x"),
        stdout="",
        stderr="The previous cherry-pick is now empty, possibly due to conflict resolution.",
        exit_code=1,
        duration_ms=3,
    )
    conflict = CommandResult(
        args=("cherry-pick", "x"),
        stdout="CONFLICT (content): Merge conflict in a.txt",
        stderr="error: could not apply x",
        exit_code=1,
        duration_ms=3,
    )

    assert is_empty_cherry_pick(empty)
    assert not is_empty_cherry_pick(conflict)
