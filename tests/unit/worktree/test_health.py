from __future__ import annotations

from pathlib import Path

import pytest

from convoy.core.worktree import WorktreeHealth, classify_health, parse_worktree_porcelain, sanitize_path_segment
from convoy.core.worktree.health import build_statuses


@pytest.mark.parametrize(
    "prunable, locked, exists, expected",
    [
        (True, True, True, WorktreeHealth.PRUNABLE),
        (True, False, False, WorktreeHealth.PRUNABLE),
        (False, True, False, WorktreeHealth.LOCKED),
        (False, True, True, WorktreeHealth.LOCKED),
        (False, False, True, WorktreeHealth.ACTIVE),
        (False, False, False, WorktreeHealth.STALE),
    ],
)
def test_classify_health_precedence(prunable, locked, exists, expected) -> None:
    assert classify_health(prunable=prunable, locked=locked, exists=exists) is expected


PORCELAIN = (
    "worktree /repo\n"
    "HEAD 1111111111111111111111111111111111111111\n"
    "branch refs/heads/main\n"
    "\n"
    "worktree /repo/worktrees/worker-a\n"
    "HEAD 2222222222222222222222222222222222222222\n"
    "branch refs/heads/worker/a\n"
    "locked worker:a\n"
    "\n"
    "worktree /repo/worktrees/gone\n"
    "HEAD 3333333333333333333333333333333333333333\n"
    "detached\n"
    "prunable gitdir file points to non-existent location\n"
    "\n"
)


def test_parse_newline_porcelain() -> None:
    records = parse_worktree_porcelain(PORCELAIN)

    assert [r["path"] for r in records] == ["/repo", "/repo/worktrees/worker-a", "/repo/worktrees/gone"]
    assert records[0]["branch"] == "main"
    assert records[1]["locked"] is True
    assert records[1]["lock_reason"] == "worker:a"
    assert records[2]["detached"] is True
    assert records[2]["prunable_reason"] == "gitdir file points to non-existent location"


def test_parse_nul_porcelain_matches_newline_form() -> None:
    nul = PORCELAIN.replace("\n", "\0")

    assert parse_worktree_porcelain(nul) == parse_worktree_porcelain(PORCELAIN)


def test_build_statuses_classifies_each_entry() -> None:
    existing = {"/repo", "/repo/worktrees/worker-a"}

    statuses = build_statuses(
        parse_worktree_porcelain(PORCELAIN),
        repo_root=Path("/repo"),
        exists=lambda p: p in existing,
    )

    assert [s.health_status for s in statuses] == [
        WorktreeHealth.ACTIVE,
        WorktreeHealth.LOCKED,
        WorktreeHealth.PRUNABLE,
    ]
    assert statuses[0].relative_path == ""
    assert statuses[1].relative_path == "worktrees/worker-a"


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("worker-1", "worker-1"),
        ("../../etc/passwd", ".._.._etc_passwd"),
        ("a b/c", "a_b_c"),
        ("", "unknown"),
        ("///", "unknown"),
        (".", "_dot_"),
        ("..", "_dotdot_"),
    ],
)
def test_sanitize_path_segment(raw: str, expected: str) -> None:
    assert sanitize_path_segment(raw) == expected


def test_sanitize_truncates_long_ids() -> None:
    assert len(sanitize_path_segment("x" * 500)) == 120
