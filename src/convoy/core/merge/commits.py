"""Read commit details with git plumbing commands."""
from __future__ import annotations

import re
from pathlib import Path
from typing import List, Optional

from convoy.core.utils.subprocess import CommandExecutor, CommandResult

from .models import CommitMetadata

# Fields separated by NUL so subjects and bodies may contain anything else.
_SHOW_FORMAT = "%H%x00%h%x00%s%x00%B%x00%an%x00%ae%x00%aI%x00%cn%x00%ce%x00%cI%x00%P%x00%T"
_STAT_RE = re.compile(
    r"(\d+) files? changed(?:, (\d+) insertions?\(\+\))?(?:, (\d+) deletions?\(-\))?"
)
_EMPTY_PICK_MARKERS = ("cherry-pick is now empty", "previous cherry-pick is now empty")


def commit_files(executor: CommandExecutor, commit: str, cwd: Path) -> List[str]:
    res = executor.run(["diff-tree", "--no-commit-id", "--name-only", "-r", "--root", commit], cwd=cwd)
    if not res.ok:
        return []
    return [line.strip() for line in res.stdout.splitlines() if line.strip()]


def read_commit_metadata(executor: CommandExecutor, commit: str, cwd: Path) -> Optional[CommitMetadata]:
    """Return :class:`CommitMetadata` for ``commit``, or None when it cannot be read."""
    show = executor.run(["show", "-s", f"--format={_SHOW_FORMAT}", commit], cwd=cwd)
    if not show.ok:
        return None
    parts = show.stdout.split("\x00")
    if len(parts) < 12:
        return None
    (
        full_hash,
        short,
        subject,
        body,
        author_name,
        author_email,
        author_date,
        committer_name,
        committer_email,
        committer_date,
        parents_raw,
        tree_hash,
    ) = parts[:12]

    files = commit_files(executor, commit, cwd)
    files_changed = insertions = deletions = 0
    stat = executor.run(["diff-tree", "--no-commit-id", "-r", "--root", "--stat", commit], cwd=cwd)
    match = _STAT_RE.search(stat.stdout) if stat.ok else None
    if match:
        files_changed = int(match.group(1) or 0)
        insertions = int(match.group(2) or 0)
        deletions = int(match.group(3) or 0)

    return CommitMetadata(
        hash=full_hash.strip(),
        short_hash=short.strip(),
        subject=subject,
        body=body.rstrip(),
        author_name=author_name,
        author_email=author_email,
        author_date=author_date,
        committer_name=committer_name,
        committer_email=committer_email,
        committer_date=committer_date,
        parents=tuple(parents_raw.split()),
        tree_hash=tree_hash.strip(),
        files_changed=files_changed or len(files),
        insertions=insertions,
        deletions=deletions,
        file_names=tuple(files),
    )


def is_empty_cherry_pick(result: CommandResult) -> bool:
    text = f"{result.stdout}\n{result.stderr}".lower()
    return any(marker in text for marker in _EMPTY_PICK_MARKERS)


def unmerged_files(executor: CommandExecutor, cwd: Path) -> List[str]:
    res = executor.run(["diff", "--name-only", "--diff-filter=U"], cwd=cwd)
    if not res.ok:
        return []
    return [line.strip() for line in res.stdout.splitlines() if line.strip()]


__all__ = ["commit_files", "is_empty_cherry_pick", "read_commit_metadata", "unmerged_files"]
