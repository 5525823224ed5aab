"""Git operation helpers for tests that need a real repository."""
from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Dict, List, Optional

# Identity for test commits; set in repo config because the executor strips GIT_* variables.
TEST_USER_NAME = "Test User"
TEST_USER_EMAIL = "test@example.com"


def git(repo_path: Path, *args: str, check: bool = True) -> subprocess.CompletedProcess:
    """Run ``git <args>`` in ``repo_path`` and return the completed process."""
    return subprocess.run(
        ["git", *args],
        cwd=repo_path,
        check=check,
        capture_output=True,
        text=True,
    )


def git_init(repo_path: Path, branch: str = "main") -> Path:
    """Initialize a repository with a configured identity and one commit."""
    repo_path.mkdir(parents=True, exist_ok=True)
    git(repo_path, "init", "-b", branch)
    git(repo_path, "config", "user.email", TEST_USER_EMAIL)
    git(repo_path, "config", "user.name", TEST_USER_NAME)
    git(repo_path, "config", "commit.gpgsign", "false")
    (repo_path / "README.md").write_text("# test repo\n", encoding="utf-8")
    git(repo_path, "add", "-A")
    git(repo_path, "commit", "-m", "Initial commit")
    return repo_path


def git_commit(repo_path: Path, message: str, files: Optional[Dict[str, str]] = None) -> str:
    """Write ``files`` (relative path -> content), commit everything, return the new HEAD."""
    for rel, content in (files or {}).items():
        target = repo_path / rel
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content, encoding="utf-8")
    git(repo_path, "add", "-A")
    git(repo_path, "commit", "--allow-empty", "-m", message)
    return git_head(repo_path)


def git_head(repo_path: Path, ref: str = "HEAD") -> str:
    return git(repo_path, "rev-parse", ref).stdout.strip()


def git_current_branch(repo_path: Path) -> str:
    return git(repo_path, "rev-parse", "--abbrev-ref", "HEAD").stdout.strip()


def git_branch_exists(repo_path: Path, branch: str) -> bool:
    return git(repo_path, "rev-parse", "--verify", "--quiet", f"refs/heads/{branch}", check=False).returncode == 0


def git_log_subjects(repo_path: Path, ref: str = "HEAD") -> List[str]:
    return git(repo_path, "log", "--format=%s", ref).stdout.splitlines()


def git_list_worktrees(repo_path: Path) -> List[str]:
    out = git(repo_path, "worktree", "list", "--porcelain").stdout
    return [line.split(" ", 1)[1] for line in out.splitlines() if line.startswith("worktree ")]


def git_add_bare_remote(repo_path: Path, remote_path: Path, name: str = "origin", branch: str = "main") -> Path:
    """Create a bare repository, register it as ``name`` and push ``branch`` to it."""
    git(remote_path.parent, "init", "--bare", "-b", branch, str(remote_path))
    git(repo_path, "remote", "add", name, str(remote_path))
    git(repo_path, "push", name, branch)
    return remote_path


def git_status_porcelain(repo_path: Path) -> str:
    return git(repo_path, "status", "--porcelain").stdout.strip()
