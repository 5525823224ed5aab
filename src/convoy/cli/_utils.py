"""Shared CLI utility functions."""
from __future__ import annotations

import argparse
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from convoy.core.audit.stdlib_logging import configure_stdlib_logging
from convoy.core.config.domains import LoggingConfig
from convoy.core.runtime import Runtime, build_runtime
from convoy.core.utils.subprocess import CommandExecutor


def get_cwd(args: argparse.Namespace) -> Path:
    cwd = getattr(args, "cwd", None)
    return Path(cwd).expanduser().resolve() if cwd else Path.cwd().resolve()


def is_git_repository(path: Path, executor: Optional[CommandExecutor] = None) -> bool:
    executor = executor or CommandExecutor()
    res = executor.run(["rev-parse", "--is-inside-work-tree"], cwd=path)
    return res.ok and res.output == "true"


def get_repo_root(args: argparse.Namespace, executor: Optional[CommandExecutor] = None) -> Path:
    """Main checkout of the repository containing ``--cwd``.

    Run from inside a linked worktree, this still returns the main checkout so
    every command sees the same managed worktrees directory. Outside a
    repository the directory itself is returned.
    """
    cwd = get_cwd(args)
    executor = executor or CommandExecutor()
    res = executor.run(["rev-parse", "--path-format=absolute", "--git-common-dir"], cwd=cwd)
    if not res.ok or not res.output:
        return cwd
    common_dir = Path(res.output)
    if common_dir.name == ".git":
        return common_dir.parent.resolve()
    top = executor.run(["rev-parse", "--show-toplevel"], cwd=cwd)
    return Path(top.output).resolve() if top.ok and top.output else cwd


def configure_cli_logging(runtime: Runtime) -> None:
    """Route stdlib logging to the configured log file so stdout stays clean."""
    logging_cfg = runtime.domain(LoggingConfig)
    if logging_cfg.enabled:
        configure_stdlib_logging(log_path=logging_cfg.path, level=logging_cfg.level)


@contextmanager
def open_runtime(args: argparse.Namespace, *, read_only: bool = False) -> Iterator[Runtime]:
    """Runtime for one command; ``read_only`` skips the event log and log file."""
    runtime = build_runtime(get_repo_root(args), attach_sinks=not read_only)
    if not read_only:
        configure_cli_logging(runtime)
    try:
        yield runtime
    finally:
        runtime.close()


__all__ = [
    "configure_cli_logging",
    "get_cwd",
    "get_repo_root",
    "is_git_repository",
    "open_runtime",
]
