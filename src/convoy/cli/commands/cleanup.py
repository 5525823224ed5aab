"""
Convoy cleanup command.

SUMMARY: Remove every ephemeral worktree (workers, merge, main-sync)
"""

from __future__ import annotations

import argparse
import sys

from convoy.cli import OutputFormatter, add_cwd_flag, add_force_flag, add_json_flag, open_runtime
from convoy.cli._utils import get_cwd, is_git_repository
from convoy.core.worktree import format_cleanup_result, format_worktree_status

SUMMARY = "Remove every ephemeral worktree (workers, merge, main-sync)"


def register_args(parser: argparse.ArgumentParser) -> None:
    """Register command-specific arguments."""
    add_cwd_flag(parser)
    parser.add_argument(
        "--status",
        "-s",
        action="store_true",
        help="Only report which ephemeral worktrees exist",
    )
    add_force_flag(parser, help_text="Skip the git repository check")
    add_json_flag(parser)


def main(args: argparse.Namespace) -> int:
    formatter = OutputFormatter(json_mode=getattr(args, "json", False))
    cwd = get_cwd(args)

    if not cwd.is_dir():
        formatter.error(f"Directory does not exist: {cwd}", error_code="invalid_cwd")
        return 1
    if not args.force and not is_git_repository(cwd):
        formatter.error(
            f"{cwd} is not a git repository (use --force to clean up anyway)",
            error_code="not_a_git_repository",
        )
        return 1

    with open_runtime(args, read_only=args.status) as runtime:
        if args.status:
            status = runtime.cleanup.status()
            if formatter.json_mode:
                formatter.json_output(status.to_dict())
            else:
                formatter.text(format_worktree_status(status))
            return 0

        result = runtime.cleanup.cleanup_all()

    if formatter.json_mode:
        formatter.json_output(result.to_dict())
    else:
        formatter.text(format_cleanup_result(result))
    return 0 if result.success else 1


if __name__ == "__main__":
    parser = argparse.ArgumentParser(prog="convoy cleanup", description=SUMMARY)
    register_args(parser)
    sys.exit(main(parser.parse_args()))
