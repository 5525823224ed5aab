"""
Convoy worktree list command.

SUMMARY: List all worktrees of the repository with their health
"""

from __future__ import annotations

import argparse
import sys

from convoy.cli import OutputFormatter, add_standard_flags, open_runtime
from convoy.core.exceptions import ConvoyError
from convoy.core.worktree.models import WorktreeStatus

SUMMARY = "List all worktrees of the repository with their health"


def register_args(parser: argparse.ArgumentParser) -> None:
    add_standard_flags(parser)
    parser.add_argument(
        "--managed",
        action="store_true",
        help="Only show worktrees under the managed worktrees directory",
    )


def _status_dict(status: WorktreeStatus) -> dict:
    return {
        "path": str(status.path),
        "relativePath": status.relative_path,
        "head": status.head,
        "branch": status.branch,
        "locked": status.locked,
        "lockReason": status.lock_reason,
        "prunable": status.prunable,
        "detached": status.detached,
        "health": status.health_status.value,
    }


def main(args: argparse.Namespace) -> int:
    formatter = OutputFormatter(json_mode=getattr(args, "json", False))

    try:
        with open_runtime(args, read_only=True) as runtime:
            statuses = runtime.manager.list_worktrees()
            if args.managed:
                statuses = [s for s in statuses if runtime.manager.is_managed_path(s.path)]
    except ConvoyError as e:
        formatter.error(e, error_code="worktree_list_error")
        return 1

    if formatter.json_mode:
        formatter.json_output({"worktrees": [_status_dict(s) for s in statuses], "count": len(statuses)})
        return 0

    if not statuses:
        formatter.text("No worktrees found.")
        return 0
    for status in statuses:
        branch = status.branch or ("(detached)" if status.detached else "(bare)" if status.bare else "-")
        head = (status.head or "")[:8] or "-"
        formatter.text(f"{status.health_status.value:<9} {head:<8} {branch:<32} {status.path}")
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(prog="convoy worktree list", description=SUMMARY)
    register_args(parser)
    sys.exit(main(parser.parse_args()))
