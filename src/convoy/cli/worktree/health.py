"""
Convoy worktree health command.

SUMMARY: Summarize worktree health (active, locked, stale, prunable)
"""

from __future__ import annotations

import argparse
import sys

from convoy.cli import OutputFormatter, add_standard_flags, open_runtime
from convoy.core.exceptions import ConvoyError

SUMMARY = "Summarize worktree health (active, locked, stale, prunable)"


def register_args(parser: argparse.ArgumentParser) -> None:
    add_standard_flags(parser)
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Exit with status 1 when any worktree is stale or prunable",
    )


def main(args: argparse.Namespace) -> int:
    formatter = OutputFormatter(json_mode=getattr(args, "json", False))

    try:
        with open_runtime(args, read_only=True) as runtime:
            summary = runtime.manager.get_worktree_health_summary()
    except ConvoyError as e:
        formatter.error(e, error_code="worktree_health_error")
        return 1

    healthy = summary.stale == 0 and summary.prunable == 0
    formatter.success(
        {"healthy": healthy, **summary.to_dict()},
        "\n".join(
            [
                f"Worktrees: {summary.total}",
                f"  active:   {summary.active}",
                f"  locked:   {summary.locked}",
                f"  stale:    {summary.stale}",
                f"  prunable: {summary.prunable}",
            ]
        ),
    )
    if args.strict and not healthy:
        return 1
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(prog="convoy worktree health", description=SUMMARY)
    register_args(parser)
    sys.exit(main(parser.parse_args()))
