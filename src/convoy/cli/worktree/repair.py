"""
Convoy worktree repair command.

SUMMARY: Repair worktree administrative files and prune stale entries
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path

from convoy.cli import OutputFormatter, add_standard_flags, open_runtime

SUMMARY = "Repair worktree administrative files and prune stale entries"


def register_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "path",
        nargs="?",
        help="Worktree path to repair (default: all worktrees)",
    )
    parser.add_argument(
        "--no-prune",
        action="store_true",
        help="Skip 'git worktree prune' after repairing",
    )
    add_standard_flags(parser)


def main(args: argparse.Namespace) -> int:
    formatter = OutputFormatter(json_mode=getattr(args, "json", False))

    with open_runtime(args) as runtime:
        target = Path(args.path).resolve() if args.path else None
        repair = runtime.manager.repair_worktree(target)
        prune = None if args.no_prune else runtime.manager.prune()

    errors = []
    if not repair.ok:
        errors.append(f"repair: {repair.stderr.strip() or 'git worktree repair failed'}")
    if prune is not None and not prune.ok:
        errors.append(f"prune: {prune.stderr.strip() or 'git worktree prune failed'}")

    if errors:
        for error in errors:
            formatter.error(error, error_code="worktree_repair_error")
        return 1

    formatter.success(
        {
            "path": str(target) if target else None,
            "repairOutput": repair.output,
            "pruned": prune is not None,
        },
        f"Repaired {target or 'all worktrees'}" + ("" if prune is None else " and pruned stale entries"),
    )
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(prog="convoy worktree repair", description=SUMMARY)
    register_args(parser)
    sys.exit(main(parser.parse_args()))
