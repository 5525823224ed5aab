"""
Convoy sync main command.

SUMMARY: Fetch the remote main branch and fast-forward the main-sync worktree
"""

from __future__ import annotations

import argparse
import sys

from convoy.cli import OutputFormatter, add_standard_flags, open_runtime

SUMMARY = "Fetch the remote main branch and fast-forward the main-sync worktree"


def register_args(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group()
    group.add_argument(
        "--status",
        "-s",
        action="store_true",
        help="Show the main-sync worktree state without syncing",
    )
    group.add_argument(
        "--retry",
        action="store_true",
        help="Retry failed syncs with exponential backoff up to the configured ceiling",
    )
    group.add_argument(
        "--remove",
        action="store_true",
        help="Remove the main-sync worktree",
    )
    add_standard_flags(parser)


def main(args: argparse.Namespace) -> int:
    formatter = OutputFormatter(json_mode=getattr(args, "json", False))

    with open_runtime(args, read_only=args.status) as runtime:
        coordinator = runtime.main_sync

        if args.status:
            status = coordinator.status()
            formatter.success(
                status.to_dict(),
                "\n".join(
                    [
                        f"main-sync: {status.path}",
                        f"  exists: {'yes' if status.exists else 'no'}",
                        f"  clean:  {'yes' if status.clean else 'no'}",
                        f"  branch: {status.branch or '-'}",
                        f"  commit: {status.commit or '-'}",
                    ]
                ),
            )
            return 0

        if args.remove:
            coordinator.cleanup()
            formatter.success({"path": str(coordinator.path)}, f"Removed {coordinator.path}")
            return 0

        result = coordinator.sync_with_retry() if args.retry else coordinator.sync()

    if result.skipped:
        formatter.success(result.to_dict(), f"Skipped: {result.error}", status="skipped")
        return 0
    if not result.success:
        formatter.error(result.error or "main-sync failed", error_code=result.code.value if result.code else "error")
        return 1

    if result.updated:
        message = f"Fast-forwarded main-sync {(result.previous_commit or '')[:8]}..{(result.current_commit or '')[:8]}"
    else:
        message = f"main-sync already up to date at {(result.current_commit or '')[:8]}"
    formatter.success(result.to_dict(), message)
    return 0


if __name__ == "__main__":
    parser = argparse.ArgumentParser(prog="convoy sync main", description=SUMMARY)
    register_args(parser)
    sys.exit(main(parser.parse_args()))
