"""Common CLI argument registration utilities."""
from __future__ import annotations

import argparse


def add_json_flag(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--json",
        action="store_true",
        help="Output as JSON",
    )


def add_cwd_flag(parser: argparse.ArgumentParser) -> None:
    """Add --cwd, the directory whose repository the command operates on."""
    parser.add_argument(
        "--cwd",
        type=str,
        default=None,
        help="Repository directory (default: current directory)",
    )


def add_force_flag(parser: argparse.ArgumentParser, help_text: str = "Force operation without confirmation") -> None:
    parser.add_argument(
        "--force",
        "-f",
        action="store_true",
        help=help_text,
    )


def add_standard_flags(parser: argparse.ArgumentParser) -> None:
    """Add standard flags that most commands use: --json, --cwd."""
    add_json_flag(parser)
    add_cwd_flag(parser)


__all__ = [
    "add_cwd_flag",
    "add_force_flag",
    "add_json_flag",
    "add_standard_flags",
]
