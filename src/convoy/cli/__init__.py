"""
Convoy CLI package.

Commands are auto-discovered: top-level commands live in ``commands/``,
domain commands in ``<domain>/<command>.py`` (``worktree/``, ``sync/``).

Framework utilities for building CLI commands:
- _output: Output formatting (JSON/text modes)
- _args: Common argument registration helpers
- _utils: Shared CLI utilities
"""
from ._args import add_cwd_flag, add_force_flag, add_json_flag, add_standard_flags
from ._output import OutputFormatter
from ._utils import configure_cli_logging, get_repo_root, open_runtime

__all__ = [
    # Output formatting
    "OutputFormatter",
    # Argument helpers
    "add_cwd_flag",
    "add_force_flag",
    "add_json_flag",
    "add_standard_flags",
    # Utilities
    "configure_cli_logging",
    "get_repo_root",
    "open_runtime",
]
