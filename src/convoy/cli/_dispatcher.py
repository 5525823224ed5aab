"""
Entry point for the ``convoy`` command.

Commands are discovered from the package layout, nothing is registered by
hand:

- ``cli/commands/<name>.py``   => ``convoy <name>``
- ``cli/<domain>/<name>.py``   => ``convoy <domain> <name>``

A command module exposes ``SUMMARY``, ``register_args(parser)`` and
``main(args) -> int``.
"""

from __future__ import annotations

import argparse
import importlib
import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from types import ModuleType

from convoy.core.exceptions import ConvoyError

logger = logging.getLogger(__name__)

CLI_DIR = Path(__file__).parent
ROOT_COMMANDS_DIRNAME = "commands"


@dataclass(frozen=True)
class CommandSpec:
    name: str
    module: ModuleType
    summary: str

    @property
    def register_args(self) -> Callable[[argparse.ArgumentParser], None] | None:
        return getattr(self.module, "register_args", None)

    @property
    def handler(self) -> Callable[[argparse.Namespace], int] | None:
        return getattr(self.module, "main", None)


def _command_files(directory: Path) -> list[Path]:
    if not directory.is_dir():
        return []
    return sorted(p for p in directory.glob("*.py") if not p.name.startswith("_"))


@lru_cache(maxsize=1)
def discover_domains() -> dict[str, Path]:
    """Subpackages of ``convoy.cli`` holding at least one command module."""
    return {
        item.name: item
        for item in sorted(CLI_DIR.iterdir())
        if item.is_dir()
        and not item.name.startswith("_")
        and item.name != ROOT_COMMANDS_DIRNAME
        and _command_files(item)
    }


def _load(directory: Path, package: str) -> dict[str, CommandSpec]:
    specs: dict[str, CommandSpec] = {}
    for path in _command_files(directory):
        try:
            module = importlib.import_module(f"{package}.{path.stem}")
        except ImportError as exc:
            # One broken command must not take the whole CLI down.
            logger.warning("Skipping command %s.%s: %s", package, path.stem, exc)
            continue
        summary = getattr(module, "SUMMARY", None) or f"{package.rsplit('.', 1)[-1]} {path.stem}"
        specs[path.stem] = CommandSpec(name=path.stem, module=module, summary=summary)
    return specs


@lru_cache(maxsize=1)
def discover_root_commands() -> dict[str, CommandSpec]:
    return _load(CLI_DIR / ROOT_COMMANDS_DIRNAME, f"convoy.cli.{ROOT_COMMANDS_DIRNAME}")


@lru_cache(maxsize=32)
def discover_commands(domain: str) -> dict[str, CommandSpec]:
    return _load(CLI_DIR / domain, f"convoy.cli.{domain}")


def _register(subparsers: argparse._SubParsersAction, spec: CommandSpec) -> None:
    # ``foo_bar.py`` is reachable as both ``foo-bar`` and ``foo_bar``.
    name = spec.name.replace("_", "-")
    parser = subparsers.add_parser(
        name,
        aliases=[spec.name] if name != spec.name else [],
        help=spec.summary,
        description=spec.summary,
    )
    if spec.register_args is not None:
        spec.register_args(parser)
    if spec.handler is not None:
        parser.set_defaults(_func=spec.handler)


def _get_version() -> str:
    from convoy import __version__

    return __version__


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="convoy",
        description="Convoy - coordinate parallel workers over git worktrees",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {_get_version()}")
    parser.set_defaults(_help=parser.print_help)

    subparsers = parser.add_subparsers(dest="domain", title="domains", metavar="<domain>")
    for spec in discover_root_commands().values():
        _register(subparsers, spec)

    for domain in discover_domains():
        commands = discover_commands(domain)
        if not commands:
            continue
        domain_parser = subparsers.add_parser(domain, help=f"{domain.title()} commands")
        domain_parser.set_defaults(_help=domain_parser.print_help)
        domain_subparsers = domain_parser.add_subparsers(dest="command", title="commands", metavar="<command>")
        for spec in commands.values():
            _register(domain_subparsers, spec)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run one command and return its exit code.

    Without a command, the help of the innermost parser reached is printed.
    """
    args = build_parser().parse_args(sys.argv[1:] if argv is None else list(argv))

    func = getattr(args, "_func", None)
    if func is None:
        args._help()
        return 0

    try:
        return int(func(args) or 0)
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
    except ConvoyError as exc:
        logger.error("convoy %s failed: %s", args.domain, exc, exc_info=True)
        print(f"Error: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
