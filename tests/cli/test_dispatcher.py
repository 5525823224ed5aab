from __future__ import annotations

import pytest

from convoy import __version__
from convoy.cli._dispatcher import build_parser, discover_domains, discover_root_commands, main


def test_domains_and_root_commands_are_discovered() -> None:
    assert {"worktree", "sync"} <= set(discover_domains())
    assert "cleanup" in discover_root_commands()


def test_no_arguments_prints_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main([]) == 0

    out = capsys.readouterr().out
    assert "cleanup" in out
    assert "worktree" in out


def test_domain_without_command_prints_domain_help(capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["worktree"]) == 0

    out = capsys.readouterr().out
    assert "list" in out
    assert "health" in out


def test_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        build_parser().parse_args(["--version"])

    assert excinfo.value.code == 0
    assert __version__ in capsys.readouterr().out


def test_unknown_command_exits_with_usage_error() -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["no-such-command"])

    assert excinfo.value.code == 2
