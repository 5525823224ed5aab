from __future__ import annotations

import os
from pathlib import Path

import pytest

from convoy.core.exceptions import CommandError
from convoy.core.utils.subprocess import (
    NOT_FOUND_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    CommandExecutor,
    CommandResult,
    build_command_env,
    is_transient_lock_error,
    run_process,
)


class TestBuildCommandEnv:
    def test_strips_repository_internals_and_disables_prompts(self) -> None:
        inherited = {
            "PATH": "/usr/bin",
            "GIT_DIR": "/elsewhere/.git",
            "GIT_INDEX_FILE": "/elsewhere/index",
            "GIT_WORK_TREE": "/elsewhere",
            "GIT_SSH_COMMAND": "ssh -i key",
        }

        env = build_command_env(inherited)

        assert env["PATH"] == "/usr/bin"
        assert "GIT_DIR" not in env
        assert "GIT_INDEX_FILE" not in env
        assert "GIT_WORK_TREE" not in env
        assert env["GIT_SSH_COMMAND"] == "ssh -i key"
        assert env["GIT_TERMINAL_PROMPT"] == "0"

    def test_overrides_are_applied_last(self) -> None:
        env = build_command_env({"GIT_TERMINAL_PROMPT": "1"}, {"GIT_TERMINAL_PROMPT": "1", "GIT_EDITOR": "true"})

        assert env["GIT_TERMINAL_PROMPT"] == "1"
        assert env["GIT_EDITOR"] == "true"

    def test_inputs_are_not_mutated(self) -> None:
        inherited = {"GIT_DIR": "x", "HOME": "/home/me"}
        overrides = {"FOO": "bar"}

        build_command_env(inherited, overrides)

        assert inherited == {"GIT_DIR": "x", "HOME": "/home/me"}
        assert overrides == {"FOO": "bar"}


@pytest.mark.parametrize(
    "stderr",
    [
        "fatal: Unable to create '/repo/.git/index.lock': File exists.",
        "Another git process seems to be running in this repository",
        "error: cannot lock ref 'refs/heads/worker/a'",
        "fatal: could not lock config file .git/config: File exists",
    ],
)
def test_lock_contention_is_transient(stderr: str) -> None:
    assert is_transient_lock_error(stderr)


@pytest.mark.parametrize(
    "stderr",
    [
        "",
        "fatal: not a git repository (or any of the parent directories): .git",
        "error: pathspec 'nope' did not match any file(s) known to git",
        "error: could not apply 1a2b3c4... Fix deadlock in scheduler",
    ],
)
def test_other_failures_are_not_transient(stderr: str) -> None:
    assert not is_transient_lock_error(stderr)


class TestRunProcess:
    def test_captures_output_and_exit_code(self, tmp_path: Path) -> None:
        result = run_process(["sh", "-c", "echo out; echo err >&2; exit 3"], cwd=tmp_path)

        assert result.exit_code == 3
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert not result.ok

    def test_missing_binary_reports_not_found(self, tmp_path: Path) -> None:
        result = run_process(["convoy-definitely-missing-binary"], cwd=tmp_path)

        assert result.exit_code == NOT_FOUND_EXIT_CODE
        assert not result.timed_out

    @pytest.mark.slow
    def test_timeout_kills_the_command(self, tmp_path: Path) -> None:
        result = run_process(["sleep", "10"], cwd=tmp_path, timeout=0.3)

        assert result.timed_out
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert result.duration_ms < 5000
        assert "timed out" in result.stderr


class TestCommandExecutor:
    def _executor(self, sleeps: list, **kwargs) -> CommandExecutor:
        return CommandExecutor(
            "sh",
            retry_base_delay=0.01,
            inherited_env={"PATH": os.environ.get("PATH", "/usr/bin:/bin")},
            sleep=sleeps.append,
            **kwargs,
        )

    def test_transient_failures_are_retried_with_backoff(self, tmp_path: Path) -> None:
        sleeps: list = []
        executor = self._executor(sleeps)

        result = executor.run(["-c", "echo \"fatal: Unable to create 'index.lock': File exists.\" >&2; exit 128"], cwd=tmp_path)

        assert result.exit_code == 128
        assert result.attempts == 4
        assert sleeps == pytest.approx([0.01, 0.02, 0.04])

    def test_non_transient_failure_returns_immediately(self, tmp_path: Path) -> None:
        sleeps: list = []
        executor = self._executor(sleeps)

        result = executor.run(["-c", "echo 'fatal: bad revision' >&2; exit 128"], cwd=tmp_path)

        assert result.attempts == 1
        assert sleeps == []

    def test_success_after_transient_failure(self, tmp_path: Path) -> None:
        sleeps: list = []
        executor = self._executor(sleeps)
        script = "if [ -f marker ]; then echo done; else touch marker; echo 'index.lock exists' >&2; exit 1; fi"

        result = executor.run(["-c", script], cwd=tmp_path)

        assert result.ok
        assert result.output == "done"
        assert result.attempts == 2
        assert len(sleeps) == 1

    def test_inherited_git_variables_do_not_reach_the_child(self, tmp_path: Path) -> None:
        executor = CommandExecutor(
            "sh",
            inherited_env={"PATH": os.environ.get("PATH", "/usr/bin:/bin"), "GIT_DIR": "/nope"},
        )

        result = executor.run(["-c", 'echo "${GIT_DIR:-unset} $GIT_TERMINAL_PROMPT"'], cwd=tmp_path)

        assert result.output == "unset 0"

    def test_env_overrides_reach_the_child(self, tmp_path: Path) -> None:
        executor = CommandExecutor("sh", inherited_env={"PATH": os.environ.get("PATH", "/usr/bin:/bin")})

        result = executor.run(["-c", 'echo "$GIT_EDITOR"'], cwd=tmp_path, env_overrides={"GIT_EDITOR": "true"})

        assert result.output == "true"

    def test_invalid_construction_fails_fast(self) -> None:
        with pytest.raises(ValueError):
            CommandExecutor(retry_attempts=0)
        with pytest.raises(ValueError):
            CommandExecutor(timeout=0)


def test_check_raises_command_error_with_context() -> None:
    result = CommandResult(("git", "status"), "", "fatal: boom", 128, 5)

    with pytest.raises(CommandError) as excinfo:
        result.check("status failed")

    assert "fatal: boom" in str(excinfo.value)
    assert excinfo.value.context["exit_code"] == 128
    assert excinfo.value.code == "COMMAND_FAILED"
