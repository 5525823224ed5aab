"""External command execution with timeouts, environment isolation and lock retries.

Every git invocation in Convoy goes through :class:`CommandExecutor`, which

- runs the command in its own process group and SIGKILLs the group when the
  timeout elapses,
- builds the child environment with :func:`build_command_env` (inherited git
  internals stripped, prompts disabled, explicit overrides applied last),
- retries failures caused by git lock contention with exponential backoff.

Failures never raise: callers inspect :class:`CommandResult`.
"""
from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional, Sequence

from convoy.core.exceptions import CommandError

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127

DEFAULT_TIMEOUT_SECONDS = 60.0
DEFAULT_RETRY_ATTEMPTS = 4
DEFAULT_RETRY_BASE_DELAY_SECONDS = 0.15

# Inherited variables that do not describe repository internals.
_PASSTHROUGH_GIT_VARS = frozenset({"GIT_SSH", "GIT_SSH_COMMAND", "GIT_SSL_CAINFO", "GIT_SSL_NO_VERIFY"})

_NON_INTERACTIVE_ENV: Mapping[str, str] = {
    "GIT_TERMINAL_PROMPT": "0",
    "GCM_INTERACTIVE": "never",
}


@dataclass(frozen=True)
class CommandResult:
    """Outcome of one external command (after any transient retries)."""

    args: tuple[str, ...]
    stdout: str
    stderr: str
    exit_code: int
    duration_ms: int
    timed_out: bool = False
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    @property
    def output(self) -> str:
        return self.stdout.strip()

    def check(self, message: str = "") -> "CommandResult":
        """Return self on success, raise :class:`CommandError` otherwise."""
        if self.ok:
            return self
        detail = self.stderr.strip() or self.stdout.strip() or f"exit code {self.exit_code}"
        raise CommandError(
            f"{message or 'Command failed'}: {detail}",
            context={
                "args": list(self.args),
                "exit_code": self.exit_code,
                "timed_out": self.timed_out,
            },
        )


def build_command_env(
    inherited: Mapping[str, str],
    overrides: Optional[Mapping[str, str]] = None,
) -> Dict[str, str]:
    """Return a new environment for a child git process.

    ``GIT_*`` variables describing repository internals (``GIT_DIR``,
    ``GIT_INDEX_FILE``, ``GIT_WORK_TREE`` ...) are dropped so a command always
    operates on the repository named by its ``cwd``/``-C`` argument. Interactive
    prompting is disabled, then ``overrides`` are applied. Neither input is mutated.
    """
    env = {
        key: value
        for key, value in inherited.items()
        if not key.startswith("GIT_") or key in _PASSTHROUGH_GIT_VARS
    }
    env.update(_NON_INTERACTIVE_ENV)
    if overrides:
        env.update(overrides)
    return env


def is_transient_lock_error(stderr: str) -> bool:
    """Return True when ``stderr`` reports git lock contention."""
    text = (stderr or "").lower()
    return (
        "process seems to be running" in text
        or "index.lock" in text
        or "cannot lock" in text
        or ("unable to create" in text and ".lock" in text)
        or ("fatal: could not" in text and "lock" in text)
    )


def _kill_process_group(proc: subprocess.Popen[Any]) -> None:
    if proc.poll() is not None:
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        return
    except PermissionError:
        proc.kill()


def run_process(
    argv: Sequence[str],
    *,
    cwd: Optional[Path | str] = None,
    timeout: float = DEFAULT_TIMEOUT_SECONDS,
    env: Optional[Mapping[str, str]] = None,
) -> CommandResult:
    """Run ``argv`` once, capturing output; never raises for command failures.

    The child gets its own session so a timeout can kill the whole process
    group (including grandchildren holding the pipes open).
    """
    args = tuple(str(a) for a in argv)
    started = time.monotonic()
    try:
        proc = subprocess.Popen(
            args,
            cwd=str(cwd) if cwd is not None else None,
            env=dict(env) if env is not None else None,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            errors="replace",
            start_new_session=True,
        )
    except FileNotFoundError as exc:
        return CommandResult(args, "", str(exc), NOT_FOUND_EXIT_CODE, 0)
    except (NotADirectoryError, PermissionError) as exc:
        return CommandResult(args, "", str(exc), 1, 0)

    timed_out = False
    try:
        stdout, stderr = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_process_group(proc)
        stdout, stderr = proc.communicate()

    duration_ms = int((time.monotonic() - started) * 1000)
    if timed_out:
        message = f"Command timed out after {timeout:g}s: {' '.join(args)}"
        return CommandResult(
            args,
            stdout or "",
            ((stderr or "") + "\n" + message).strip(),
            TIMEOUT_EXIT_CODE,
            duration_ms,
            timed_out=True,
        )
    return CommandResult(args, stdout or "", stderr or "", proc.returncode, duration_ms)


class CommandExecutor:
    """Run version-control commands with isolation, timeouts and lock retries.

    Args:
        binary: Executable prepended to every ``run`` call.
        timeout: Default timeout in seconds.
        retry_attempts: Total attempts for transient lock failures.
        retry_base_delay: Backoff base in seconds; attempt ``n`` waits ``base * 2**n``.
        inherited_env: Environment to derive child environments from
            (snapshot of ``os.environ`` when omitted).
        sleep: Sleep function used between retries.
    """

    def __init__(
        self,
        binary: str = "git",
        *,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        retry_attempts: int = DEFAULT_RETRY_ATTEMPTS,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY_SECONDS,
        inherited_env: Optional[Mapping[str, str]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if retry_attempts < 1:
            raise ValueError(f"retry_attempts must be >= 1 (got {retry_attempts})")
        if timeout <= 0:
            raise ValueError(f"timeout must be positive (got {timeout})")
        self.binary = binary
        self.timeout = float(timeout)
        self.retry_attempts = int(retry_attempts)
        self.retry_base_delay = float(retry_base_delay)
        self._inherited_env: Dict[str, str] = dict(
            inherited_env if inherited_env is not None else os.environ
        )
        self._sleep = sleep

    @classmethod
    def from_config(cls, git_config: Any, **kwargs: Any) -> "CommandExecutor":
        """Build an executor from a :class:`~convoy.core.config.domains.GitConfig`."""
        return cls(
            git_config.binary,
            timeout=git_config.timeout_seconds,
            retry_attempts=git_config.lock_retry_attempts,
            retry_base_delay=git_config.lock_retry_base_delay_seconds,
            **kwargs,
        )

    def environment(self, overrides: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
        return build_command_env(self._inherited_env, overrides)

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Optional[Path | str] = None,
        timeout: Optional[float] = None,
        env_overrides: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        """Run ``<binary> <args>`` and return its result.

        Non-zero exits matching :func:`is_transient_lock_error` are retried;
        timeouts and other failures return immediately.
        """
        argv = [self.binary, *[str(a) for a in args]]
        env = self.environment(env_overrides)
        effective_timeout = float(timeout) if timeout is not None else self.timeout

        started = time.monotonic()
        result: Optional[CommandResult] = None
        for attempt in range(self.retry_attempts):
            result = run_process(argv, cwd=cwd, timeout=effective_timeout, env=env)
            if result.ok or result.timed_out or not is_transient_lock_error(result.stderr):
                break
            if attempt == self.retry_attempts - 1:
                break
            delay = self.retry_base_delay * (2**attempt)
            logger.debug(
                "Transient git lock contention (attempt %d/%d), retrying in %.3fs: %s",
                attempt + 1,
                self.retry_attempts,
                delay,
                " ".join(argv),
            )
            self._sleep(delay)

        assert result is not None
        total_ms = int((time.monotonic() - started) * 1000)
        final = CommandResult(
            result.args,
            result.stdout,
            result.stderr,
            result.exit_code,
            total_ms,
            timed_out=result.timed_out,
            attempts=attempt + 1,
        )
        if not final.ok:
            logger.debug(
                "Command failed (exit %d, %d attempt(s)): %s: %s",
                final.exit_code,
                final.attempts,
                " ".join(argv),
                final.stderr.strip(),
            )
        return final


__all__ = [
    "CommandExecutor",
    "CommandResult",
    "build_command_env",
    "is_transient_lock_error",
    "run_process",
    "TIMEOUT_EXIT_CODE",
    "NOT_FOUND_EXIT_CODE",
]
