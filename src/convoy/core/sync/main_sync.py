"""Fast-forward-only mirror of the upstream main branch.

The main-sync worktree is never used for work. It only mirrors
``<remote>/<branch>`` and serves as the fast-forward target after
integrations, so it may always be hard-reset without losing anything.
"""
from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from threading import RLock
from typing import Callable, Optional, Sequence

from convoy.core.events import EventStream
from convoy.core.events.models import (
    MainSyncAlert,
    MainSyncFailed,
    MainSyncRetrying,
    MainSyncSkipped,
    MainSyncSucceeded,
)
from convoy.core.exceptions import ConvoyError, MainSyncError, UnmanagedPathError
from convoy.core.utils.io import ensure_directory
from convoy.core.utils.subprocess import CommandResult
from convoy.core.worktree.manager import WorktreeManager, short_hash
from convoy.core.worktree.metadata import ManagedMetadata, write_managed_metadata

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 10
DEFAULT_RETRY_BASE_DELAY_SECONDS = 2.0
DEFAULT_RETRY_MAX_DELAY_SECONDS = 30.0


class SyncCode(str, Enum):
    FETCH_FAILED = "FETCH_FAILED"
    REMOTE_RESOLVE_FAILED = "REMOTE_RESOLVE_FAILED"
    FAST_FORWARD_FAILED = "FAST_FORWARD_FAILED"
    WORKTREE_ERROR = "WORKTREE_ERROR"


@dataclass(frozen=True)
class SyncResult:
    success: bool
    updated: bool
    previous_commit: Optional[str]
    current_commit: Optional[str]
    error: Optional[str] = None
    code: Optional[SyncCode] = None
    skipped: bool = False

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "updated": self.updated,
            "previousCommit": self.previous_commit,
            "currentCommit": self.current_commit,
            "error": self.error,
            "code": self.code.value if self.code else None,
            "skipped": self.skipped,
        }


@dataclass
class MainSyncState:
    max_retries: int
    previous_commit: Optional[str] = None
    current_commit: Optional[str] = None
    retry_attempt: int = 0
    code: Optional[SyncCode] = None
    last_error: Optional[str] = None


@dataclass(frozen=True)
class MainSyncStatus:
    path: Path
    exists: bool
    clean: bool = False
    commit: Optional[str] = None
    branch: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "exists": self.exists,
            "clean": self.clean,
            "commit": self.commit,
            "branch": self.branch,
        }


def backoff_delay(retry_attempt: int, base: float, cap: float) -> float:
    """Delay before retry ``retry_attempt`` (1-based): ``base * 2**(n-1)`` capped at ``cap``."""
    if retry_attempt < 1:
        return 0.0
    return min(base * (2 ** (retry_attempt - 1)), cap)


class MainSyncCoordinator:
    """Owns the main-sync worktree and every mutation of :class:`MainSyncState`.

    Args:
        manager: Worktree manager supplying the executor, limiter and path guards.
        remote: Remote to fetch from.
        branch: Upstream branch mirrored from ``remote``.
        worktree_name: Directory name under the managed worktrees root.
        branch_name: Local ephemeral branch checked out in the mirror.
        max_retries: Retry ceiling for :meth:`sync_with_retry`.
        retry_base_delay: First backoff delay in seconds.
        retry_max_delay: Backoff cap in seconds.
        events: Optional event stream.
        sleep: Sleep function used between retries.
    """

    def __init__(
        self,
        manager: WorktreeManager,
        *,
        remote: str = "origin",
        branch: str = "main",
        worktree_name: str = "main-sync",
        branch_name: str = "parallel/main-sync",
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY_SECONDS,
        retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY_SECONDS,
        events: Optional[EventStream] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_retries < 0:
            raise ValueError(f"max_retries must be >= 0 (got {max_retries})")
        manager.assert_ephemeral_branch(branch_name)
        self.manager = manager
        self.remote = remote
        self.branch = branch
        self.branch_name = branch_name
        self.path = manager.worktrees_dir / worktree_name
        if not manager.is_managed_path(self.path):
            raise UnmanagedPathError(f"Main-sync path escapes managed root: {self.path}", context={"path": str(self.path)})
        self.retry_base_delay = float(retry_base_delay)
        self.retry_max_delay = float(retry_max_delay)
        self.events = events
        self._sleep = sleep
        self._lock = RLock()
        self.state = MainSyncState(max_retries=int(max_retries))

    @classmethod
    def from_config(
        cls,
        manager: WorktreeManager,
        main_sync_config,
        *,
        events: Optional[EventStream] = None,
        **kwargs,
    ) -> "MainSyncCoordinator":
        return cls(
            manager,
            remote=main_sync_config.remote,
            branch=main_sync_config.branch,
            worktree_name=main_sync_config.worktree_name,
            branch_name=main_sync_config.branch_name,
            max_retries=main_sync_config.max_retries,
            retry_base_delay=main_sync_config.retry_base_delay_seconds,
            retry_max_delay=main_sync_config.retry_max_delay_seconds,
            events=events,
            **kwargs,
        )

    @property
    def max_retries(self) -> int:
        return self.state.max_retries

    @property
    def remote_ref(self) -> str:
        return f"{self.remote}/{self.branch}"

    # ------------------------------------------------------------------
    # Git helpers
    # ------------------------------------------------------------------
    def _git(self, args: Sequence[str], *, cwd: Optional[Path] = None) -> CommandResult:
        return self.manager.executor.run(list(args), cwd=cwd or self.manager.repo_root)

    def _mutate(self, args: Sequence[str], *, cwd: Optional[Path] = None) -> CommandResult:
        with self.manager.limiter.permit():
            return self._git(args, cwd=cwd)

    def exists(self) -> bool:
        """True when the mirror directory is a working tree of its own."""
        if not self.path.is_dir():
            return False
        res = self._git(["rev-parse", "--show-toplevel"], cwd=self.path)
        if not res.ok:
            return False
        return os.path.realpath(res.output) == os.path.realpath(self.path)

    def current_commit(self) -> Optional[str]:
        if not self.path.is_dir():
            return None
        res = self._git(["rev-parse", "HEAD"], cwd=self.path)
        return res.output if res.ok and res.output else None

    def is_dirty(self) -> bool:
        res = self._git(["status", "--porcelain"], cwd=self.path)
        res.check("Failed to read main-sync status")
        return bool(res.output)

    def has_remote(self) -> bool:
        return self._git(["remote", "get-url", self.remote]).ok

    def _start_point(self) -> Optional[str]:
        for ref in (f"refs/remotes/{self.remote}/{self.branch}", self.branch):
            commit = self.manager.resolve_commit(ref)
            if commit:
                return commit
        return None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    def create(self) -> Path:
        """Return the mirror path, creating the worktree when it is absent.

        An existing mirror is reused after :meth:`ensure_clean`. Creation
        resets ``branch_name`` to the upstream commit and is retried once,
        with ``--force``, after a forced cleanup.
        """
        with self._lock:
            if self.exists():
                self.ensure_clean()
                return self.path

            self.manager.assert_ephemeral_branch(self.branch_name)
            start = self._start_point()
            if start is None:
                raise MainSyncError(
                    f"Cannot resolve {self.remote_ref} or {self.branch} to create the main-sync worktree",
                    code=SyncCode.WORKTREE_ERROR.value,
                    context={"remote": self.remote, "branch": self.branch},
                )

            ensure_directory(self.manager.worktrees_dir)
            self.manager.ensure_excludes()
            if self.path.exists() or self.path.is_symlink():
                self.cleanup()

            args = ["worktree", "add", "-B", self.branch_name, str(self.path), start]
            res = self._mutate(args)
            if not res.ok:
                logger.warning("main-sync worktree add failed, cleaning up and retrying: %s", res.stderr.strip())
                self.cleanup()
                res = self._mutate(["worktree", "add", "--force", "-B", self.branch_name, str(self.path), start])
            if not res.ok:
                raise MainSyncError(
                    f"Failed to create main-sync worktree: {res.stderr.strip()}",
                    code=SyncCode.WORKTREE_ERROR.value,
                    context={"path": str(self.path), "exit_code": res.exit_code},
                )

            write_managed_metadata(
                self.path,
                ManagedMetadata.for_current_process(
                    repo_root=self.manager.repo_root,
                    worktree_path=self.path,
                    worker_id=self.path.name,
                    branch_name=self.branch_name,
                    base_ref=self.remote_ref,
                    expected_commit=start,
                ),
                metadata_dir=self.manager.metadata_dir,
            )
            logger.info("Created main-sync worktree at %s on %s", self.path, short_hash(start))
            return self.path

    def ensure_clean(self) -> None:
        """Hard-reset the mirror and drop untracked files when it has drifted."""
        self.manager.assert_ephemeral_branch(self.branch_name)
        if not self.is_dirty():
            return
        logger.info("Discarding local changes in main-sync worktree %s", self.path)
        self._mutate(["reset", "--hard", "HEAD"], cwd=self.path).check("Failed to reset main-sync worktree")
        self._mutate(["clean", "-fd"], cwd=self.path).check("Failed to clean main-sync worktree")

    def cleanup(self) -> None:
        """Remove the mirror; failures are logged, never raised."""
        try:
            error = self.manager.remove_worktree_path(self.path)
            if error:
                logger.warning("main-sync cleanup: %s", error)
            self.manager.prune()
        except Exception:
            logger.warning("main-sync cleanup failed", exc_info=True)

    def status(self) -> MainSyncStatus:
        if not self.exists():
            return MainSyncStatus(path=self.path, exists=False)
        branch = self._git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=self.path)
        status = self._git(["status", "--porcelain"], cwd=self.path)
        return MainSyncStatus(
            path=self.path,
            exists=True,
            clean=status.ok and not status.output,
            commit=self.current_commit(),
            branch=branch.output if branch.ok else None,
        )

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------
    def _record(self, result: SyncResult, *, task_id: Optional[str] = None) -> SyncResult:
        with self._lock:
            self.state.previous_commit = result.previous_commit
            self.state.current_commit = result.current_commit
            self.state.code = result.code
            self.state.last_error = result.error
        if result.success:
            logger.info(
                "main-sync %s (%s -> %s)",
                "updated" if result.updated else "already current",
                short_hash(result.previous_commit),
                short_hash(result.current_commit),
            )
        else:
            logger.warning("main-sync failed [%s]: %s", result.code.value if result.code else "-", result.error)

        if self.events is not None:
            if result.skipped:
                self.events.emit(
                    MainSyncSkipped(reason=result.error or "skipped", code=result.code.value if result.code else None)
                )
            elif result.success:
                self.events.emit(
                    MainSyncSucceeded(
                        previous_commit=result.previous_commit,
                        current_commit=result.current_commit,
                        updated=result.updated,
                    )
                )
            else:
                self.events.emit(
                    MainSyncFailed(
                        reason=result.error or "main-sync failed",
                        code=result.code.value if result.code else None,
                        task_id=task_id,
                    )
                )
        return result

    def _prepare(self) -> tuple[Optional[str], Optional[SyncResult]]:
        previous = self.current_commit() if self.exists() else None
        if previous is not None:
            return previous, None
        try:
            self.create()
        except ConvoyError as exc:
            return None, SyncResult(False, False, None, None, error=str(exc), code=SyncCode.WORKTREE_ERROR)
        previous = self.current_commit()
        if previous is None:
            return None, SyncResult(
                False, False, None, None, error="Cannot read main-sync HEAD", code=SyncCode.WORKTREE_ERROR
            )
        return previous, None

    def _fast_forward(self, previous: str, target: str) -> SyncResult:
        if target == previous:
            return SyncResult(True, False, previous, previous)
        try:
            self.ensure_clean()
        except ConvoyError as exc:
            return SyncResult(False, False, previous, previous, error=str(exc), code=SyncCode.WORKTREE_ERROR)

        res = self._mutate(["merge", "--ff-only", target], cwd=self.path)
        if not res.ok:
            return SyncResult(
                False,
                False,
                previous,
                previous,
                error=f"Fast-forward merge failed: {res.stderr.strip() or res.stdout.strip()}",
                code=SyncCode.FAST_FORWARD_FAILED,
            )
        current = self.current_commit()
        # "Already up to date" when the mirror is ahead of the target.
        return SyncResult(True, current != previous, previous, current)

    def sync(self) -> SyncResult:
        """Fetch ``remote/branch`` and fast-forward the mirror to it.

        Never raises: every failure point maps to a :class:`SyncCode`. When
        the remote is not configured the sync is skipped.
        """
        with self._lock:
            if not self.has_remote():
                current = self.current_commit()
                return self._record(
                    SyncResult(
                        False,
                        False,
                        current,
                        current,
                        error=f"Remote '{self.remote}' is not configured",
                        code=SyncCode.FETCH_FAILED,
                        skipped=True,
                    )
                )

            previous, failure = self._prepare()
            if failure is not None:
                return self._record(failure)
            assert previous is not None

            fetch = self._mutate(["fetch", self.remote, self.branch])
            if not fetch.ok:
                return self._record(
                    SyncResult(
                        False,
                        False,
                        previous,
                        previous,
                        error=f"Failed to fetch: {fetch.stderr.strip()}",
                        code=SyncCode.FETCH_FAILED,
                    )
                )

            remote_commit = self.manager.resolve_commit(f"refs/remotes/{self.remote}/{self.branch}")
            if remote_commit is None:
                return self._record(
                    SyncResult(
                        False,
                        False,
                        previous,
                        previous,
                        error=f"Failed to resolve remote commit {self.remote_ref}",
                        code=SyncCode.REMOTE_RESOLVE_FAILED,
                    )
                )
            return self._record(self._fast_forward(previous, remote_commit))

    def fast_forward_to(self, ref: str, *, task_id: Optional[str] = None) -> SyncResult:
        """Advance the mirror to a locally known ``ref`` without fetching."""
        with self._lock:
            previous, failure = self._prepare()
            if failure is not None:
                return self._record(failure, task_id=task_id)
            assert previous is not None

            target = self.manager.resolve_commit(ref)
            if target is None:
                return self._record(
                    SyncResult(
                        False,
                        False,
                        previous,
                        previous,
                        error=f"Cannot resolve '{ref}'",
                        code=SyncCode.REMOTE_RESOLVE_FAILED,
                    ),
                    task_id=task_id,
                )
            return self._record(self._fast_forward(previous, target), task_id=task_id)

    # ------------------------------------------------------------------
    # Retry policy
    # ------------------------------------------------------------------
    def _with_retry(self, operation: Callable[[], SyncResult], affected_task_count: int) -> SyncResult:
        with self._lock:
            self.state.retry_attempt = 0
        while True:
            result = operation()
            if result.success or result.skipped:
                with self._lock:
                    self.state.retry_attempt = 0
                return result

            with self._lock:
                if self.state.retry_attempt >= self.state.max_retries:
                    attempt = self.state.retry_attempt
                    exhausted = True
                else:
                    self.state.retry_attempt += 1
                    attempt = self.state.retry_attempt
                    exhausted = False

            reason = result.error or "main-sync failed"
            if exhausted:
                logger.error(
                    "main-sync giving up after %d retries; %d task(s) affected: %s",
                    attempt,
                    affected_task_count,
                    reason,
                )
                if self.events is not None:
                    self.events.emit(
                        MainSyncAlert(
                            retry_attempt=attempt,
                            max_retries=self.state.max_retries,
                            reason=reason,
                            affected_task_count=affected_task_count,
                        )
                    )
                return result

            delay = backoff_delay(attempt, self.retry_base_delay, self.retry_max_delay)
            logger.info("main-sync retry %d/%d in %.1fs", attempt, self.state.max_retries, delay)
            if self.events is not None:
                self.events.emit(
                    MainSyncRetrying(
                        retry_attempt=attempt,
                        max_retries=self.state.max_retries,
                        delay_ms=int(delay * 1000),
                        reason=reason,
                    )
                )
            self._sleep(delay)

    def sync_with_retry(self, affected_task_count: int = 0) -> SyncResult:
        """:meth:`sync` retried with capped exponential backoff, alerting at the ceiling."""
        return self._with_retry(self.sync, affected_task_count)

    def fast_forward_with_retry(
        self, ref: str, *, affected_task_count: int = 0, task_id: Optional[str] = None
    ) -> SyncResult:
        return self._with_retry(lambda: self.fast_forward_to(ref, task_id=task_id), affected_task_count)


__all__ = [
    "MainSyncCoordinator",
    "MainSyncState",
    "MainSyncStatus",
    "SyncCode",
    "SyncResult",
    "backoff_delay",
]
