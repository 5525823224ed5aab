"""Create, validate, list and remove worker worktrees.

All worker worktrees live directly under one managed root directory. Every
mutating git command runs under a :class:`ConcurrencyLimiter` permit, and no
destructive operation touches a path outside the managed root or resets a
branch that lacks an ephemeral prefix.
"""
from __future__ import annotations

import logging
import os
import re
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from threading import Lock
from typing import Dict, Iterable, List, Optional, Sequence

from convoy.core.concurrency import ConcurrencyLimiter
from convoy.core.events import EventStream
from convoy.core.events.models import WorktreeCreated, WorktreeRemoved
from convoy.core.exceptions import (
    ConvoyError,
    EphemeralBranchError,
    UnmanagedPathError,
    WorktreeError,
    WorktreeValidationError,
)
from convoy.core.utils.io import ensure_directory, ensure_lines_present
from convoy.core.utils.subprocess import CommandExecutor, CommandResult

from .health import build_statuses, parse_worktree_porcelain
from .metadata import ManagedMetadata, has_managed_metadata, write_managed_metadata
from .models import (
    CreateWorktreeRequest,
    Worktree,
    WorktreeHealthSummary,
    WorktreeStatus,
    WorktreeValidation,
)

logger = logging.getLogger(__name__)

DEFAULT_EPHEMERAL_PREFIXES = ("worker/", "merge/", "parallel/", "convoy/", "wt/")
MAX_SEGMENT_LENGTH = 120
NOT_A_WORKTREE_MARKERS = ("is not a working tree", "not a working tree")

_UNSAFE_SEGMENT_CHARS = re.compile(r"[^a-zA-Z0-9._-]+")


def sanitize_path_segment(value: str) -> str:
    """Turn an arbitrary id into a single safe path segment.

    ``.`` and ``..`` are substituted so the result can never traverse upwards.
    """
    cleaned = _UNSAFE_SEGMENT_CHARS.sub("_", str(value)).strip("_")
    if not cleaned:
        cleaned = "unknown"
    if cleaned == ".":
        cleaned = "_dot_"
    elif cleaned == "..":
        cleaned = "_dotdot_"
    return cleaned[:MAX_SEGMENT_LENGTH]


def short_hash(commit: Optional[str]) -> str:
    return (commit or "")[:7] or "<none>"


def is_not_a_worktree_error(stderr: str) -> bool:
    text = (stderr or "").lower()
    return any(marker in text for marker in NOT_A_WORKTREE_MARKERS)


def managed_exclude_patterns(metadata_dir: str) -> List[str]:
    """Ignore patterns that keep Convoy's own files out of ``git status``."""
    return [
        f"{metadata_dir}/managed.json",
        f"{metadata_dir}/logs/",
        f"{metadata_dir}/*.jsonl",
        f"{metadata_dir}/*.lock",
    ]


def ensure_git_excludes(executor: CommandExecutor, repo_root: Path, patterns: Iterable[str]) -> List[str]:
    """Add ``patterns`` to the repository's shared ``info/exclude``.

    The common git dir's exclude file applies to every linked worktree, so a
    single write covers all of them.
    """
    res = executor.run(["rev-parse", "--git-common-dir"], cwd=repo_root)
    res.check("Failed to locate git common dir")
    common_dir = Path(res.output)
    if not common_dir.is_absolute():
        common_dir = (Path(repo_root) / common_dir).resolve()
    return ensure_lines_present(common_dir / "info" / "exclude", patterns)


class WorktreeManager:
    """Lifecycle manager for worker worktrees of one repository.

    Args:
        repo_root: Root of the main checkout.
        worktrees_dir: Managed root for worker worktrees (``<repo>/worktrees`` by default).
        executor: Git command executor.
        limiter: Bounds concurrent mutating commands.
        ephemeral_prefixes: Branch prefixes that may be created or reset.
        lock_on_create: Create worktrees git-locked with reason ``worker:<id>``.
        metadata_dir: Directory inside each worktree holding ``managed.json``.
        events: Optional event stream for worktree lifecycle events.
    """

    def __init__(
        self,
        repo_root: Path,
        *,
        worktrees_dir: Optional[Path] = None,
        executor: Optional[CommandExecutor] = None,
        limiter: Optional[ConcurrencyLimiter] = None,
        ephemeral_prefixes: Sequence[str] = DEFAULT_EPHEMERAL_PREFIXES,
        lock_on_create: bool = True,
        metadata_dir: str = ".convoy",
        events: Optional[EventStream] = None,
    ) -> None:
        self.repo_root = Path(repo_root).resolve()
        self.worktrees_dir = (self.repo_root / (worktrees_dir or "worktrees")).resolve()
        self.executor = executor or CommandExecutor()
        self.limiter = limiter or ConcurrencyLimiter()
        self.ephemeral_prefixes = tuple(p for p in ephemeral_prefixes if p)
        if not self.ephemeral_prefixes:
            raise ValueError("At least one ephemeral branch prefix is required")
        self.lock_on_create = lock_on_create
        self.metadata_dir = metadata_dir
        self.events = events
        self._registry: Dict[str, Worktree] = {}
        self._registry_lock = Lock()
        self._excludes_ready = False

    @classmethod
    def from_config(
        cls,
        repo_root: Path,
        worktrees_config,
        *,
        executor: Optional[CommandExecutor] = None,
        events: Optional[EventStream] = None,
    ) -> "WorktreeManager":
        return cls(
            repo_root,
            worktrees_dir=worktrees_config.base_directory,
            executor=executor,
            limiter=ConcurrencyLimiter(worktrees_config.max_concurrency),
            ephemeral_prefixes=worktrees_config.ephemeral_branch_prefixes,
            lock_on_create=worktrees_config.lock_on_create,
            metadata_dir=worktrees_config.metadata_directory,
            events=events,
        )

    # ------------------------------------------------------------------
    # Guards
    # ------------------------------------------------------------------
    def is_managed_path(self, path: Path) -> bool:
        """True when ``path`` resolves strictly inside the managed worktrees root."""
        root = os.path.realpath(self.worktrees_dir)
        target = os.path.realpath(path)
        if target == root:
            return False
        try:
            return os.path.commonpath([root, target]) == root
        except ValueError:
            return False

    def is_ephemeral_branch(self, branch_name: str) -> bool:
        return any(branch_name.startswith(prefix) and len(branch_name) > len(prefix) for prefix in self.ephemeral_prefixes)

    def assert_ephemeral_branch(self, branch_name: str) -> None:
        if not self.is_ephemeral_branch(branch_name):
            raise EphemeralBranchError(
                f"Refusing to create or reset non-ephemeral branch '{branch_name}'",
                context={"branch": branch_name, "allowed_prefixes": list(self.ephemeral_prefixes)},
            )

    def worktree_path_for(self, worker_id: str) -> Path:
        return self.worktrees_dir / sanitize_path_segment(worker_id)

    def has_managed_metadata(self, path: Path) -> bool:
        return has_managed_metadata(path, metadata_dir=self.metadata_dir)

    def get_worktree(self, worker_id: str) -> Optional[Worktree]:
        with self._registry_lock:
            return self._registry.get(worker_id)

    @property
    def worktrees(self) -> List[Worktree]:
        with self._registry_lock:
            return list(self._registry.values())

    # ------------------------------------------------------------------
    # Git helpers
    # ------------------------------------------------------------------
    def _git(self, args: Sequence[str], *, cwd: Optional[Path] = None) -> CommandResult:
        return self.executor.run(list(args), cwd=cwd or self.repo_root)

    def resolve_commit(self, ref: str, *, cwd: Optional[Path] = None) -> Optional[str]:
        res = self._git(["rev-parse", "--verify", "--quiet", f"{ref}^{{commit}}"], cwd=cwd)
        return res.output if res.ok and res.output else None

    def ensure_excludes(self) -> None:
        if self._excludes_ready:
            return
        patterns = managed_exclude_patterns(self.metadata_dir)
        try:
            rel: Optional[Path] = self.worktrees_dir.relative_to(self.repo_root)
        except ValueError:
            rel = None
        if rel is not None and rel.parts:
            patterns.append(f"/{rel.as_posix()}/")
        ensure_git_excludes(self.executor, self.repo_root, patterns)
        self._excludes_ready = True

    def prune(self) -> CommandResult:
        """Run ``git worktree prune`` under a permit; failures are logged."""
        return self.limiter.with_permit(self._prune)

    def _prune(self) -> CommandResult:
        res = self._git(["worktree", "prune"])
        if not res.ok:
            logger.warning("git worktree prune failed: %s", res.stderr.strip())
        return res

    def lock_worktree(self, path: Path, reason: Optional[str] = None) -> CommandResult:
        args = ["worktree", "lock"]
        if reason:
            args += ["--reason", reason]
        return self._git([*args, str(path)])

    def unlock_worktree(self, path: Path) -> CommandResult:
        return self._git(["worktree", "unlock", str(path)])

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------
    def create_worktrees(self, requests: Sequence[CreateWorktreeRequest]) -> Dict[str, Path]:
        """Create one worktree per request, concurrently, bounded by the limiter.

        Every request is checked before any git command runs: worker ids must
        be unique after sanitizing and every branch must carry an ephemeral
        prefix. A failing request raises after all requests have finished;
        worktrees created by the successful ones stay registered.
        """
        if not requests:
            return {}

        seen: Dict[str, str] = {}
        for req in requests:
            self.assert_ephemeral_branch(req.branch_name)
            segment = sanitize_path_segment(req.worker_id)
            if segment in seen:
                raise WorktreeError(
                    f"Worker ids '{seen[segment]}' and '{req.worker_id}' map to the same worktree path",
                    context={"segment": segment},
                )
            seen[segment] = req.worker_id

        ensure_directory(self.worktrees_dir)
        self.ensure_excludes()

        results: Dict[str, Path] = {}
        failures: Dict[str, BaseException] = {}
        with ThreadPoolExecutor(max_workers=len(requests), thread_name_prefix="convoy-wt") as pool:
            futures = {pool.submit(self.limiter.with_permit, self._create_one, req): req for req in requests}
            for future, req in futures.items():
                try:
                    results[req.worker_id] = future.result().path
                except ConvoyError as exc:
                    failures[req.worker_id] = exc

        if failures:
            if len(failures) == 1:
                raise next(iter(failures.values()))
            raise WorktreeError(
                f"Failed to create {len(failures)} of {len(requests)} worktrees",
                context={"failures": {wid: str(exc) for wid, exc in failures.items()}},
            )
        return results

    def create_worktree(self, request: CreateWorktreeRequest) -> Worktree:
        """Create a single worktree (see :meth:`create_worktrees`)."""
        self.assert_ephemeral_branch(request.branch_name)
        ensure_directory(self.worktrees_dir)
        self.ensure_excludes()
        return self.limiter.with_permit(self._create_one, request)

    def _create_one(self, request: CreateWorktreeRequest) -> Worktree:
        self.assert_ephemeral_branch(request.branch_name)
        path = self.worktree_path_for(request.worker_id)
        if not self.is_managed_path(path):
            raise UnmanagedPathError(f"Worktree path escapes managed root: {path}", context={"path": str(path)})

        commit = self.resolve_commit(request.base_ref)
        if commit is None:
            raise WorktreeError(
                f"Cannot resolve base ref '{request.base_ref}' for worker {request.worker_id}",
                context={"worker_id": request.worker_id, "base_ref": request.base_ref},
            )

        if path.exists() or path.is_symlink():
            logger.info("Removing stale worktree at %s before creation", path)
            self._remove_path(path)
            self._prune()

        lock_reason = request.lock_reason or f"worker:{request.worker_id}"
        args = ["worktree", "add", "--force"]
        if self.lock_on_create:
            args += ["--lock", "--reason", lock_reason]
        args += ["-B", request.branch_name, str(path), commit]

        res = self._git(args)
        if not res.ok:
            logger.warning("worktree add failed for %s, pruning and retrying: %s", request.worker_id, res.stderr.strip())
            self._prune()
            if path.exists():
                shutil.rmtree(path, ignore_errors=True)
            res = self._git(args)
        if not res.ok:
            raise WorktreeError(
                f"Failed to create worktree for {request.worker_id}: {res.stderr.strip()}",
                context={"worker_id": request.worker_id, "path": str(path), "exit_code": res.exit_code},
            )

        metadata = ManagedMetadata.for_current_process(
            repo_root=self.repo_root,
            worktree_path=path,
            worker_id=request.worker_id,
            branch_name=request.branch_name,
            base_ref=request.base_ref,
            expected_commit=commit,
        )
        write_managed_metadata(path, metadata, metadata_dir=self.metadata_dir)

        validation = self.validate_worktree(path, request.branch_name, commit)
        if not validation.valid:
            self._remove_path(path)
            self._prune()
            raise WorktreeValidationError(
                f"Worktree for {request.worker_id} failed validation: {validation.error}",
                context={
                    "worker_id": request.worker_id,
                    "path": str(path),
                    "expected_branch": request.branch_name,
                    "current_branch": validation.current_branch,
                    "expected_commit": commit,
                    "current_commit": validation.current_commit,
                },
            )

        worktree = Worktree(
            path=path,
            worker_id=request.worker_id,
            branch_name=request.branch_name,
            base_ref=request.base_ref,
            expected_commit=commit,
            locked=self.lock_on_create,
            lock_reason=lock_reason if self.lock_on_create else None,
        )
        with self._registry_lock:
            self._registry[request.worker_id] = worktree
        logger.info("Created worktree %s on %s at %s", path, request.branch_name, short_hash(commit))
        if self.events is not None:
            self.events.emit(
                WorktreeCreated(
                    worker_id=request.worker_id,
                    path=str(path),
                    branch_name=request.branch_name,
                    commit=commit,
                )
            )
        return worktree

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------
    def remove_worktree_path(self, path: Path) -> Optional[str]:
        """Remove one managed worktree directory; returns an error message or None.

        Callers issue the final ``prune`` themselves so batches prune once.
        """
        if not self.is_managed_path(path):
            logger.warning("Refusing to remove unmanaged path %s", path)
            return f"Refusing to remove path outside {self.worktrees_dir}: {path}"
        return self.limiter.with_permit(self._remove_path, path)

    def _remove_path(self, path: Path) -> Optional[str]:
        path = Path(path)
        managed = self.has_managed_metadata(path)
        existed = path.exists()
        error: Optional[str] = None

        self.unlock_worktree(path)
        res = self._git(["worktree", "remove", "--force", str(path)])
        if not res.ok and managed and not is_not_a_worktree_error(res.stderr):
            res = self._git(["worktree", "remove", "--force", "--force", str(path)])
        if not res.ok and existed and not is_not_a_worktree_error(res.stderr):
            error = f"git worktree remove failed for {path}: {res.stderr.strip()}"

        if path.exists() or path.is_symlink():
            try:
                if path.is_dir() and not path.is_symlink():
                    shutil.rmtree(path)
                else:
                    path.unlink()
            except OSError as exc:
                error = f"Failed to delete {path}: {exc}"

        if error:
            logger.warning(error)
        return error

    def cleanup_worktrees(self, worker_ids: Iterable[str]) -> None:
        """Best-effort removal of the given workers' worktrees; never raises."""
        ids = list(worker_ids)
        if not ids:
            return

        def _cleanup(worker_id: str) -> None:
            path = self.worktree_path_for(worker_id)
            try:
                self.remove_worktree_path(path)
            except Exception:
                logger.warning("Cleanup of worktree %s failed", path, exc_info=True)
                return
            with self._registry_lock:
                self._registry.pop(worker_id, None)
            if self.events is not None:
                self.events.emit(WorktreeRemoved(worker_id=worker_id, path=str(path)))

        with ThreadPoolExecutor(max_workers=len(ids), thread_name_prefix="convoy-wt") as pool:
            list(pool.map(_cleanup, ids))
        try:
            self.prune()
        except Exception:
            logger.warning("Final prune after cleanup failed", exc_info=True)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------
    def list_worktrees(self) -> List[WorktreeStatus]:
        res = self._git(["worktree", "list", "--porcelain", "-z"])
        res.check("git worktree list failed")
        return build_statuses(parse_worktree_porcelain(res.stdout), repo_root=self.repo_root)

    def get_worktree_health_summary(self) -> WorktreeHealthSummary:
        summary = WorktreeHealthSummary()
        for status in self.list_worktrees():
            if status.relative_path in ("", "."):
                continue
            summary.total += 1
            summary.counts[status.health_status] += 1
        return summary

    def repair_worktree(self, path: Optional[Path] = None) -> CommandResult:
        """Run ``git worktree repair`` for one path, or for all worktrees."""
        args = ["worktree", "repair"]
        if path is not None:
            args.append(str(path))
        return self.limiter.with_permit(self._git, args)

    def validate_worktree(self, path: Path, expected_branch: str, expected_commit: str) -> WorktreeValidation:
        """Compare the branch and HEAD checked out at ``path`` against expectations."""
        path = Path(path)

        def _invalid(error: str, branch: Optional[str] = None, commit: Optional[str] = None) -> WorktreeValidation:
            return WorktreeValidation(
                valid=False,
                path=path,
                expected_branch=expected_branch,
                expected_commit=expected_commit,
                current_branch=branch,
                current_commit=commit,
                error=error,
            )

        if not path.is_dir():
            return _invalid(f"Worktree path does not exist: {path}")

        branch_res = self._git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=path)
        if not branch_res.ok:
            return _invalid(f"Failed to read branch: {branch_res.stderr.strip()}")
        commit_res = self._git(["rev-parse", "HEAD"], cwd=path)
        if not commit_res.ok:
            return _invalid(f"Failed to read HEAD: {commit_res.stderr.strip()}", branch_res.output)

        branch, commit = branch_res.output, commit_res.output
        if branch != expected_branch:
            return _invalid(f"Branch mismatch: expected {expected_branch}, got {branch}", branch, commit)
        if commit != expected_commit:
            return _invalid(
                f"Commit mismatch: expected {short_hash(expected_commit)}, got {short_hash(commit)}",
                branch,
                commit,
            )
        return WorktreeValidation(
            valid=True,
            path=path,
            expected_branch=expected_branch,
            expected_commit=expected_commit,
            current_branch=branch,
            current_commit=commit,
        )


__all__ = [
    "WorktreeManager",
    "DEFAULT_EPHEMERAL_PREFIXES",
    "ensure_git_excludes",
    "is_not_a_worktree_error",
    "managed_exclude_patterns",
    "sanitize_path_segment",
    "short_hash",
]
