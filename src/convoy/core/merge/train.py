"""Serialized integration of worker commits into the target branch.

The train is the only writer of the target branch. Attempts are taken from
the queue in enqueue order and cherry-picked into the merge worktree one at
a time; conflicts go to the resolver a bounded number of times; clean
integrations are handed to the validation gate before an attempt settles.
"""
from __future__ import annotations

import logging
import threading
import time
from collections import deque
from concurrent.futures import Future
from pathlib import Path
from typing import Callable, Deque, Dict, List, Optional, Protocol, Sequence

from convoy.core.config.domains import SchedulerMode
from convoy.core.events import EventStream
from convoy.core.events.models import (
    MergeBlocked,
    MergeFailed,
    MergeQueued,
    MergeResolving,
    MergeStarted,
    MergeSucceeded,
    TrainHalted,
    TrainResumed,
)
from convoy.core.exceptions import MergeTrainError
from convoy.core.gates import GateMode, ValidationGate, ValidationPlan, ValidationRequest, ValidationStatus
from convoy.core.sync import MainSyncCoordinator, SyncResult
from convoy.core.utils.subprocess import CommandExecutor, CommandResult
from convoy.core.worktree.manager import WorktreeManager
from convoy.core.worktree.models import CreateWorktreeRequest

from .commits import is_empty_cherry_pick, read_commit_metadata, unmerged_files
from .independence import IndependencePredicate, disjoint_files
from .models import ConflictResolutionRequest, Escalation, MergeAttempt, MergeStatus
from .resolver import ConflictResolver

logger = logging.getLogger(__name__)

MERGE_WORKER_ID = "merge"
_CONTINUE_ENV = {"GIT_EDITOR": "true"}


class TaskLookup(Protocol):
    def get_title(self, task_id: str) -> Optional[str]: ...


def prepare_merge_worktree(
    manager: WorktreeManager,
    *,
    target_branch: str,
    base_ref: str = "HEAD",
    worker_id: str = MERGE_WORKER_ID,
) -> Path:
    """Create the merge worktree with ``target_branch`` checked out.

    An existing ``target_branch`` keeps its tip; otherwise it starts at
    ``base_ref``.
    """
    start = target_branch if manager.resolve_commit(f"refs/heads/{target_branch}") else base_ref
    worktree = manager.create_worktree(
        CreateWorktreeRequest(
            worker_id=worker_id,
            branch_name=target_branch,
            base_ref=start,
            lock_reason="merge train",
        )
    )
    return worktree.path


def build_failure_message(
    *,
    task_id: str,
    task_title: Optional[str],
    commit: str,
    reason: str,
    conflict_files: Sequence[str] = (),
) -> str:
    lines = [
        f"Task: {task_id}",
        f"Title: {task_title or task_id}",
        f"Commit: {commit[:7]}",
        f"Reason: {reason}",
    ]
    if conflict_files:
        lines.append(f"Conflict files: {', '.join(conflict_files)}")
    lines += [
        "",
        "Suggestions for manual resolution:",
        "1. Resolve the conflicts in the listed files (git mergetool or by hand)",
        "2. After resolving, run: git add <files> && git cherry-pick --continue",
        "3. Alternatively, skip this commit with: git cherry-pick --skip",
        "4. To abort and try later: git cherry-pick --abort",
    ]
    return "\n".join(lines)


class MergeTrain:
    """Single-consumer queue integrating :class:`MergeAttempt` objects in order.

    Args:
        executor: Git executor.
        merge_worktree: Worktree with ``target_branch`` checked out.
        target_branch: Branch receiving the integrations.
        repo_root: Repository used to read commit metadata.
        resolver: External conflict resolver; None disables resolution.
        resolver_enabled: Config switch for the resolver.
        max_attempts: Resolver invocations per conflicted attempt.
        retry_delay: Seconds between resolver invocations.
        escalation: ``block`` halts the train on a blocked attempt; ``abort``
            drops it and lets independent attempts continue.
        scheduler_mode: ``strict`` halts on any blocked attempt; ``balanced``
            lets independent attempts pass; ``off`` treats every attempt as
            independent.
        continue_on_blocked_independent: Allow independent attempts past a blocked one.
        independence: Predicate ``(candidate, blocked) -> bool``.
        gate: Validation gate consulted after each clean integration.
        main_sync: Mirror fast-forwarded to the target branch after success.
        task_lookup: Supplies task titles for failure messages.
        integration_lock: Lock shared with the gate for merge-worktree writes.
        events: Optional event stream.
        sleep: Sleep function used between resolver attempts.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        merge_worktree: Path,
        target_branch: str,
        repo_root: Optional[Path] = None,
        resolver: Optional[ConflictResolver] = None,
        resolver_enabled: bool = True,
        max_attempts: int = 3,
        retry_delay: float = 2.0,
        escalation: Escalation | str = Escalation.BLOCK,
        scheduler_mode: SchedulerMode | str = SchedulerMode.BALANCED,
        continue_on_blocked_independent: bool = True,
        independence: IndependencePredicate = disjoint_files,
        gate: Optional[ValidationGate] = None,
        main_sync: Optional[MainSyncCoordinator] = None,
        task_lookup: Optional[TaskLookup] = None,
        integration_lock: Optional[threading.Lock] = None,
        events: Optional[EventStream] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        if max_attempts < 0:
            raise ValueError(f"max_attempts must be >= 0 (got {max_attempts})")
        self.executor = executor
        self.merge_worktree = Path(merge_worktree)
        self.target_branch = target_branch
        self.repo_root = Path(repo_root) if repo_root is not None else self.merge_worktree
        self.resolver = resolver
        self.resolver_enabled = resolver_enabled
        self.max_attempts = int(max_attempts)
        self.retry_delay = float(retry_delay)
        self.escalation = Escalation(escalation)
        self.scheduler_mode = SchedulerMode(scheduler_mode)
        self.continue_on_blocked_independent = continue_on_blocked_independent
        self.independence = independence
        self.gate = gate
        self.main_sync = main_sync
        self.task_lookup = task_lookup
        self.integration_lock = integration_lock or (gate.integration_lock if gate else threading.Lock())
        self.events = events
        self._sleep = sleep

        self._cond = threading.Condition()
        self._queue: Deque[MergeAttempt] = deque()
        self._consumer_lock = threading.Lock()
        self._seq = 0
        self._halted = False
        self._halt_reason: Optional[str] = None
        self._stopping = False
        self._thread: Optional[threading.Thread] = None
        self.attempts: List[MergeAttempt] = []
        self.blocked: List[MergeAttempt] = []
        # Blocked attempts not yet acknowledged by resume().
        self._blocked_since_resume: List[MergeAttempt] = []
        self.pending_main_sync: Dict[str, MergeAttempt] = {}

    @classmethod
    def from_config(
        cls,
        executor: CommandExecutor,
        *,
        merge_worktree: Path,
        merge_config,
        resolver_config,
        parallel_config,
        **kwargs,
    ) -> "MergeTrain":
        return cls(
            executor,
            merge_worktree=merge_worktree,
            target_branch=merge_config.target_branch,
            continue_on_blocked_independent=merge_config.continue_on_blocked_independent,
            resolver_enabled=resolver_config.enabled,
            max_attempts=resolver_config.max_attempts,
            retry_delay=resolver_config.retry_delay_seconds,
            escalation=resolver_config.escalation,
            scheduler_mode=parallel_config.scheduler_mode,
            **kwargs,
        )

    def _emit(self, event) -> None:
        if self.events is not None:
            self.events.emit(event)

    def _git(self, args: Sequence[str], **kwargs) -> CommandResult:
        return self.executor.run(list(args), cwd=self.merge_worktree, **kwargs)

    # ------------------------------------------------------------------
    # Queue
    # ------------------------------------------------------------------
    @property
    def halted(self) -> bool:
        return self._halted

    @property
    def halt_reason(self) -> Optional[str]:
        return self._halt_reason

    @property
    def pending(self) -> List[MergeAttempt]:
        with self._cond:
            return list(self._queue)

    def enqueue(self, task_id: str, commit: str, *, worker_id: Optional[str] = None) -> MergeAttempt:
        """Append a worker commit to the queue and wake the consumer."""
        metadata = read_commit_metadata(self.executor, commit, self.repo_root)
        with self._cond:
            self._seq += 1
            attempt = MergeAttempt(
                task_id=task_id,
                commit_hash=metadata.hash if metadata else commit,
                seq=self._seq,
                worker_id=worker_id,
                commit_metadata=metadata,
            )
            self._queue.append(attempt)
            self.attempts.append(attempt)
            depth = len(self._queue)
            self._cond.notify_all()
        logger.info("Queued %s (%s) for merge, depth %d", task_id, attempt.short_commit, depth)
        self._emit(
            MergeQueued(
                task_id=task_id,
                commit=attempt.commit_hash,
                worker_id=worker_id,
                subject=metadata.subject if metadata else "",
                files_changed=metadata.files_changed if metadata else 0,
                queue_depth=depth,
            )
        )
        return attempt

    def halt(self, reason: str, *, task_id: Optional[str] = None) -> None:
        with self._cond:
            if self._halted:
                return
            self._halted = True
            self._halt_reason = reason
        logger.warning("Merge train halted: %s", reason)
        self._emit(TrainHalted(reason=reason, task_id=task_id))

    def resume(self) -> None:
        """Clear a halt or pause; queued attempts are processed again."""
        with self._cond:
            if not self._halted:
                return
            self._halted = False
            self._halt_reason = None
            self._blocked_since_resume.clear()
            pending = len(self._queue)
            self._cond.notify_all()
        logger.info("Merge train resumed with %d pending attempt(s)", pending)
        self._emit(TrainResumed(pending=pending))

    def process_next(self) -> Optional[MergeAttempt]:
        """Integrate the head of the queue; returns it, or None when idle or halted."""
        with self._consumer_lock:
            with self._cond:
                if self._halted or not self._queue:
                    return None
                attempt = self._queue.popleft()
            self._process(attempt)
            return attempt

    def drain(self) -> List[MergeAttempt]:
        """Process queued attempts until the queue is empty or the train halts."""
        processed: List[MergeAttempt] = []
        while True:
            attempt = self.process_next()
            if attempt is None:
                return processed
            processed.append(attempt)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            raise MergeTrainError("Merge train is already running")
        self._stopping = False
        self._thread = threading.Thread(target=self._run, name="convoy-merge-train", daemon=True)
        self._thread.start()

    def stop(self, *, timeout: Optional[float] = None) -> None:
        """Stop scheduling new attempts; the attempt in flight finishes first."""
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _run(self) -> None:
        while True:
            with self._cond:
                while not self._stopping and (self._halted or not self._queue):
                    self._cond.wait()
                if self._stopping:
                    return
            try:
                self.process_next()
            except Exception:
                logger.exception("Merge train consumer failed")

    # ------------------------------------------------------------------
    # Integration
    # ------------------------------------------------------------------
    @property
    def halts_on_block(self) -> bool:
        """Whether any blocked attempt stops every later one."""
        return self.scheduler_mode is SchedulerMode.STRICT or not self.continue_on_blocked_independent

    def _blocking_dependency(self, attempt: MergeAttempt) -> Optional[MergeAttempt]:
        if self.scheduler_mode is SchedulerMode.OFF:
            return None
        if self.halts_on_block:
            return self._blocked_since_resume[0] if self._blocked_since_resume else None
        for blocked in self.blocked:
            if not self.independence(attempt, blocked):
                return blocked
        return None

    def _process(self, attempt: MergeAttempt) -> None:
        dependency = self._blocking_dependency(attempt)
        if dependency is not None:
            self._block(
                attempt,
                f"Depends on blocked task {dependency.task_id} ({dependency.short_commit})",
                escalate=False,
            )
            return

        attempt.status = MergeStatus.STARTED
        self._emit(MergeStarted(task_id=attempt.task_id, commit=attempt.commit_hash))

        with self.integration_lock:
            integrated = self._integrate(attempt)
        if not integrated:
            return

        if attempt.integrated_commit is None or self.gate is None or not self.gate.active:
            self._succeed(attempt)
            return

        future = self.gate.submit(
            ValidationRequest(
                task_ids=(attempt.task_id,),
                commits=(attempt.integrated_commit,),
                files_changed=attempt.files,
            )
        )
        if self.gate.mode is GateMode.PER_MERGE:
            self._apply_verdict(attempt, future)
        else:
            future.add_done_callback(lambda f, a=attempt: self._apply_verdict(a, f))

    def _integrate(self, attempt: MergeAttempt) -> bool:
        """Cherry-pick ``attempt`` into the merge worktree; False when it settled as failed or blocked."""
        status = self._git(["status", "--porcelain", "--untracked-files=no"])
        if not status.ok or status.output:
            self._fail(attempt, "Merge worktree has uncommitted changes. Resolve before merge.")
            return False

        pick = self._git(["cherry-pick", attempt.commit_hash])
        if pick.ok:
            attempt.integrated_commit = self._head()
            return True

        if is_empty_cherry_pick(pick):
            self._skip_empty()
            logger.info("%s (%s) is already applied", attempt.task_id, attempt.short_commit)
            return True

        conflicts = unmerged_files(self.executor, self.merge_worktree)
        if not conflicts:
            self._abort_pick()
            self._fail(attempt, pick.stderr.strip() or "Cherry-pick failed")
            return False

        attempt.conflict_files = conflicts
        return self._resolve(attempt, pick)

    def _resolve(self, attempt: MergeAttempt, pick: CommandResult) -> bool:
        if self.resolver is None or not self.resolver_enabled or self.max_attempts == 0:
            self._abort_pick()
            self._block(attempt, "Merge conflict (resolver disabled)")
            return False

        title = self.task_lookup.get_title(attempt.task_id) if self.task_lookup else None
        for number in range(1, self.max_attempts + 1):
            attempt.status = MergeStatus.RESOLVING
            attempt.attempt_count = number
            self._emit(
                MergeResolving(
                    task_id=attempt.task_id,
                    commit=attempt.commit_hash,
                    attempt=number,
                    max_attempts=self.max_attempts,
                    conflict_files=tuple(attempt.conflict_files),
                )
            )
            request = ConflictResolutionRequest(
                task_id=attempt.task_id,
                commit=attempt.commit_hash,
                worktree_path=self.merge_worktree,
                conflict_files=tuple(attempt.conflict_files),
                attempt=number,
                max_attempts=self.max_attempts,
                task_title=title,
            )
            try:
                resolved = self.resolver.resolve(request)
            except Exception:
                logger.warning("Resolver raised for %s attempt %d", attempt.task_id, number, exc_info=True)
                resolved = False

            if resolved and self._continue_pick(attempt):
                attempt.resolved = True
                logger.info("Resolved conflicts for %s on attempt %d", attempt.task_id, number)
                return True
            if number < self.max_attempts:
                self._sleep(self.retry_delay)

        self._abort_pick()
        self._block(attempt, "Conflicts remain after auto-resolve")
        return False

    def _continue_pick(self, attempt: MergeAttempt) -> bool:
        if unmerged_files(self.executor, self.merge_worktree):
            return False
        self._git(["add", "-A"])
        cont = self._git(["cherry-pick", "--continue"], env_overrides=_CONTINUE_ENV)
        if cont.ok:
            attempt.integrated_commit = self._head()
            return True
        if is_empty_cherry_pick(cont):
            self._skip_empty()
            return True
        if not self._git(["rev-parse", "-q", "--verify", "CHERRY_PICK_HEAD"]).ok:
            # The resolver already concluded the pick itself.
            attempt.integrated_commit = self._head()
            return True
        logger.info("cherry-pick --continue failed for %s: %s", attempt.task_id, cont.stderr.strip())
        return False

    def _head(self) -> Optional[str]:
        res = self._git(["rev-parse", "HEAD"])
        return res.output if res.ok else None

    def _skip_empty(self) -> None:
        if not self._git(["cherry-pick", "--skip"]).ok:
            self._abort_pick()

    def _abort_pick(self) -> None:
        res = self._git(["cherry-pick", "--abort"])
        if not res.ok:
            logger.debug("cherry-pick --abort: %s", res.stderr.strip())

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------
    def _message(self, attempt: MergeAttempt, reason: str) -> str:
        title = self.task_lookup.get_title(attempt.task_id) if self.task_lookup else None
        return build_failure_message(
            task_id=attempt.task_id,
            task_title=title,
            commit=attempt.commit_hash,
            reason=reason,
            conflict_files=attempt.conflict_files,
        )

    def _fail(self, attempt: MergeAttempt, reason: str) -> None:
        message = self._message(attempt, reason)
        attempt.settle(MergeStatus.FAILED, message)
        logger.warning("Merge of %s (%s) failed: %s", attempt.task_id, attempt.short_commit, reason)
        self._emit(
            MergeFailed(
                task_id=attempt.task_id,
                commit=attempt.commit_hash,
                reason=message,
                conflict_files=tuple(attempt.conflict_files),
            )
        )

    def _block(self, attempt: MergeAttempt, reason: str, *, escalate: bool = True, escalation: Optional[str] = None) -> None:
        message = self._message(attempt, reason)
        attempt.settle(MergeStatus.BLOCKED, message)
        self.blocked.append(attempt)
        self._blocked_since_resume.append(attempt)
        logger.warning("Merge of %s (%s) blocked: %s", attempt.task_id, attempt.short_commit, reason)
        self._emit(
            MergeBlocked(
                task_id=attempt.task_id,
                commit=attempt.commit_hash,
                attempts_used=attempt.attempt_count,
                conflict_files=tuple(attempt.conflict_files),
                reason=message,
                escalation=escalation or self.escalation.value,
            )
        )
        if not escalate:
            return
        if self.escalation is Escalation.BLOCK or self.halts_on_block:
            self.halt(f"Merge of {attempt.task_id} blocked: {reason}", task_id=attempt.task_id)

    def _succeed(self, attempt: MergeAttempt) -> None:
        attempt.settle(MergeStatus.SUCCEEDED)
        logger.info("Merged %s (%s)", attempt.task_id, attempt.short_commit)
        self._emit(
            MergeSucceeded(
                task_id=attempt.task_id,
                commit=attempt.commit_hash,
                integrated_commit=attempt.integrated_commit,
                resolved=attempt.resolved,
                files_changed=len(attempt.files),
                conflict_files=tuple(attempt.conflict_files),
            )
        )
        self._sync_main(attempt)

    def _apply_verdict(self, attempt: MergeAttempt, future: "Future[Optional[ValidationPlan]]") -> None:
        try:
            plan = future.result()
        except Exception as exc:
            logger.exception("Validation of %s crashed", attempt.task_id)
            self._block_after_validation(attempt, f"Validation crashed: {exc}")
            return

        if plan is None:
            self._succeed(attempt)
            return
        attempt.plan_id = plan.plan_id
        if plan.status is ValidationStatus.PASSED:
            attempt.status = MergeStatus.VALIDATED
            self._succeed(attempt)
        elif plan.status is ValidationStatus.REVERTED:
            self._fail(attempt, f"Validation failed and was reverted: {plan.reason}")
        elif plan.paused:
            self._block(attempt, f"Validation failed, train paused: {plan.reason}", escalate=False, escalation="pause")
            self.halt(f"Validation {plan.plan_id} paused the train", task_id=attempt.task_id)
        else:
            self._block_after_validation(attempt, f"Validation failed: {plan.reason}")

    def _block_after_validation(self, attempt: MergeAttempt, reason: str) -> None:
        self._block(attempt, reason, escalate=False, escalation="quarantine")
        if self.halts_on_block:
            self.halt(f"Merge of {attempt.task_id} quarantined: {reason}", task_id=attempt.task_id)

    # ------------------------------------------------------------------
    # Main sync
    # ------------------------------------------------------------------
    def _sync_main(self, attempt: MergeAttempt) -> None:
        if self.main_sync is None:
            return
        result = self.main_sync.fast_forward_to(self.target_branch, task_id=attempt.task_id)
        if result.success:
            self.pending_main_sync.clear()
        else:
            self.pending_main_sync[attempt.task_id] = attempt

    def retry_main_sync(self) -> Optional[SyncResult]:
        """Retry the mirror fast-forward for tasks whose sync failed."""
        if self.main_sync is None or not self.pending_main_sync:
            return None
        result = self.main_sync.fast_forward_with_retry(
            self.target_branch, affected_task_count=len(self.pending_main_sync)
        )
        if result.success:
            self.pending_main_sync.clear()
        return result


__all__ = [
    "MergeTrain",
    "TaskLookup",
    "build_failure_message",
    "prepare_merge_worktree",
]
