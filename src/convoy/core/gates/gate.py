"""Quality gate run against integrated commits.

For every plan the gate resets the validator worktree to the target branch,
runs the selected checks (rerunning flaky ones), and on failure drives the
fix loop. When the fix loop cannot make the checks pass it applies the
configured fallback: revert the integrated commits, quarantine the tasks,
or pause the merge train.
"""
from __future__ import annotations

import logging
import re
import shlex
import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Deque, List, Mapping, Optional, Sequence

from convoy.core.events import EventStream
from convoy.core.events.models import (
    ValidationBlocked,
    ValidationCheckFinished,
    ValidationCheckStarted,
    ValidationFailed,
    ValidationFixFailed,
    ValidationFixStarted,
    ValidationFixSucceeded,
    ValidationPassed,
    ValidationPaused,
    ValidationQueued,
    ValidationReverted,
    ValidationStarted,
)
from convoy.core.exceptions import ValidationGateError
from convoy.core.utils.io import ensure_directory, write_json_atomic, write_text
from convoy.core.utils.subprocess import CommandExecutor, CommandResult, run_process
from convoy.core.utils.time import utc_timestamp
from convoy.core.worktree.manager import WorktreeManager
from convoy.core.worktree.models import CreateWorktreeRequest

from .models import (
    CheckConfig,
    CheckOutcome,
    FallbackStrategy,
    FixAction,
    FixRequest,
    GateMode,
    ValidationPlan,
    ValidationRequest,
    ValidationStatus,
)
from .plan import build_plan, load_checks, new_plan_id

logger = logging.getLogger(__name__)

DEFAULT_CHECK_TIMEOUT_SECONDS = 600.0
VALIDATOR_WORKER_ID = "validator"

_ANSI_RE = re.compile(r"\x1b\[[0-9;?]*[ -/]*[@-~]")


def strip_ansi(text: str) -> str:
    return _ANSI_RE.sub("", text)


def prepare_validator_worktree(
    manager: WorktreeManager,
    *,
    branch_name: str,
    target_branch: str,
    worker_id: str = VALIDATOR_WORKER_ID,
) -> Path:
    """Create (or recreate) the validator worktree on ``branch_name`` at ``target_branch``."""
    worktree = manager.create_worktree(
        CreateWorktreeRequest(
            worker_id=worker_id,
            branch_name=branch_name,
            base_ref=target_branch,
            lock_reason="validation",
        )
    )
    return worktree.path


@dataclass
class _CheckRun:
    passed: bool
    flaky: bool = False
    failed_check: Optional[str] = None
    reason: Optional[str] = None
    outcomes: List[CheckOutcome] = field(default_factory=list)


@dataclass
class _Batch:
    plan_id: str
    request: ValidationRequest
    ready_at: float
    futures: List["Future[Optional[ValidationPlan]]"] = field(default_factory=list)


class ValidationGate:
    """Validate integrated work and settle every plan in a terminal state.

    Args:
        executor: Git executor; check commands reuse its isolated environment.
        validator_worktree: Worktree the checks run in.
        target_branch: Branch the validator is reset to before each plan.
        merge_worktree: Worktree with ``target_branch`` checked out; reverts
            and fix commits are applied there.
        checks: Check definitions keyed by id.
        rules: Path-prefix rules selecting extra checks.
        mode: ``per-merge``, ``coalesce`` or ``batch-window``.
        batch_window: Seconds a batch collects requests in ``batch-window`` mode.
        max_fix_attempts: Fix-loop rounds; independent of the resolver's attempts.
        max_test_reruns: Reruns for checks with ``retry_on_failure``.
        fix_action: External fixer invoked inside the validator worktree.
        logs_dir: Root for per-plan logs.
        integration_lock: Lock serializing writes to the merge worktree.
        on_pause: Called when the ``pause`` fallback fires.
    """

    def __init__(
        self,
        executor: CommandExecutor,
        *,
        validator_worktree: Path,
        target_branch: str,
        merge_worktree: Optional[Path] = None,
        checks: Mapping[str, CheckConfig] | None = None,
        rules: Mapping[str, Sequence[str]] | None = None,
        enabled: bool = True,
        mode: GateMode | str = GateMode.PER_MERGE,
        batch_window: float = 5.0,
        max_fix_attempts: int = 2,
        max_test_reruns: int = 2,
        clean_before_run: bool = True,
        fallback_strategy: FallbackStrategy | str = FallbackStrategy.REVERT,
        fix_action: Optional[FixAction] = None,
        logs_dir: Optional[Path] = None,
        metadata_dir: str = ".convoy",
        check_timeout: float = DEFAULT_CHECK_TIMEOUT_SECONDS,
        integration_lock: Optional[threading.Lock] = None,
        events: Optional[EventStream] = None,
        on_pause: Optional[Callable[[ValidationPlan], None]] = None,
    ) -> None:
        self.executor = executor
        self.validator_worktree = Path(validator_worktree)
        self.target_branch = target_branch
        self.merge_worktree = Path(merge_worktree) if merge_worktree is not None else None
        self.checks = dict(checks or {})
        self.rules = {k: list(v) for k, v in (rules or {}).items()}
        self.enabled = enabled
        self.mode = GateMode(mode)
        self.batch_window = float(batch_window)
        self.max_fix_attempts = max(0, int(max_fix_attempts))
        self.max_test_reruns = max(0, int(max_test_reruns))
        self.clean_before_run = clean_before_run
        self.fallback_strategy = FallbackStrategy(fallback_strategy)
        self.fix_action = fix_action
        self.logs_dir = Path(logs_dir) if logs_dir is not None else self.validator_worktree / metadata_dir / "logs"
        self.metadata_dir = metadata_dir
        self.check_timeout = float(check_timeout)
        self.integration_lock = integration_lock or threading.Lock()
        self.events = events
        self.on_pause = on_pause

        self._cond = threading.Condition()
        self._batches: Deque[_Batch] = deque()
        self._worker: Optional[threading.Thread] = None
        self._stopping = False
        self.plans: List[ValidationPlan] = []

    @classmethod
    def from_config(
        cls,
        executor: CommandExecutor,
        quality_config,
        *,
        validator_worktree: Path,
        target_branch: str,
        merge_worktree: Optional[Path] = None,
        logs_dir: Optional[Path] = None,
        **kwargs,
    ) -> "ValidationGate":
        return cls(
            executor,
            validator_worktree=validator_worktree,
            target_branch=target_branch,
            merge_worktree=merge_worktree,
            checks=load_checks(quality_config.checks),
            rules=quality_config.rules,
            enabled=quality_config.enabled,
            mode=quality_config.mode,
            batch_window=quality_config.batch_window_seconds,
            max_fix_attempts=quality_config.max_fix_attempts,
            max_test_reruns=quality_config.max_test_reruns,
            clean_before_run=quality_config.clean_before_run,
            fallback_strategy=quality_config.fallback_strategy,
            logs_dir=logs_dir,
            **kwargs,
        )

    def _emit(self, event) -> None:
        if self.events is not None:
            self.events.emit(event)

    def _git(self, args: Sequence[str], cwd: Path) -> CommandResult:
        return self.executor.run(list(args), cwd=cwd)

    # ------------------------------------------------------------------
    # Queueing
    # ------------------------------------------------------------------
    @property
    def active(self) -> bool:
        return self.enabled and bool(self.checks)

    def submit(self, request: ValidationRequest) -> "Future[Optional[ValidationPlan]]":
        """Queue ``request`` for validation; the future resolves to the settled plan.

        Resolves immediately to None when the gate is disabled or has no
        checks. In ``coalesce`` and ``batch-window`` modes a request joins
        the batch still waiting to run.
        """
        future: "Future[Optional[ValidationPlan]]" = Future()
        if not self.active:
            future.set_result(None)
            return future

        with self._cond:
            joinable = self._batches[-1] if self._batches and self.mode is not GateMode.PER_MERGE else None
            if joinable is not None:
                joinable.request = joinable.request.combine(request)
                joinable.futures.append(future)
                batch = joinable
            else:
                window = self.batch_window if self.mode is GateMode.BATCH_WINDOW else 0.0
                batch = _Batch(
                    plan_id=new_plan_id(),
                    request=request,
                    ready_at=time.monotonic() + window,
                    futures=[future],
                )
                self._batches.append(batch)
            depth = len(self._batches)
            self._ensure_worker()
            self._cond.notify_all()

        logger.info("Queued validation %s for %s", batch.plan_id, ", ".join(request.task_ids))
        self._emit(ValidationQueued(plan_id=batch.plan_id, task_ids=batch.request.task_ids, queue_depth=depth))
        return future

    def _ensure_worker(self) -> None:
        if self._worker is not None and self._worker.is_alive():
            return
        self._stopping = False
        self._worker = threading.Thread(target=self._worker_loop, name="convoy-validation", daemon=True)
        self._worker.start()

    def _next_batch(self) -> Optional[_Batch]:
        with self._cond:
            while True:
                if self._batches:
                    delay = self._batches[0].ready_at - time.monotonic()
                    if delay <= 0 or self._stopping:
                        return self._batches.popleft()
                    self._cond.wait(delay)
                    continue
                if self._stopping:
                    return None
                self._cond.wait()

    def _worker_loop(self) -> None:
        while True:
            batch = self._next_batch()
            if batch is None:
                return
            try:
                plan = self.validate(batch.request, plan_id=batch.plan_id)
            except Exception as exc:
                logger.exception("Validation %s crashed", batch.plan_id)
                for future in batch.futures:
                    future.set_exception(exc)
                continue
            for future in batch.futures:
                future.set_result(plan)

    def stop(self, *, timeout: Optional[float] = None) -> None:
        """Finish queued batches, then stop the worker thread."""
        with self._cond:
            self._stopping = True
            self._cond.notify_all()
        if self._worker is not None:
            self._worker.join(timeout)

    # ------------------------------------------------------------------
    # Plan execution
    # ------------------------------------------------------------------
    def validate(self, request: ValidationRequest, *, plan_id: Optional[str] = None) -> Optional[ValidationPlan]:
        """Build and run a plan for ``request`` synchronously."""
        plan = build_plan(
            request,
            self.checks,
            self.rules,
            fallback_strategy=self.fallback_strategy,
            plan_id=plan_id,
        )
        if plan is None:
            return None
        self.plans.append(plan)
        self.run_plan(plan)
        return plan

    def run_plan(self, plan: ValidationPlan) -> ValidationPlan:
        plan.log_dir = self.logs_dir / plan.plan_id
        ensure_directory(plan.log_dir)

        plan.transition(ValidationStatus.STARTED)
        self._emit(
            ValidationStarted(
                plan_id=plan.plan_id,
                task_ids=plan.task_ids,
                check_ids=tuple(c.id for c in plan.checks),
            )
        )
        write_json_atomic(plan.log_dir / "plan.json", plan.to_dict())

        try:
            base_commit = self._prepare_validator()
        except ValidationGateError as exc:
            plan.reason = str(exc)
            plan.transition(ValidationStatus.FAILED)
            self._emit(ValidationFailed(plan_id=plan.plan_id, reason=plan.reason))
            self._block(plan, plan.reason)
            self._write_summary(plan)
            return plan

        run = self._run_checks(plan, plan.log_dir)
        plan.check_outcomes = run.outcomes
        if run.passed:
            plan.outcome = "flaky" if run.flaky else "passed"
            plan.transition(ValidationStatus.PASSED)
            logger.info("Validation %s %s", plan.plan_id, plan.outcome)
            self._emit(ValidationPassed(plan_id=plan.plan_id, outcome=plan.outcome))
            self._write_summary(plan)
            return plan

        plan.reason = run.reason or "Validation checks failed"
        plan.failed_check = run.failed_check
        plan.transition(ValidationStatus.FAILED)
        logger.warning("Validation %s failed: %s", plan.plan_id, plan.reason)
        self._emit(
            ValidationFailed(
                plan_id=plan.plan_id,
                reason=plan.reason,
                failed_checks=tuple(o.id for o in run.outcomes if not o.passed),
            )
        )

        if self._fix_loop(plan, base_commit, run):
            self._write_summary(plan)
            return plan

        self._apply_fallback(plan, plan.reason)
        self._write_summary(plan)
        return plan

    def _prepare_validator(self) -> str:
        with self.integration_lock:
            res = self._git(["rev-parse", "--verify", f"{self.target_branch}^{{commit}}"], self.validator_worktree)
        if not res.ok or not res.output:
            raise ValidationGateError(
                f"Cannot resolve target branch {self.target_branch}: {res.stderr.strip()}",
                context={"target_branch": self.target_branch},
            )
        commit = res.output
        reset = self._git(["reset", "--hard", commit], self.validator_worktree)
        if not reset.ok:
            raise ValidationGateError(
                reset.stderr.strip() or "Failed to reset validator worktree",
                context={"path": str(self.validator_worktree)},
            )
        if self.clean_before_run:
            self._git(["clean", "-fdx", "-e", self.metadata_dir], self.validator_worktree)
        return commit

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------
    def _execute_check(self, plan: ValidationPlan, check: CheckConfig, log_dir: Path, attempt: int) -> CommandResult:
        suffix = f"-rerun-{attempt - 1}" if attempt > 1 else ""
        log_path = log_dir / f"{check.id}{suffix}.log"
        self._emit(ValidationCheckStarted(plan_id=plan.plan_id, check_id=check.id, attempt=attempt))
        try:
            argv = shlex.split(check.command)
            parse_error = "" if argv else "empty command"
        except ValueError as exc:
            argv, parse_error = [], str(exc)
        if argv:
            result = run_process(
                argv,
                cwd=self.validator_worktree,
                timeout=check.timeout_seconds or self.check_timeout,
                env=self.executor.environment(),
            )
        else:
            result = CommandResult((), "", f"Invalid check command {check.command!r}: {parse_error}", 1, 0)
        output = strip_ansi(f"{result.stdout}\n{result.stderr}").strip()
        write_text(log_path, output + "\n")
        self._emit(
            ValidationCheckFinished(
                plan_id=plan.plan_id,
                check_id=check.id,
                attempt=attempt,
                exit_code=result.exit_code,
                duration_ms=result.duration_ms,
                log_path=str(log_path),
            )
        )
        return result

    def _run_checks(self, plan: ValidationPlan, log_dir: Path) -> _CheckRun:
        ensure_directory(log_dir)
        run = _CheckRun(passed=True)
        for check in plan.checks:
            first = self._execute_check(plan, check, log_dir, 1)
            outcome = CheckOutcome(
                id=check.id,
                command=check.command,
                exit_code=first.exit_code,
                duration_ms=first.duration_ms,
                log_path=log_dir / f"{check.id}.log",
                timed_out=first.timed_out,
            )
            if not first.ok:
                for rerun in range(1, check.reruns(self.max_test_reruns) + 1):
                    again = self._execute_check(plan, check, log_dir, rerun + 1)
                    outcome.rerun_exit_codes.append(again.exit_code)
                    if again.ok:
                        break
            run.outcomes.append(outcome)

            if outcome.flaky:
                logger.info("Check %s passed on rerun (flaky)", check.id)
                run.flaky = True
            if not outcome.passed and check.required:
                run.passed = False
                run.failed_check = check.id
                run.reason = f"Check '{check.id}' failed (exit {outcome.exit_code})"
                return run
        return run

    # ------------------------------------------------------------------
    # Fix loop
    # ------------------------------------------------------------------
    def _fix_loop(self, plan: ValidationPlan, base_commit: str, run: _CheckRun) -> bool:
        if self.fix_action is None or self.max_fix_attempts == 0:
            return False

        for attempt in range(1, self.max_fix_attempts + 1):
            plan.fix_attempts = attempt
            plan.transition(ValidationStatus.FIX_STARTED)
            self._emit(ValidationFixStarted(plan_id=plan.plan_id, attempt=attempt))

            error = self._attempt_fix(plan, attempt, base_commit, run)
            if error is None:
                plan.transition(ValidationStatus.FIX_SUCCEEDED)
                self._emit(
                    ValidationFixSucceeded(plan_id=plan.plan_id, attempt=attempt, fix_commits=tuple(plan.fix_commits))
                )
                plan.transition(ValidationStatus.STARTED)
                plan.transition(ValidationStatus.PASSED)
                plan.outcome = "healed"
                logger.info("Validation %s healed after %d fix attempt(s)", plan.plan_id, attempt)
                self._emit(ValidationPassed(plan_id=plan.plan_id, outcome="healed"))
                return True

            plan.transition(ValidationStatus.FIX_FAILED)
            logger.warning("Fix attempt %d for %s failed: %s", attempt, plan.plan_id, error)
            self._emit(ValidationFixFailed(plan_id=plan.plan_id, attempt=attempt, reason=error))
        return False

    def _attempt_fix(self, plan: ValidationPlan, attempt: int, base_commit: str, run: _CheckRun) -> Optional[str]:
        """Run one fix round; returns an error message, or None when checks pass again."""
        failed_log = (plan.log_dir / f"{run.failed_check}.log") if plan.log_dir and run.failed_check else None
        request = FixRequest(
            plan_id=plan.plan_id,
            attempt=attempt,
            failed_check=run.failed_check,
            log_path=failed_log,
            worktree_path=self.validator_worktree,
            reason=plan.reason or "Validation checks failed",
        )
        try:
            completed = self.fix_action.fix(request)
        except Exception as exc:
            logger.warning("Fix action raised for %s", plan.plan_id, exc_info=True)
            return f"Fix action raised: {exc}"
        if not completed:
            return "Fix action did not complete"

        status = self._git(["status", "--porcelain"], self.validator_worktree)
        if not status.output:
            return "Fix attempt produced no changes"
        self._git(["add", "-A"], self.validator_worktree)
        commit = self._git(
            ["commit", "-m", f"chore(quality-gate): fix {plan.plan_id} attempt {attempt}"],
            self.validator_worktree,
        )
        if not commit.ok:
            return commit.stderr.strip() or "Failed to commit fix"

        rerun = self._run_checks(plan, plan.log_dir / f"fix-{attempt}")
        if not rerun.passed:
            return rerun.reason or "Fix attempt did not pass validation"

        fix_commits = self._git(["rev-list", "--reverse", f"{base_commit}..HEAD"], self.validator_worktree)
        commits = fix_commits.output.split() if fix_commits.ok else []
        if self.merge_worktree is not None and commits:
            with self.integration_lock:
                pick = self._git(["cherry-pick", *commits], self.merge_worktree)
                if not pick.ok:
                    self._git(["cherry-pick", "--abort"], self.merge_worktree)
                    return pick.stderr.strip() or "Failed to apply fix to the target branch"
        plan.fix_commits = commits
        return None

    # ------------------------------------------------------------------
    # Fallbacks
    # ------------------------------------------------------------------
    def _apply_fallback(self, plan: ValidationPlan, reason: str) -> None:
        strategy = plan.fallback_strategy
        logger.warning("Validation %s exhausted; applying %s fallback", plan.plan_id, strategy.value)
        if strategy is FallbackStrategy.REVERT:
            self._revert(plan, reason)
        elif strategy is FallbackStrategy.QUARANTINE:
            self._block(plan, reason)
        else:
            plan.paused = True
            self._emit(ValidationPaused(plan_id=plan.plan_id, reason=reason))
            if self.on_pause is not None:
                self.on_pause(plan)

    def _revert(self, plan: ValidationPlan, reason: str) -> None:
        if self.merge_worktree is None:
            self._block(plan, f"{reason} (no merge worktree to revert in)")
            return
        reverted: List[str] = []
        with self.integration_lock:
            for commit in reversed(plan.commits):
                res = self._git(["revert", "--no-edit", commit], self.merge_worktree)
                if not res.ok:
                    self._git(["revert", "--abort"], self.merge_worktree)
                    logger.error("Revert of %s failed: %s", commit[:7], res.stderr.strip())
                    plan.reverted_commits = reverted
                    self._block(plan, f"{reason}; revert of {commit[:7]} failed: {res.stderr.strip()}")
                    return
                reverted.append(commit)
        plan.reverted_commits = reverted
        plan.transition(ValidationStatus.REVERTED)
        self._emit(ValidationReverted(plan_id=plan.plan_id, reverted_commits=tuple(reverted), reason=reason))

    def _block(self, plan: ValidationPlan, reason: str) -> None:
        plan.reason = reason
        plan.transition(ValidationStatus.BLOCKED)
        self._emit(ValidationBlocked(plan_id=plan.plan_id, task_ids=plan.task_ids, reason=reason))

    def _write_summary(self, plan: ValidationPlan) -> None:
        if plan.log_dir is None:
            return
        write_json_atomic(
            plan.log_dir / "summary.json",
            {
                "planId": plan.plan_id,
                "status": plan.status.value,
                "outcome": plan.outcome,
                "failedCheck": plan.failed_check,
                "reason": plan.reason,
                "fixAttempts": plan.fix_attempts,
                "paused": plan.paused,
                "checks": [o.to_dict() for o in plan.check_outcomes],
                "endedAt": utc_timestamp(),
            },
        )


__all__ = [
    "DEFAULT_CHECK_TIMEOUT_SECONDS",
    "ValidationGate",
    "prepare_validator_worktree",
    "strip_ansi",
]
