"""Build validation plans from configured checks and path rules."""
from __future__ import annotations

import re
import uuid
from typing import Any, Dict, List, Mapping, Optional, Sequence

from convoy.core.utils.time import compact_timestamp

from .models import CheckConfig, FallbackStrategy, ValidationPlan, ValidationRequest

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def normalize_check_id(name: str) -> str:
    return _NON_ALNUM.sub("-", str(name).lower()).strip("-")


def new_plan_id() -> str:
    return f"plan-{compact_timestamp()}-{uuid.uuid4().hex[:6]}"


def load_checks(checks_config: Mapping[str, Mapping[str, Any]]) -> Dict[str, CheckConfig]:
    """Parse the ``qualityGates.checks`` mapping, keyed by normalized id."""
    checks: Dict[str, CheckConfig] = {}
    for name, data in checks_config.items():
        check_id = normalize_check_id(name)
        if not check_id:
            continue
        checks[check_id] = CheckConfig.from_mapping(check_id, data or {})
    return checks


def select_checks(
    checks: Mapping[str, CheckConfig],
    rules: Mapping[str, Sequence[str]],
    files_changed: Sequence[str],
) -> List[CheckConfig]:
    """Required checks plus those named by rules whose path prefix matches a changed file.

    Falls back to every check when nothing is selected.
    """
    selected = {check_id for check_id, check in checks.items() if check.required}
    for path in files_changed:
        for prefix, rule_checks in rules.items():
            if path.startswith(prefix):
                selected.update(normalize_check_id(c) for c in rule_checks)
    if not selected:
        selected = set(checks)
    return [check for check_id, check in checks.items() if check_id in selected]


def build_plan(
    request: ValidationRequest,
    checks: Mapping[str, CheckConfig],
    rules: Mapping[str, Sequence[str]],
    *,
    fallback_strategy: FallbackStrategy = FallbackStrategy.REVERT,
    plan_id: Optional[str] = None,
) -> Optional[ValidationPlan]:
    """Return a plan for ``request``, or None when no checks are configured."""
    selected = select_checks(checks, rules, request.files_changed)
    if not selected:
        return None
    changed = ", ".join(request.files_changed) or "no changed files"
    return ValidationPlan(
        plan_id=plan_id or new_plan_id(),
        task_ids=request.task_ids,
        commits=request.commits,
        checks=selected,
        fallback_strategy=fallback_strategy,
        files_changed=request.files_changed,
        rationale=f"Selected checks ({', '.join(c.id for c in selected)}) based on: {changed}",
    )


__all__ = ["build_plan", "load_checks", "new_plan_id", "normalize_check_id", "select_checks"]
