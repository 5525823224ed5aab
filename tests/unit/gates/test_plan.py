from __future__ import annotations

import pytest

from convoy.core.exceptions import InvalidTransitionError
from convoy.core.gates import (
    CheckConfig,
    CheckOutcome,
    FallbackStrategy,
    ValidationPlan,
    ValidationRequest,
    ValidationStatus,
    build_plan,
    load_checks,
    normalize_check_id,
    select_checks,
)


def _checks():
    return load_checks(
        {
            "Type Check": {"command": "mypy .", "required": True},
            "unit": {"command": "pytest tests/unit", "retryOnFailure": True},
            "docs": {"command": "mkdocs build", "timeoutMs": 30000},
        }
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("Type Check", "type-check"),
        ("unit", "unit"),
        ("  Lint!! ", "lint"),
        ("a__b", "a-b"),
        ("***", ""),
    ],
)
def test_normalize_check_id(raw: str, expected: str) -> None:
    assert normalize_check_id(raw) == expected


def test_load_checks_parses_camel_case_fields() -> None:
    checks = _checks()

    assert list(checks) == ["type-check", "unit", "docs"]
    assert checks["type-check"].required is True
    assert checks["unit"].retry_on_failure is True
    assert checks["docs"].timeout_seconds == 30.0


def test_required_checks_always_selected() -> None:
    selected = select_checks(_checks(), {}, ["README.md"])

    assert [c.id for c in selected] == ["type-check"]


def test_rules_add_checks_for_matching_prefixes() -> None:
    rules = {"docs/": ["docs"], "src/": ["unit"]}

    selected = select_checks(_checks(), rules, ["docs/index.md"])

    assert [c.id for c in selected] == ["type-check", "docs"]


def test_selection_falls_back_to_every_check() -> None:
    checks = load_checks({"unit": {"command": "pytest"}, "lint": {"command": "ruff ."}})

    selected = select_checks(checks, {}, ["anything.txt"])

    assert [c.id for c in selected] == ["unit", "lint"]


def test_build_plan_without_checks_is_none() -> None:
    request = ValidationRequest(task_ids=("T1",), commits=("abc",))

    assert build_plan(request, {}, {}) is None


def test_build_plan_records_rationale() -> None:
    request = ValidationRequest(task_ids=("T1",), commits=("abc",), files_changed=("src/a.py",))

    plan = build_plan(request, _checks(), {"src/": ["unit"]}, fallback_strategy=FallbackStrategy.PAUSE, plan_id="p1")

    assert plan is not None
    assert plan.plan_id == "p1"
    assert plan.status is ValidationStatus.QUEUED
    assert plan.fallback_strategy is FallbackStrategy.PAUSE
    assert [c.id for c in plan.checks] == ["type-check", "unit"]
    assert "src/a.py" in plan.rationale


def test_plan_follows_allowed_transitions() -> None:
    plan = ValidationPlan(plan_id="p", task_ids=("T",), commits=("c",), checks=[])

    for status in (
        ValidationStatus.STARTED,
        ValidationStatus.FAILED,
        ValidationStatus.FIX_STARTED,
        ValidationStatus.FIX_SUCCEEDED,
        ValidationStatus.STARTED,
        ValidationStatus.PASSED,
    ):
        plan.transition(status)

    assert plan.is_terminal
    assert plan.succeeded
    assert plan.history[0] is ValidationStatus.QUEUED
    assert len(plan.history) == 7


def test_queued_cannot_jump_to_passed() -> None:
    plan = ValidationPlan(plan_id="p", task_ids=("T",), commits=("c",), checks=[])

    with pytest.raises(InvalidTransitionError):
        plan.transition(ValidationStatus.PASSED)

    assert plan.status is ValidationStatus.QUEUED


def test_terminal_states_reject_transitions() -> None:
    plan = ValidationPlan(plan_id="p", task_ids=("T",), commits=("c",), checks=[])
    plan.transition(ValidationStatus.STARTED)
    plan.transition(ValidationStatus.FAILED)
    plan.transition(ValidationStatus.REVERTED)

    with pytest.raises(InvalidTransitionError):
        plan.transition(ValidationStatus.STARTED)


def test_paused_plan_counts_as_terminal() -> None:
    plan = ValidationPlan(plan_id="p", task_ids=("T",), commits=("c",), checks=[])
    plan.transition(ValidationStatus.STARTED)
    plan.transition(ValidationStatus.FAILED)
    plan.paused = True

    assert plan.is_terminal
    assert plan.status is ValidationStatus.FAILED


def test_check_reruns() -> None:
    assert CheckConfig(id="a", command="x").reruns(2) == 0
    assert CheckConfig(id="a", command="x", retry_on_failure=True).reruns(2) == 2
    assert CheckConfig(id="a", command="x", max_reruns=1).reruns(5) == 1


def test_check_outcome_flaky_when_rerun_passes() -> None:
    outcome = CheckOutcome(id="unit", command="pytest", exit_code=1, duration_ms=5, rerun_exit_codes=[0])

    assert outcome.passed
    assert outcome.flaky
    assert outcome.executions == 2


def test_request_combine_keeps_order_and_drops_duplicates() -> None:
    first = ValidationRequest(task_ids=("T1",), commits=("a",), files_changed=("x.py",))
    second = ValidationRequest(task_ids=("T2", "T1"), commits=("b",), files_changed=("x.py", "y.py"))

    combined = first.combine(second)

    assert combined.task_ids == ("T1", "T2")
    assert combined.commits == ("a", "b")
    assert combined.files_changed == ("x.py", "y.py")
