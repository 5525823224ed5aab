"""Quality gates: validation plans, checks, fix loop and fallbacks."""
from __future__ import annotations

from .gate import ValidationGate, prepare_validator_worktree
from .models import (
    ALLOWED_TRANSITIONS,
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
from .plan import build_plan, load_checks, normalize_check_id, select_checks

__all__ = [
    "ALLOWED_TRANSITIONS",
    "CheckConfig",
    "CheckOutcome",
    "FallbackStrategy",
    "FixAction",
    "FixRequest",
    "GateMode",
    "ValidationGate",
    "ValidationPlan",
    "ValidationRequest",
    "ValidationStatus",
    "build_plan",
    "load_checks",
    "normalize_check_id",
    "prepare_validator_worktree",
    "select_checks",
]
