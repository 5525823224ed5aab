"""Concurrency primitives shared by worktree and merge components."""
from __future__ import annotations

from .limiter import ConcurrencyLimiter, DEFAULT_MAX_CONCURRENCY

__all__ = ["ConcurrencyLimiter", "DEFAULT_MAX_CONCURRENCY"]
