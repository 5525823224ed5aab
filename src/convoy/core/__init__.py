"""Core coordination layer: worktrees, merge train, quality gates and main sync."""
