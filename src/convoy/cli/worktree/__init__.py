"""Inspect and repair the repository's worktrees."""
