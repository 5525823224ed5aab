"""
Convoy - parallel worker coordination over git worktrees.

Convoy runs many workers in isolated worktrees of one repository and
integrates their commits through a serialized merge train, quality gates
and a fast-forward-only mirror of the main branch.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
