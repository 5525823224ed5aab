"""Conflict resolvers plugged into the merge train.

A resolver edits the conflicted files inside the merge worktree and returns
True when it believes every conflict is resolved. The train verifies that
claim itself, stages the result and continues the cherry-pick.
"""
from __future__ import annotations

import logging
from typing import Optional, Protocol

from convoy.core.utils.subprocess import CommandExecutor

from .models import ConflictResolutionRequest

logger = logging.getLogger(__name__)


class ConflictResolver(Protocol):
    def resolve(self, request: ConflictResolutionRequest) -> bool: ...


class CheckoutSideResolver:
    """Resolve every conflict by taking one side of the cherry-pick.

    ``side="theirs"`` keeps the worker's version, ``"ours"`` keeps the
    target branch's version.
    """

    def __init__(self, executor: Optional[CommandExecutor] = None, *, side: str = "theirs") -> None:
        if side not in ("theirs", "ours"):
            raise ValueError(f"side must be 'theirs' or 'ours' (got {side!r})")
        self.executor = executor or CommandExecutor()
        self.side = side

    def resolve(self, request: ConflictResolutionRequest) -> bool:
        for path in request.conflict_files:
            for args in (["checkout", f"--{self.side}", "--", path], ["add", "--", path]):
                res = self.executor.run(args, cwd=request.worktree_path)
                if not res.ok:
                    logger.info("Could not take %s side of %s: %s", self.side, path, res.stderr.strip())
                    return False
        return True


__all__ = ["CheckoutSideResolver", "ConflictResolver"]
