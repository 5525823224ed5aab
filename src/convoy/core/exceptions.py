from __future__ import annotations

from typing import Any, Dict, Mapping


class ConvoyError(Exception):
    """Base exception for Convoy."""

    code: str = "CONVOY_ERROR"
    context: Dict[str, Any]

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        super().__init__(message)
        if context is not None:
            self.context = dict(context)
        else:
            self.context = {}

    def to_json_error(self) -> Dict[str, Any]:
        """Return a JSON-serializable error payload."""
        return {
            "message": str(self),
            "code": self.code,
            "type": self.__class__.__name__,
            "context": self.context,
        }


class ConfigError(ConvoyError, ValueError):
    """Raised when configuration cannot be loaded or fails schema validation."""

    code = "CONFIG_ERROR"

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        ConvoyError.__init__(self, message, context=context)
        ValueError.__init__(self, message)


class CommandError(ConvoyError, RuntimeError):
    """Raised when a required external command fails."""

    code = "COMMAND_FAILED"

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        ConvoyError.__init__(self, message, context=context)
        RuntimeError.__init__(self, message)


class WorktreeError(ConvoyError, RuntimeError):
    """Raised for errors in worktree creation, removal, or inspection."""

    code = "WORKTREE_ERROR"

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        ConvoyError.__init__(self, message, context=context)
        RuntimeError.__init__(self, message)


class EphemeralBranchError(WorktreeError):
    """Raised when a destructive reset targets a branch without an ephemeral prefix."""

    code = "NON_EPHEMERAL_BRANCH"


class UnmanagedPathError(WorktreeError):
    """Raised when a destructive operation targets a path outside the worktrees root."""

    code = "UNMANAGED_PATH"


class WorktreeValidationError(WorktreeError):
    """Raised when a freshly created worktree is not on the expected branch/commit."""

    code = "WORKTREE_VALIDATION_FAILED"


class MainSyncError(ConvoyError, RuntimeError):
    """Raised by main-sync worktree management; ``code`` carries the sync failure code."""

    def __init__(
        self,
        message: str = "",
        *,
        code: str = "WORKTREE_ERROR",
        context: Mapping[str, Any] | None = None,
    ) -> None:
        ConvoyError.__init__(self, message, context=context)
        RuntimeError.__init__(self, message)
        self.code = code


class MergeTrainError(ConvoyError, RuntimeError):
    """Raised when the merge train cannot be prepared or is misused."""

    code = "MERGE_TRAIN_ERROR"

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        ConvoyError.__init__(self, message, context=context)
        RuntimeError.__init__(self, message)


class ValidationGateError(ConvoyError, RuntimeError):
    """Raised when the validation gate cannot prepare its worktree."""

    code = "VALIDATION_GATE_ERROR"

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        ConvoyError.__init__(self, message, context=context)
        RuntimeError.__init__(self, message)


class InvalidTransitionError(ConvoyError, ValueError):
    """Raised when a status change does not follow the allowed transition graph."""

    code = "INVALID_TRANSITION"

    def __init__(self, message: str = "", *, context: Mapping[str, Any] | None = None) -> None:
        ConvoyError.__init__(self, message, context=context)
        ValueError.__init__(self, message)


__all__ = [
    "ConvoyError",
    "ConfigError",
    "CommandError",
    "WorktreeError",
    "EphemeralBranchError",
    "UnmanagedPathError",
    "WorktreeValidationError",
    "MainSyncError",
    "MergeTrainError",
    "ValidationGateError",
    "InvalidTransitionError",
]
