"""Main-branch mirror kept current by fast-forward only."""
from __future__ import annotations

from .main_sync import (
    MainSyncCoordinator,
    MainSyncState,
    MainSyncStatus,
    SyncCode,
    SyncResult,
    backoff_delay,
)

__all__ = [
    "MainSyncCoordinator",
    "MainSyncState",
    "MainSyncStatus",
    "SyncCode",
    "SyncResult",
    "backoff_delay",
]
