from __future__ import annotations

import pytest

from convoy.core.sync import SyncCode, SyncResult, backoff_delay


@pytest.mark.parametrize(
    "attempt, expected",
    [(0, 0.0), (1, 2.0), (2, 4.0), (3, 8.0), (4, 16.0), (5, 30.0), (9, 30.0)],
)
def test_backoff_doubles_until_cap(attempt: int, expected: float) -> None:
    assert backoff_delay(attempt, 2.0, 30.0) == expected


def test_sync_result_serializes_code() -> None:
    result = SyncResult(
        success=False,
        updated=False,
        previous_commit="abc",
        current_commit="abc",
        error="not a fast-forward",
        code=SyncCode.FAST_FORWARD_FAILED,
    )

    assert result.to_dict() == {
        "success": False,
        "updated": False,
        "previousCommit": "abc",
        "currentCommit": "abc",
        "error": "not a fast-forward",
        "code": "FAST_FORWARD_FAILED",
        "skipped": False,
    }
