import os
import shutil
import sys
from pathlib import Path

import pytest

TESTS_ROOT = Path(__file__).resolve().parent
REPO_ROOT = TESTS_ROOT.parent
SRC_ROOT = REPO_ROOT / "src"

# Make src/ importable as 'convoy' and tests/ importable for 'helpers'
for p in (SRC_ROOT, TESTS_ROOT):
    if str(p) not in sys.path:
        sys.path.insert(0, str(p))

from convoy.core.audit.stdlib_logging import reset_stdlib_logging_for_tests
from convoy.core.concurrency import ConcurrencyLimiter
from convoy.core.config.cache import clear_all_caches
from convoy.core.events import EventStream
from convoy.core.utils.subprocess import CommandExecutor
from convoy.core.worktree import WorktreeManager
from helpers.git_helpers import git_init


def pytest_collection_modifyitems(config, items):
    if shutil.which("git") is not None:
        return
    skip_marker = pytest.mark.skip(reason="git is not available in this environment")
    for item in items:
        if "requires_git" in item.keywords:
            item.add_marker(skip_marker)


@pytest.fixture(autouse=True)
def _isolate_convoy_state(monkeypatch):
    """Drop CONVOY_* overrides from the developer environment and reset caches."""
    for key in list(os.environ):
        if key.startswith("CONVOY_"):
            monkeypatch.delenv(key, raising=False)
    clear_all_caches()
    yield
    clear_all_caches()
    reset_stdlib_logging_for_tests()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A real repository on ``main`` with one commit."""
    return git_init(tmp_path / "repo")


@pytest.fixture
def executor() -> CommandExecutor:
    return CommandExecutor(timeout=60, sleep=lambda _s: None)


@pytest.fixture
def events() -> EventStream:
    return EventStream()


@pytest.fixture
def manager(git_repo: Path, executor: CommandExecutor, events: EventStream) -> WorktreeManager:
    return WorktreeManager(
        git_repo,
        executor=executor,
        limiter=ConcurrencyLimiter(6),
        events=events,
    )
