"""Shared pytest fixtures for issue triage tests.

Fixture Organization:
    - Sample data fixtures: fixed clock, populated store
    - Temporary resource fixtures: store initialized under tmp_path
    - Config isolation: singleton reset around every test

Fakes and data builders live in triage_test_helpers.py.
"""

import sys
from collections.abc import Callable
from datetime import datetime
from pathlib import Path

import pytest

# Add tests directory to sys.path so test modules in subdirectories can
# import triage_test_helpers
tests_dir = Path(__file__).parent
if str(tests_dir) not in sys.path:
    sys.path.insert(0, str(tests_dir))

from triage.config import reset_config  # noqa: E402
from triage.store.store import IssueStore  # noqa: E402
from triage_test_helpers import NOW, make_digest, make_snapshot  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_config_singleton():
    """Keep the config singleton from leaking between tests."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def store_dir(tmp_path) -> Path:
    return tmp_path / "store"


@pytest.fixture
def store(store_dir) -> IssueStore:
    """Empty store persisted under tmp_path."""
    return IssueStore.init(store_dir, "octo", "widgets")


@pytest.fixture
def populated_store(store) -> IssueStore:
    """Three open digested bugs (#1-#3) and one closed digested question (#4)."""
    for number in (1, 2, 3):
        store.upsert(make_snapshot(number))
        store.set_digest(number, make_digest())
    store.upsert(make_snapshot(4, state="closed"))
    store.set_digest(4, make_digest(category="question"))
    store.save()
    return store
