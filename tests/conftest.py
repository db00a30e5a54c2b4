"""
Pytest Configuration and Fixtures.

This file configures pytest and provides shared fixtures for all tests.
"""
import itertools
import sys
from pathlib import Path

import pytest

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from src.db.kv_store import InMemoryKeyValueStore  # noqa: E402
from src.tutoring.clock import FixedClock, SequentialIdGenerator  # noqa: E402
from src.tutoring.engine import TutoringEngine  # noqa: E402
from src.tutoring.events import parse_event  # noqa: E402

LEARNER = "learner-1"
SESSION = "session-learner-1-1"
PROBLEM = "problem-1"


def pytest_configure(config):
    """Configure pytest markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests (SQLite state database)")
    config.addinivalue_line("markers", "smoke: Smoke tests for CLI commands")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on their location."""
    for item in items:
        # Mark based on test file location
        if "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "smoke" in str(item.fspath):
            item.add_marker(pytest.mark.smoke)


@pytest.fixture(scope="session")
def project_root():
    """Return the project root directory."""
    return PROJECT_ROOT


@pytest.fixture
def clock():
    """Deterministic clock: 1_700_000_000_000, +1 ms per read."""
    return FixedClock()


@pytest.fixture
def ids():
    """Deterministic id generator."""
    return SequentialIdGenerator()


@pytest.fixture
def store():
    """Unlimited in-memory key-value store."""
    return InMemoryKeyValueStore()


@pytest.fixture
def engine(store, clock, ids):
    """Engine over the in-memory store with deterministic time and ids."""
    return TutoringEngine(store=store, clock=clock, ids=ids)


class EventFactory:
    """Builds valid events with increasing ids and timestamps."""

    def __init__(self, learner_id=LEARNER, session_id=SESSION, problem_id=PROBLEM, clock=None):
        self.learner_id = learner_id
        self.session_id = session_id
        self.problem_id = problem_id
        self.clock = clock
        self._counter = itertools.count(1)

    def raw(self, event_type, **fields):
        n = next(self._counter)
        data = {
            "id": f"evt-{n}",
            "sessionId": self.session_id,
            "learnerId": self.learner_id,
            "timestamp": self.clock.now_ms() if self.clock else 1_000 * n,
            "eventType": event_type,
            "problemId": self.problem_id,
        }
        data.update(fields)
        return data

    def make(self, event_type, **fields):
        return parse_event(self.raw(event_type, **fields))

    def error(self, subtype="incomplete query", **fields):
        return self.make("error", errorSubtypeId=subtype, **fields)

    def hint_view(self, level, index, subtype="incomplete query", **fields):
        return self.make(
            "hint_view", hintLevel=level, helpRequestIndex=index, errorSubtypeId=subtype, **fields
        )

    def hint_request(self, index=None, **fields):
        if index is not None:
            fields["helpRequestIndex"] = index
        return self.make("hint_request", **fields)

    def execution(self, successful=True, concepts=("select-basic",), **fields):
        return self.make("execution", successful=successful, conceptIds=list(concepts), **fields)


@pytest.fixture
def events():
    """Event factory for learner-1 / session-learner-1-1 / problem-1."""
    return EventFactory()


@pytest.fixture
def live_events(clock):
    """Event factory stamped by the same clock the engine uses."""
    return EventFactory(clock=clock)


@pytest.fixture
def escalation_scenario(events):
    """error, hint L1, error, hint L2, error, hint L3, error, help request #4."""
    return [
        events.error(),
        events.hint_view(1, 1),
        events.error(),
        events.hint_view(2, 2),
        events.error(),
        events.hint_view(3, 3),
        events.error(),
        events.hint_request(4),
    ]
