"""
Integration tests: TutoringEngine over the SQLite-backed key-value store.

Each test uses a fresh database file, so a second engine instance plays the
role of a restarted process (or a second browser tab).
"""

import json

import pytest

from src.db.database import create_state_engine
from src.db.kv_store import SqlKeyValueStore
from src.tutoring.clock import FixedClock, SequentialIdGenerator
from src.tutoring.engine import TutoringEngine
from src.tutoring.errors import StaleSessionError
from src.tutoring.event_log import events_key
from src.tutoring.ladder import LadderPhase
from src.tutoring.policy import Rule

LEARNER = "learner-1"
SESSION = "session-learner-1-1"
PROBLEM = "problem-1"


@pytest.fixture
def sql_store(tmp_path):
    return SqlKeyValueStore(create_state_engine(f"sqlite:///{tmp_path / 'state.db'}"))


def new_engine(store, start_ms=1_700_000_000_000, id_start=1):
    return TutoringEngine(
        store=store,
        clock=FixedClock(start_ms=start_ms),
        ids=SequentialIdGenerator(id_start),
    )


class TestPersistence:
    """State written by one engine is visible to the next."""

    def test_restart_sees_events_profile_and_session(self, sql_store, live_events):
        first = new_engine(sql_store)
        first.process_event(live_events.error())
        first.request_help(LEARNER, PROBLEM, session_id=SESSION)
        first.process_event(live_events.error())

        second = new_engine(sql_store, start_ms=1_800_000_000_000, id_start=100)

        assert second.sessions.get_active_session(LEARNER) == SESSION
        assert len(second.events.events_for(LEARNER)) == 3
        profile = second.profiles.load(LEARNER)
        assert profile.version == 3
        assert profile.interaction_count == 3
        assert second.get_ladder_state(SESSION, PROBLEM, LEARNER).current_level == 1

    def test_restart_continues_escalation(self, sql_store, live_events):
        first = new_engine(sql_store)
        for _ in range(3):
            first.process_event(live_events.error())
            first.request_help(LEARNER, PROBLEM, session_id=SESSION)

        second = new_engine(sql_store, start_ms=1_800_000_000_000, id_start=100)
        outcome = second.request_help(LEARNER, PROBLEM, session_id=SESSION)

        assert outcome.decision.rule_fired is Rule.AUTO_ESCALATION_AFTER_HINTS
        assert outcome.event.help_request_index == 4
        assert second.get_ladder_state(SESSION, PROBLEM).phase is LadderPhase.ESCALATED

    def test_replay_matches_across_instances(self, sql_store, live_events):
        first = new_engine(sql_store)
        for _ in range(4):
            first.process_event(live_events.error())
            first.request_help(LEARNER, PROBLEM, session_id=SESSION)

        second = new_engine(sql_store, start_ms=1_800_000_000_000, id_start=100)

        assert [e.to_dict() for e in second.replay(LEARNER)] == [
            e.to_dict() for e in first.replay(LEARNER)
        ]

    def test_stored_log_is_wire_json(self, sql_store, live_events):
        engine = new_engine(sql_store)
        engine.process_event(live_events.error())

        stored = json.loads(sql_store.get(events_key(LEARNER)))

        assert stored[0]["learnerId"] == LEARNER
        assert stored[0]["eventType"] == "error"


class TestConcurrentWriters:
    """Two engines sharing one database."""

    def test_profiles_converge(self, sql_store, live_events):
        tab_a = new_engine(sql_store)
        tab_b = new_engine(sql_store, start_ms=1_800_000_000_000, id_start=100)

        tab_a.process_event(live_events.error())
        tab_b.process_event(live_events.execution())

        profile = tab_a.profiles.load(LEARNER)
        assert profile.version == 2
        assert profile.interaction_count == 2

    def test_session_switch_makes_other_tab_stale(self, sql_store, live_events):
        tab_a = new_engine(sql_store)
        tab_b = new_engine(sql_store, start_ms=1_800_000_000_000, id_start=100)
        tab_a.process_event(live_events.error())

        new_session = tab_b.start_session(LEARNER)

        with pytest.raises(StaleSessionError) as exc:
            tab_a.request_help(LEARNER, PROBLEM, session_id=SESSION)
        assert exc.value.expected == new_session
