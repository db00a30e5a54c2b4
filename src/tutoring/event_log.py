"""
Append-only interaction event log.

Events are validated before anything is stored, kept per learner in memory and
persisted as one JSON list per learner under `events:{learner_id}`. When the
store runs out of quota the in-memory log keeps working and the learner is
flagged as degraded.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

from loguru import logger

from src.db.kv_store import KeyValueStore, read_json
from src.tutoring.errors import QuotaExceededError, ValidationError
from src.tutoring.events import BaseEvent, InteractionEvent, order_events, parse_event
from src.tutoring.ladder import derive_ladder_state


def events_key(learner_id: str) -> str:
    return f"events:{learner_id}"


class EventLog:
    """Per-learner append-only log backed by a key-value store."""

    def __init__(self, store: KeyValueStore):
        self._store = store
        self._events: dict[str, list[InteractionEvent]] = {}
        self._by_id: dict[str, dict[str, InteractionEvent]] = {}
        self._degraded: set[str] = set()

    def is_degraded(self, learner_id: str | None = None) -> bool:
        """True if writes for the learner (or any learner) are memory-only."""
        if learner_id is None:
            return bool(self._degraded)
        return learner_id in self._degraded

    def _load(self, learner_id: str) -> list[InteractionEvent]:
        if learner_id in self._events:
            return self._events[learner_id]

        events: list[InteractionEvent] = []
        stored = read_json(self._store, events_key(learner_id))
        if stored is not None and not isinstance(stored, list):
            logger.warning(f"Event log for {learner_id} is not a list, starting empty")
            stored = None
        for item in stored or []:
            try:
                events.append(parse_event(item))
            except ValidationError as e:
                logger.warning(f"Dropping corrupted stored event for {learner_id}: {e}")

        self._events[learner_id] = events
        self._by_id[learner_id] = {event.id: event for event in events}
        return events

    def append(self, event: BaseEvent | Mapping[str, Any]) -> InteractionEvent:
        """
        Validate and append one event.

        Re-appending an identical event is a no-op that returns the stored copy.

        Raises:
            ValidationError: If the event is malformed, reuses an existing id
                with different content, or carries a help request index other
                than the next one for its (session, problem)
        """
        parsed = parse_event(event)
        self._load(parsed.learner_id)
        known = self._by_id[parsed.learner_id].get(parsed.id)
        if known is not None:
            if known.to_wire() == parsed.to_wire():
                return known
            raise ValidationError(
                "Duplicate event id with different content",
                [f"id: {parsed.id!r} already recorded for learner {parsed.learner_id}"],
            )
        self.check_help_index(parsed)

        self._events[parsed.learner_id].append(parsed)
        self._by_id[parsed.learner_id][parsed.id] = parsed
        self._persist(parsed)
        return parsed

    def check_help_index(self, event: InteractionEvent) -> None:
        """
        Help events must carry the next help request index for their (session, problem).

        Raises:
            ValidationError: If the index repeats or skips one
        """
        index = getattr(event, "help_request_index", None)
        if index is None:
            return
        history = self.events_for(event.learner_id, event.session_id, event.problem_id)
        expected = derive_ladder_state(history, event.session_id, event.problem_id).next_help_request_index
        if index != expected:
            raise ValidationError(
                "Help request index out of sequence",
                [
                    f"helpRequestIndex: expected {expected} for "
                    f"{event.session_id}/{event.problem_id}, got {index}"
                ],
            )

    def _persist(self, event: InteractionEvent) -> None:
        wire = event.to_wire()

        def add_event(current: str | None) -> str:
            try:
                stored = json.loads(current) if current else []
            except json.JSONDecodeError:
                stored = []
            if not isinstance(stored, list):
                stored = []
            if not any(isinstance(item, dict) and item.get("id") == event.id for item in stored):
                stored.append(wire)
            return json.dumps(stored, sort_keys=True, separators=(",", ":"))

        try:
            self._store.merge(events_key(event.learner_id), add_event)
        except QuotaExceededError as e:
            if event.learner_id not in self._degraded:
                logger.warning(f"Event log for {event.learner_id} now memory-only: {e}")
            self._degraded.add(event.learner_id)

    def events_for(
        self,
        learner_id: str,
        session_id: str | None = None,
        problem_id: str | None = None,
    ) -> list[InteractionEvent]:
        """Ordered events for a learner, optionally narrowed to a session and problem."""
        return [
            event
            for event in order_events(self._load(learner_id))
            if (session_id is None or event.session_id == session_id)
            and (problem_id is None or event.problem_id == problem_id)
        ]

    def trace_slice(
        self,
        learner_id: str,
        session_id: str | None = None,
        problem_id: str | None = None,
        limit: int | None = None,
    ) -> list[InteractionEvent]:
        """The most recent `limit` matching events, oldest first."""
        events = self.events_for(learner_id, session_id, problem_id)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events

    def get(self, learner_id: str, event_id: str) -> InteractionEvent | None:
        self._load(learner_id)
        return self._by_id[learner_id].get(event_id)

    def invalidate(self, learner_id: str | None = None) -> None:
        """Forget cached logs so they are re-read from the store; memory-only logs are kept."""
        learners = [learner_id] if learner_id is not None else list(self._events)
        for learner in learners:
            if learner in self._degraded:
                continue
            self._events.pop(learner, None)
            self._by_id.pop(learner, None)
