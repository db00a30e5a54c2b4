"""
Hint Ladder State Machine.

Per (session, problem) progression of increasingly specific help:

    IDLE -> LEVEL1 -> LEVEL2 -> LEVEL3 -> ESCALATED

Ladder state is never stored on its own; it is a fold over the event log
(`derive_ladder_state`). `HintLadder` caches the folded state for the live
engine and emits the next `hint_view` / `explanation_view` event when a
learner asks for help.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, replace
from enum import Enum
from typing import TYPE_CHECKING

from loguru import logger

from src.tutoring.clock import Clock, IdGenerator
from src.tutoring.concepts import hint_text_for
from src.tutoring.events import (
    ErrorEvent,
    ExplanationViewEvent,
    HintRequestEvent,
    HintViewEvent,
    InteractionEvent,
)

if TYPE_CHECKING:
    from src.tutoring.event_log import EventLog

MAX_HINT_LEVEL = 3


class LadderPhase(str, Enum):
    IDLE = "idle"
    LEVEL1 = "level1"
    LEVEL2 = "level2"
    LEVEL3 = "level3"
    ESCALATED = "escalated"


@dataclass(frozen=True)
class HintLadderState:
    """Folded ladder position for one (session, problem) pair."""

    session_id: str
    problem_id: str
    current_level: int = 0
    next_help_request_index: int = 1
    last_error_subtype_id: str | None = None
    escalated: bool = False

    def __post_init__(self):
        if not 0 <= self.current_level <= MAX_HINT_LEVEL:
            raise ValueError(f"hint level out of range: {self.current_level}")
        if self.next_help_request_index < 1:
            raise ValueError(f"help request index must be >= 1: {self.next_help_request_index}")

    @property
    def phase(self) -> LadderPhase:
        if self.escalated:
            return LadderPhase.ESCALATED
        return (
            LadderPhase.IDLE,
            LadderPhase.LEVEL1,
            LadderPhase.LEVEL2,
            LadderPhase.LEVEL3,
        )[self.current_level]

    @property
    def exhausted(self) -> bool:
        return self.current_level >= MAX_HINT_LEVEL

    def matches(self, event: InteractionEvent) -> bool:
        return event.session_id == self.session_id and event.problem_id == self.problem_id

    def apply(self, event: InteractionEvent, allow_escalation: bool = True) -> HintLadderState:
        """Fold one event; events for other (session, problem) pairs are ignored."""
        if not self.matches(event):
            return self

        state = self
        index = getattr(event, "help_request_index", None)
        if index is not None and index >= state.next_help_request_index:
            state = replace(state, next_help_request_index=index + 1)

        match event:
            case HintViewEvent():
                # Levels may be skipped; the ladder never moves down
                state = replace(state, current_level=max(state.current_level, event.hint_level))
            case ExplanationViewEvent():
                state = replace(state, current_level=MAX_HINT_LEVEL, escalated=True)
            case HintRequestEvent() if state.exhausted and allow_escalation:
                state = replace(state, escalated=True)
            case ErrorEvent() if event.error_subtype_id:
                state = replace(state, last_error_subtype_id=event.error_subtype_id)
        return state


def derive_ladder_state(
    events: Iterable[InteractionEvent],
    session_id: str,
    problem_id: str,
    allow_escalation: bool = True,
) -> HintLadderState:
    """Rebuild ladder state for (session, problem) from ordered events."""
    state = HintLadderState(session_id=session_id, problem_id=problem_id)
    for event in events:
        state = state.apply(event, allow_escalation)
    return state


class HintLadder:
    """
    Live hint ladder for the engine.

    Keeps a cache of folded states keyed by (learner, session, problem) and an
    idempotency map keyed by (session, problem, seen level). Emitted events are
    appended to the event log, so the log stays the source of truth and a
    dropped cache is simply re-derived.
    """

    def __init__(
        self,
        event_log: EventLog,
        clock: Clock,
        ids: IdGenerator,
        policy_version: str,
    ):
        self._log = event_log
        self._clock = clock
        self._ids = ids
        self._policy_version = policy_version
        self._states: dict[tuple[str, str, str, bool], HintLadderState] = {}
        self._served: dict[tuple[str, str, int], InteractionEvent] = {}

    def state(
        self,
        learner_id: str,
        session_id: str,
        problem_id: str,
        allow_escalation: bool = True,
    ) -> HintLadderState:
        key = (learner_id, session_id, problem_id, allow_escalation)
        cached = self._states.get(key)
        if cached is None:
            events = self._log.events_for(learner_id, session_id=session_id, problem_id=problem_id)
            cached = derive_ladder_state(events, session_id, problem_id, allow_escalation)
            self._states[key] = cached
        return cached

    def observe(self, event: InteractionEvent) -> None:
        """Advance cached states with an event that was just appended to the log."""
        for key, state in list(self._states.items()):
            if key[0] == event.learner_id and state.matches(event):
                self._states[key] = state.apply(event, allow_escalation=key[3])

    def request_help(
        self,
        learner_id: str,
        session_id: str,
        problem_id: str,
        allow_escalation: bool = True,
        seen_level: int | None = None,
    ) -> tuple[InteractionEvent, bool]:
        """
        Serve the next rung of the ladder.

        Args:
            learner_id: Learner asking for help
            session_id: Active session id
            problem_id: Problem the learner is working on
            allow_escalation: False for strategies that never escalate; the
                ladder then holds at level 3 even if the problem was escalated
                under an earlier strategy
            seen_level: Level the client had on screen when it asked; a repeat
                of an already-served request returns the same event. Once the
                ladder holds at level 3 every request carries the same seen
                level, so clients omit it there to get a fresh capped hint

        Returns:
            (emitted event, deduplicated flag)
        """
        if seen_level is not None:
            served = self._served.get((session_id, problem_id, seen_level))
            if served is not None:
                logger.debug(
                    f"Duplicate help request {session_id}/{problem_id} at level {seen_level}"
                )
                return served, True

        state = self.state(learner_id, session_id, problem_id, allow_escalation)
        event = self._next_event(learner_id, state, allow_escalation)
        self._log.append(event)
        self.observe(event)

        if seen_level is not None:
            self._served[(session_id, problem_id, seen_level)] = event
        logger.debug(
            f"Ladder {session_id}/{problem_id}: {event.kind.value} "
            f"#{event.help_request_index}"  # type: ignore[union-attr]
        )
        return event, False

    def request_hint(
        self, learner_id: str, session_id: str, problem_id: str, allow_escalation: bool = True
    ) -> InteractionEvent:
        """First hint on a problem; from IDLE this is level 1."""
        event, _ = self.request_help(learner_id, session_id, problem_id, allow_escalation)
        return event

    def request_next_hint(
        self, learner_id: str, session_id: str, problem_id: str, allow_escalation: bool = True
    ) -> InteractionEvent:
        """Next rung: level + 1 up to 3, then an explanation when escalation is allowed."""
        event, _ = self.request_help(learner_id, session_id, problem_id, allow_escalation)
        return event

    def invalidate(self, session_id: str | None = None) -> None:
        """Drop cached state (all of it, or one session's) so it is re-derived from the log."""
        if session_id is None:
            self._states.clear()
            self._served.clear()
            return
        self._states = {k: v for k, v in self._states.items() if k[1] != session_id}
        self._served = {k: v for k, v in self._served.items() if k[0] != session_id}

    def _next_event(
        self, learner_id: str, state: HintLadderState, allow_escalation: bool
    ) -> InteractionEvent:
        index = state.next_help_request_index
        common = {
            "id": self._ids.new_id("help", state.session_id, state.problem_id, index),
            "session_id": state.session_id,
            "learner_id": learner_id,
            "timestamp": self._clock.now_ms(),
            "problem_id": state.problem_id,
            "policy_version": self._policy_version,
            "help_request_index": index,
            "error_subtype_id": state.last_error_subtype_id,
        }
        if allow_escalation and (state.escalated or state.exhausted):
            return ExplanationViewEvent(**common)

        level = min(state.current_level + 1, MAX_HINT_LEVEL)
        return HintViewEvent(
            **common,
            hint_level=level,
            hint_text=hint_text_for(state.last_error_subtype_id, level),
        )
