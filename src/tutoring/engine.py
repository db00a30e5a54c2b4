"""
Tutoring Engine.

Main orchestration layer: wires the event log, sessions, hint ladder, policy,
coverage engine and profile store together around one key-value store.

Flow for a learner event:
1. Check the event's session against the active session
2. Validate and append the event
3. Decide the next guidance step from ladder state and error count
4. Fold the event into the learner's coverage evidence and commit the profile

Nothing is held at module level; every engine owns its collaborators, and
tests inject a deterministic clock and id generator.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

from loguru import logger

from config import Settings, get_settings
from src.db.kv_store import InMemoryKeyValueStore, KeyValueStore
from src.tutoring import coverage, policy
from src.tutoring.clock import Clock, IdGenerator, SystemClock, UuidIdGenerator
from src.tutoring.collaborators import GeneratedContent
from src.tutoring.coverage import CoverageStats, CoverageWeights, get_coverage_stats
from src.tutoring.event_log import EventLog
from src.tutoring.events import (
    BaseEvent,
    ErrorEvent,
    ExplanationViewEvent,
    InteractionEvent,
    parse_event,
)
from src.tutoring.ladder import HintLadder, HintLadderState, derive_ladder_state
from src.tutoring.policy import Decision
from src.tutoring.profile import LearnerProfile
from src.tutoring.profile_store import ProfileStore
from src.tutoring.replay import DecisionTraceEntry, replay_decision_trace
from src.tutoring.sessions import (
    EXTERNAL_CHANGED,
    SESSION_CHANGED,
    ChangeNotifier,
    SessionManager,
)
from src.tutoring.strategies import Strategy


@dataclass(frozen=True)
class ProcessOutcome:
    event: InteractionEvent
    decision: Decision
    profile: LearnerProfile
    persistence_degraded: bool = False


@dataclass(frozen=True)
class HelpOutcome:
    event: InteractionEvent
    decision: Decision
    deduplicated: bool = False
    persistence_degraded: bool = False
    content: GeneratedContent | None = None


class TutoringEngine:
    """
    Adaptive SQL tutoring engine.

    Usage:
        engine = TutoringEngine()
        session_id = engine.sessions.get_active_session("learner-1")
        outcome = engine.process_event({...})
        help = engine.request_help("learner-1", "problem-3")
    """

    def __init__(
        self,
        store: KeyValueStore | None = None,
        settings: Settings | None = None,
        clock: Clock | None = None,
        ids: IdGenerator | None = None,
        notifier: ChangeNotifier | None = None,
    ):
        self.settings = settings or get_settings()
        self.store = store or InMemoryKeyValueStore(
            quota_bytes=self.settings.storage_quota_bytes,
            max_retries=self.settings.merge_max_retries,
        )
        self.clock = clock or SystemClock()
        self.ids = ids or UuidIdGenerator(self.clock)
        self.notifier = notifier or ChangeNotifier()
        self.weights = CoverageWeights.from_settings(self.settings.get_coverage_weights())

        self.events = EventLog(self.store)
        self.sessions = SessionManager(self.store, self.clock, self.notifier)
        self.profiles = ProfileStore(
            self.store,
            self.notifier,
            default_strategy=self.settings.default_strategy,
        )
        self.ladder = HintLadder(self.events, self.clock, self.ids, self.settings.policy_version)
        self._session_learners: dict[str, str] = {}

        self.notifier.subscribe(SESSION_CHANGED, self._on_session_changed)
        self.notifier.subscribe(EXTERNAL_CHANGED, self._on_external_changed)

    # ==========================================================================
    # Exposed operations
    # ==========================================================================

    def append_event(self, event: BaseEvent | Mapping[str, Any]) -> InteractionEvent:
        """
        Validate and append an event to the learner's log.

        Raises:
            ValidationError: If the event is malformed (nothing is stored)
        """
        parsed = parse_event(event)
        known = self.events.get(parsed.learner_id, parsed.id)
        appended = self.events.append(parsed)
        if known is None:
            self._session_learners[appended.session_id] = appended.learner_id
            self.ladder.observe(appended)
        return appended

    def get_ladder_state(
        self,
        session_id: str,
        problem_id: str,
        learner_id: str | None = None,
    ) -> HintLadderState:
        """Ladder state for (session, problem); IDLE if nothing has happened there."""
        learner_id = learner_id or self._session_learners.get(session_id)
        if learner_id is None:
            return HintLadderState(session_id=session_id, problem_id=problem_id)
        strategy = self.profiles.load(learner_id).current_strategy
        return self.ladder.state(
            learner_id, session_id, problem_id, strategy.auto_escalation_enabled
        )

    def decide(
        self,
        event: BaseEvent | Mapping[str, Any],
        profile: LearnerProfile,
        strategy: Strategy | str | None = None,
    ) -> Decision:
        """
        Decide on one event using the log up to and including it.

        The event does not have to be in the log yet; if it is, later events
        on the same problem are ignored.
        """
        parsed = parse_event(event)
        strategy = Strategy.parse(strategy or profile.current_strategy)

        history = self.events.events_for(
            parsed.learner_id, session_id=parsed.session_id, problem_id=parsed.problem_id
        )
        ids = [e.id for e in history]
        if parsed.id in ids:
            history = history[: ids.index(parsed.id) + 1]
        else:
            history = history + [parsed]

        state = derive_ladder_state(
            history, parsed.session_id, parsed.problem_id, strategy.auto_escalation_enabled
        )
        error_count = sum(1 for e in history if isinstance(e, ErrorEvent))
        return policy.decide(parsed, state, error_count, strategy)

    def update_coverage(self, profile: LearnerProfile, event: InteractionEvent) -> LearnerProfile:
        """Pure: new profile with the event folded into its coverage evidence."""
        return coverage.update_coverage(profile, event, self.weights)

    def replay(
        self, learner_id: str, strategy: Strategy | str | None = None
    ) -> list[DecisionTraceEntry]:
        """Replay the learner's stored log; live state is left untouched."""
        strategy = strategy or self.profiles.load(learner_id).current_strategy
        return replay_decision_trace(
            self.events.events_for(learner_id), strategy, self.settings.policy_version
        )

    # ==========================================================================
    # Live flow
    # ==========================================================================

    def process_event(self, event: BaseEvent | Mapping[str, Any]) -> ProcessOutcome:
        """
        Record one learner event and compute the guidance decision.

        Raises:
            ValidationError: If the event is malformed or its help request index is out of sequence
            StaleSessionError: If the event belongs to a session that is no longer active
            ConflictError: If the profile could not be committed
        """
        parsed = parse_event(event)
        learner_id = parsed.learner_id
        is_new = self.events.get(learner_id, parsed.id) is None
        if is_new:
            self.events.check_help_index(parsed)

        active = self.sessions.ensure_session(learner_id, parsed.session_id)
        self.sessions.require_active(learner_id, parsed.session_id)

        appended = self.append_event(parsed)
        profile = self.profiles.load(learner_id)
        decision = self.decide(appended, profile)

        if is_new:
            profile = self.profiles.apply(
                learner_id, lambda current: self.update_coverage(current, appended)
            )

        logger.debug(
            f"{learner_id} {appended.kind.value} in {active}/{appended.problem_id}: "
            f"{decision.kind.value} ({decision.rule_fired.value})"
        )
        return ProcessOutcome(
            event=appended,
            decision=decision,
            profile=profile,
            persistence_degraded=self._degraded(learner_id),
        )

    def request_help(
        self,
        learner_id: str,
        problem_id: str,
        session_id: str | None = None,
        seen_level: int | None = None,
        content: GeneratedContent | Mapping[str, Any] | None = None,
    ) -> HelpOutcome:
        """
        Serve the next hint or explanation for a problem.

        Args:
            learner_id: Learner asking for help
            problem_id: Problem being worked on
            session_id: Session the caller believes is active (checked if given)
            seen_level: Level already on screen; repeated requests are deduplicated
                (see `HintLadder.request_help` for the capped level 3 case)
            content: Generated explanation text; its provenance is recorded on
                the outcome when an explanation is served, hints ignore it

        Raises:
            StaleSessionError: If `session_id` is no longer the active session
            pydantic.ValidationError: If `content` is not a valid GeneratedContent
        """
        provenance: GeneratedContent | None = None
        if content is not None:
            provenance = GeneratedContent.model_validate(content)

        if session_id is not None:
            active = self.sessions.require_active(learner_id, session_id)
        else:
            active = self.sessions.get_active_session(learner_id)
        self._session_learners[active] = learner_id

        profile = self.profiles.load(learner_id)
        strategy = profile.current_strategy
        served, deduplicated = self.ladder.request_help(
            learner_id,
            active,
            problem_id,
            allow_escalation=strategy.auto_escalation_enabled,
            seen_level=seen_level,
        )
        decision = self.decide(served, profile, strategy)

        if not deduplicated:
            self.profiles.apply(learner_id, lambda current: self.update_coverage(current, served))

        if not isinstance(served, ExplanationViewEvent):
            provenance = None
        elif provenance is not None:
            logger.info(
                f"Explanation {served.id} for {learner_id}/{problem_id} generated by "
                f"{provenance.model} from template {provenance.template_id}"
            )

        return HelpOutcome(
            event=served,
            decision=decision,
            deduplicated=deduplicated,
            persistence_degraded=self._degraded(learner_id),
            content=provenance,
        )

    def set_strategy(self, learner_id: str, strategy: Strategy | str) -> LearnerProfile:
        """Assign a strategy; cached ladder states are re-derived under it."""
        profile = self.profiles.apply(learner_id, lambda current: current.with_strategy(strategy))
        self.ladder.invalidate()
        return profile

    def coverage_stats(self, learner_id: str) -> CoverageStats:
        return get_coverage_stats(
            self.profiles.load(learner_id), mastery_threshold=self.weights.mastery_threshold
        )

    def start_session(self, learner_id: str) -> str:
        return self.sessions.start_session(learner_id)

    # ==========================================================================
    # Invalidation
    # ==========================================================================

    def handle_external_change(self, key: str | None = None) -> None:
        """
        Another process changed stored state; drop anything cached for it.

        Args:
            key: The changed store key (`events:...`, `session:...`, `profile:...`),
                or None when unknown
        """
        self.notifier.publish(EXTERNAL_CHANGED, {"key": key})

    def _on_external_changed(self, payload: dict[str, Any]) -> None:
        key = payload.get("key")
        prefix, _, learner_id = (key or "").partition(":")
        if prefix == "events" and learner_id:
            self.events.invalidate(learner_id)
        elif prefix not in ("session", "profile"):
            self.events.invalidate()
        # Ladder states are derived from the log; re-derive them after any change
        self.ladder.invalidate()
        logger.debug(f"External change on {key or '<all>'}; caches dropped")

    def _on_session_changed(self, payload: dict[str, Any]) -> None:
        previous = payload.get("previous_session_id")
        if previous:
            self.ladder.invalidate(previous)

    def _degraded(self, learner_id: str) -> bool:
        return (
            self.events.is_degraded(learner_id)
            or self.profiles.is_degraded(learner_id)
            or self.sessions.persistence_degraded
        )
