"""
Decision Trace Replayer.

Answers "what would strategy X have decided, given this event history".
Replay is pure: no store, profile or clock is touched, so the same events and
strategy always produce the same trace, byte for byte once serialized.

Comparisons across strategies describe policy behaviour only. They say
nothing about whether any strategy helps learners more.
"""

from __future__ import annotations

import hashlib
import json
from collections import Counter
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from config import get_settings
from src.tutoring.events import (
    BaseEvent,
    ErrorEvent,
    InteractionEvent,
    order_events,
    parse_events,
)
from src.tutoring.ladder import HintLadderState
from src.tutoring.policy import POLICY_SEMANTICS_VERSION, DecisionKind, decide
from src.tutoring.strategies import Strategy


@dataclass(frozen=True)
class DecisionTraceEntry:
    index: int
    event_id: str
    event_type: str
    problem_id: str
    decision: DecisionKind
    rule_fired: str
    strategy: str
    reasoning: str
    policy_version: str
    policy_semantics_version: str = POLICY_SEMANTICS_VERSION
    hint_level: int | None = None
    help_request_index: int | None = None
    error_count: int = 0
    recommend_note: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "eventId": self.event_id,
            "eventType": self.event_type,
            "problemId": self.problem_id,
            "decision": self.decision.value,
            "ruleFired": self.rule_fired,
            "strategy": self.strategy,
            "reasoning": self.reasoning,
            "policyVersion": self.policy_version,
            "policySemanticsVersion": self.policy_semantics_version,
            "hintLevel": self.hint_level,
            "helpRequestIndex": self.help_request_index,
            "errorCount": self.error_count,
            "recommendNote": self.recommend_note,
        }


@dataclass(frozen=True)
class StrategyComparison:
    """Descriptive summary of one strategy's decisions over a shared event log."""

    strategy: Strategy
    total_decisions: int
    decisions: dict[str, int] = field(default_factory=dict)
    rules_fired: dict[str, int] = field(default_factory=dict)
    note_recommendations: int = 0
    checksum: str = ""

    @property
    def explanation_count(self) -> int:
        return self.decisions.get(DecisionKind.SHOW_EXPLANATION.value, 0)

    @property
    def hint_count(self) -> int:
        return self.decisions.get(DecisionKind.SHOW_HINT.value, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy": self.strategy.value,
            "thresholds": self.strategy.thresholds.to_dict(),
            "totalDecisions": self.total_decisions,
            "decisions": dict(sorted(self.decisions.items())),
            "rulesFired": dict(sorted(self.rules_fired.items())),
            "explanationCount": self.explanation_count,
            "hintCount": self.hint_count,
            "noteRecommendations": self.note_recommendations,
            "checksum": self.checksum,
        }


def replay_decision_trace(
    events: Iterable[BaseEvent | Mapping[str, Any]],
    strategy: Strategy | str,
    policy_version: str | None = None,
) -> list[DecisionTraceEntry]:
    """
    Re-run the policy over an event history.

    Args:
        events: Events in any order; replay orders them by (timestamp, input order)
        strategy: Strategy to evaluate
        policy_version: Version stamp for the trace (defaults to settings)

    Returns:
        One trace entry per event

    Raises:
        ValidationError: If any event is malformed
    """
    strategy = Strategy.parse(strategy)
    version = policy_version or get_settings().policy_version
    allow_escalation = strategy.auto_escalation_enabled

    ladders: dict[tuple[str, str], HintLadderState] = {}
    error_counts: Counter[tuple[str, str]] = Counter()
    trace: list[DecisionTraceEntry] = []

    for position, event in enumerate(order_events(parse_events(events)), start=1):
        key = (event.session_id, event.problem_id)
        state = ladders.get(key) or HintLadderState(session_id=key[0], problem_id=key[1])
        state = state.apply(event, allow_escalation)
        ladders[key] = state
        if isinstance(event, ErrorEvent):
            error_counts[key] += 1

        decision = decide(event, state, error_counts[key], strategy)
        trace.append(
            DecisionTraceEntry(
                index=position,
                event_id=event.id,
                event_type=event.kind.value,
                problem_id=event.problem_id,
                decision=decision.kind,
                rule_fired=decision.rule_fired.value,
                strategy=strategy.value,
                reasoning=decision.reasoning,
                policy_version=version,
                hint_level=decision.hint_level,
                help_request_index=decision.help_request_index,
                error_count=decision.error_count,
                recommend_note=decision.recommend_note,
            )
        )
    return trace


def trace_to_json(trace: Iterable[DecisionTraceEntry]) -> str:
    """Canonical JSON: sorted keys and fixed separators."""
    return json.dumps([entry.to_dict() for entry in trace], sort_keys=True, separators=(",", ":"))


def trace_checksum(trace: Iterable[DecisionTraceEntry]) -> str:
    return hashlib.sha256(trace_to_json(trace).encode("utf-8")).hexdigest()


def replay_document(
    events: Iterable[BaseEvent | Mapping[str, Any]],
    strategy: Strategy | str,
    policy_version: str | None = None,
) -> dict[str, Any]:
    """Trace plus the metadata needed to reproduce it."""
    strategy = Strategy.parse(strategy)
    trace = replay_decision_trace(events, strategy, policy_version)
    return {
        "strategy": strategy.value,
        "thresholds": strategy.thresholds.to_dict(),
        "policySemanticsVersion": POLICY_SEMANTICS_VERSION,
        "checksum": trace_checksum(trace),
        "trace": [entry.to_dict() for entry in trace],
    }


def compare_strategies(
    events: Iterable[BaseEvent | Mapping[str, Any]],
    strategies: Iterable[Strategy | str] | None = None,
) -> list[StrategyComparison]:
    """
    Replay the same events under several strategies and count what each decided.

    The counts describe policy behaviour, not learning outcomes.
    """
    parsed: list[InteractionEvent] = parse_events(events)
    selected = [Strategy.parse(s) for s in strategies] if strategies else list(Strategy)

    results = []
    for strategy in selected:
        trace = replay_decision_trace(parsed, strategy)
        results.append(
            StrategyComparison(
                strategy=strategy,
                total_decisions=len(trace),
                decisions=dict(Counter(entry.decision.value for entry in trace)),
                rules_fired=dict(Counter(entry.rule_fired for entry in trace)),
                note_recommendations=sum(1 for entry in trace if entry.recommend_note),
                checksum=trace_checksum(trace),
            )
        )
    return results
