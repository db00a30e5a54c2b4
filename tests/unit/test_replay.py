"""
Unit tests for decision trace replay and strategy comparison.

Tests:
- Replaying the escalation scenario under each strategy
- Deterministic, byte-identical serialization and checksums
- Strategy comparison counts (descriptive only)
"""

import hashlib
import json

import pytest

from src.tutoring.errors import ValidationError
from src.tutoring.policy import POLICY_SEMANTICS_VERSION, DecisionKind
from src.tutoring.replay import (
    compare_strategies,
    replay_decision_trace,
    replay_document,
    trace_checksum,
    trace_to_json,
)
from src.tutoring.strategies import Strategy


class TestReplayDecisionTrace:
    """Tests for replay_decision_trace()."""

    def test_one_entry_per_event(self, escalation_scenario):
        trace = replay_decision_trace(escalation_scenario, "adaptive-medium", policy_version="v-test")

        assert [entry.index for entry in trace] == list(range(1, 9))
        assert [entry.event_id for entry in trace] == [e.id for e in escalation_scenario]
        assert all(entry.policy_version == "v-test" for entry in trace)
        assert all(entry.policy_semantics_version == POLICY_SEMANTICS_VERSION for entry in trace)

    def test_medium_escalation_scenario(self, escalation_scenario):
        trace = replay_decision_trace(escalation_scenario, "adaptive-medium")

        last = trace[-1]
        assert last.decision is DecisionKind.SHOW_EXPLANATION
        assert last.rule_fired == "auto-escalation-after-hints"
        assert last.help_request_index == 4

        threshold_entries = [e.index for e in trace if e.rule_fired == "escalation-threshold-met"]
        assert threshold_entries == [5, 7]

    def test_third_error_meets_medium_threshold(self, events):
        trace = replay_decision_trace([events.error(), events.error(), events.error()], "adaptive-medium")

        assert [e.rule_fired for e in trace] == [
            "progressive-hint",
            "progressive-hint",
            "escalation-threshold-met",
        ]
        assert trace[-1].error_count == 3

    def test_low_strategy_continues_after_ladder(self, escalation_scenario):
        trace = replay_decision_trace(escalation_scenario, "adaptive-low")

        assert trace[6].decision is DecisionKind.CONTINUE
        assert trace[6].rule_fired == "hint-ladder-exhausted"
        assert trace[7].rule_fired == "auto-escalation-after-hints"

    def test_hint_only_caps_ladder(self, escalation_scenario):
        trace = replay_decision_trace(escalation_scenario, Strategy.HINT_ONLY)

        assert trace[-1].decision is DecisionKind.SHOW_HINT
        assert trace[-1].rule_fired == "hint-ladder-capped"
        assert trace[-1].hint_level == 3
        assert all(e.decision is not DecisionKind.SHOW_EXPLANATION for e in trace)

    def test_input_order_does_not_matter(self, escalation_scenario):
        forward = replay_decision_trace(escalation_scenario, "adaptive-high")
        backward = replay_decision_trace(list(reversed(escalation_scenario)), "adaptive-high")

        assert trace_to_json(forward) == trace_to_json(backward)

    def test_counts_scoped_per_problem(self, events):
        other = [
            events.make("error", errorSubtypeId="incomplete query", problemId="problem-2")
            for _ in range(2)
        ]
        trace = replay_decision_trace(other + [events.error()], "adaptive-high")

        assert trace[1].rule_fired == "escalation-threshold-met"
        assert trace[2].error_count == 1
        assert trace[2].rule_fired == "progressive-hint"

    def test_accepts_raw_dicts(self, events):
        raw = [events.raw("error", errorSubtypeId="undefined column")]
        trace = replay_decision_trace(raw, "adaptive-medium")

        assert trace[0].decision is DecisionKind.SHOW_HINT

    def test_malformed_event_rejected(self, events):
        bad = events.raw("hint_view", hintLevel=4, helpRequestIndex=1)

        with pytest.raises(ValidationError):
            replay_decision_trace([bad], "adaptive-medium")

    def test_unknown_strategy_rejected(self, escalation_scenario):
        with pytest.raises(ValueError):
            replay_decision_trace(escalation_scenario, "adaptive-extreme")


class TestDeterminism:
    """Same events and strategy produce byte-identical output."""

    def test_byte_identical_json(self, escalation_scenario):
        first = trace_to_json(replay_decision_trace(escalation_scenario, "adaptive-medium", "v1"))
        second = trace_to_json(replay_decision_trace(escalation_scenario, "adaptive-medium", "v1"))

        assert first == second

    def test_checksum_is_sha256_of_json(self, escalation_scenario):
        trace = replay_decision_trace(escalation_scenario, "adaptive-medium", "v1")

        expected = hashlib.sha256(trace_to_json(trace).encode("utf-8")).hexdigest()
        assert trace_checksum(trace) == expected

    def test_strategies_differ(self, escalation_scenario):
        checksums = {
            trace_checksum(replay_decision_trace(escalation_scenario, strategy, "v1"))
            for strategy in Strategy
        }
        assert len(checksums) == len(Strategy)

    def test_document_serializes_infinity(self, escalation_scenario):
        document = replay_document(escalation_scenario, "hint-only", "v1")

        assert document["thresholds"] == {"escalate": "Infinity", "aggregate": "Infinity"}
        assert document["policySemanticsVersion"] == POLICY_SEMANTICS_VERSION
        assert len(document["trace"]) == 8
        # Must be strict JSON (no bare Infinity tokens)
        json.loads(json.dumps(document, allow_nan=False))


class TestCompareStrategies:
    """Tests for compare_strategies()."""

    def test_explanation_counts(self, escalation_scenario):
        results = {r.strategy: r for r in compare_strategies(escalation_scenario)}

        assert results[Strategy.HINT_ONLY].explanation_count == 0
        assert results[Strategy.ADAPTIVE_LOW].explanation_count == 1
        assert results[Strategy.ADAPTIVE_MEDIUM].explanation_count == 3
        assert results[Strategy.ADAPTIVE_HIGH].explanation_count == 4

    def test_note_recommendations(self, escalation_scenario):
        results = {r.strategy: r for r in compare_strategies(escalation_scenario)}

        assert results[Strategy.ADAPTIVE_HIGH].note_recommendations == 2
        assert results[Strategy.ADAPTIVE_MEDIUM].note_recommendations == 0

    def test_selected_strategies_in_given_order(self, escalation_scenario):
        results = compare_strategies(escalation_scenario, ["adaptive-high", "hint-only"])

        assert [r.strategy for r in results] == [Strategy.ADAPTIVE_HIGH, Strategy.HINT_ONLY]
        assert all(r.total_decisions == 8 for r in results)

    def test_to_dict(self, escalation_scenario):
        data = compare_strategies(escalation_scenario, ["adaptive-medium"])[0].to_dict()

        assert data["strategy"] == "adaptive-medium"
        assert data["explanationCount"] == 3
        assert data["rulesFired"]["escalation-threshold-met"] == 2
