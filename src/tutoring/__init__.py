"""
Adaptive SQL Tutoring Engine.

Turns learner interaction events into guidance decisions and per-concept
mastery evidence.

Components:
- HintLadder: per (session, problem) hint progression, escalating to explanations
- decide: strategy-parameterized escalation policy
- update_coverage / get_coverage_stats: concept coverage evidence
- replay_decision_trace: deterministic "what would strategy X do" traces
- TutoringEngine (src.tutoring.engine): main orchestration layer over a key-value store
"""
from src.tutoring.errors import (
    ConflictError,
    QuotaExceededError,
    StaleSessionError,
    TutorError,
    ValidationError,
)
from src.tutoring.events import (
    CodeChangeEvent,
    ErrorEvent,
    EventType,
    ExecutionEvent,
    ExplanationViewEvent,
    HintRequestEvent,
    HintViewEvent,
    InteractionEvent,
    TextbookAddEvent,
    TextbookUpdateEvent,
    parse_event,
)
from src.tutoring.strategies import Strategy, StrategyThresholds, thresholds_for
from src.tutoring.evidence import Confidence, CoverageEvidence, EvidenceCounts
from src.tutoring.profile import LearnerProfile, Preferences
from src.tutoring.ladder import HintLadder, HintLadderState, LadderPhase, derive_ladder_state
from src.tutoring.policy import POLICY_SEMANTICS_VERSION, Decision, DecisionKind, decide
from src.tutoring.coverage import CoverageStats, CoverageWeights, get_coverage_stats, update_coverage
from src.tutoring.replay import (
    DecisionTraceEntry,
    StrategyComparison,
    compare_strategies,
    replay_decision_trace,
    trace_checksum,
    trace_to_json,
)

__all__ = [
    # Events
    "EventType",
    "InteractionEvent",
    "CodeChangeEvent",
    "ExecutionEvent",
    "ErrorEvent",
    "HintRequestEvent",
    "HintViewEvent",
    "ExplanationViewEvent",
    "TextbookAddEvent",
    "TextbookUpdateEvent",
    "parse_event",
    # Policy
    "Strategy",
    "StrategyThresholds",
    "thresholds_for",
    "HintLadder",
    "HintLadderState",
    "LadderPhase",
    "derive_ladder_state",
    "Decision",
    "DecisionKind",
    "decide",
    "POLICY_SEMANTICS_VERSION",
    # Coverage
    "Confidence",
    "CoverageEvidence",
    "EvidenceCounts",
    "CoverageStats",
    "CoverageWeights",
    "LearnerProfile",
    "Preferences",
    "get_coverage_stats",
    "update_coverage",
    # Replay
    "DecisionTraceEntry",
    "StrategyComparison",
    "compare_strategies",
    "replay_decision_trace",
    "trace_checksum",
    "trace_to_json",
    # Errors
    "TutorError",
    "ValidationError",
    "QuotaExceededError",
    "StaleSessionError",
    "ConflictError",
]
