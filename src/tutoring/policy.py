"""
Escalation Policy.

Pure decision function: given an event, the ladder state after folding that
event, the learner's error count on the problem and a strategy, pick the next
guidance step. Rules are evaluated in order and the first match wins:

1. escalation-threshold-met      error count reached the strategy threshold
2. auto-escalation-after-hints   ladder exhausted and the learner asks again
3. progressive-hint              next hint level (or no-errors-show-hint /
                                 hint-ladder-capped for the edge cases)
4. terminal-success / hint-ladder-exhausted / no-trigger

hint-only never yields an explanation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from src.tutoring.events import (
    ErrorEvent,
    ExecutionEvent,
    ExplanationViewEvent,
    HintRequestEvent,
    HintViewEvent,
    InteractionEvent,
)
from src.tutoring.ladder import MAX_HINT_LEVEL, HintLadderState
from src.tutoring.strategies import Strategy

POLICY_SEMANTICS_VERSION = "orchestrator-auto-escalation-variant-v2"


class DecisionKind(str, Enum):
    SHOW_HINT = "show_hint"
    SHOW_EXPLANATION = "show_explanation"
    CONTINUE = "continue"
    NO_INTERVENTION = "no_intervention"


class Rule(str, Enum):
    """Names recorded as `rule_fired`."""

    ESCALATION_THRESHOLD_MET = "escalation-threshold-met"
    AUTO_ESCALATION_AFTER_HINTS = "auto-escalation-after-hints"
    PROGRESSIVE_HINT = "progressive-hint"
    NO_ERRORS_SHOW_HINT = "no-errors-show-hint"
    HINT_LADDER_CAPPED = "hint-ladder-capped"
    HINT_LADDER_EXHAUSTED = "hint-ladder-exhausted"
    TERMINAL_SUCCESS = "terminal-success"
    NO_TRIGGER = "no-trigger"


@dataclass(frozen=True)
class Decision:
    """What the tutor should surface next, and which rule said so."""

    kind: DecisionKind
    rule_fired: Rule
    strategy: Strategy
    reasoning: str
    error_count: int = 0
    hint_level: int | None = None
    help_request_index: int | None = None
    recommend_note: bool = False

    @property
    def is_explanation(self) -> bool:
        return self.kind is DecisionKind.SHOW_EXPLANATION

    def to_dict(self) -> dict[str, Any]:
        return {
            "decision": self.kind.value,
            "ruleFired": self.rule_fired.value,
            "strategy": self.strategy.value,
            "reasoning": self.reasoning,
            "errorCount": self.error_count,
            "hintLevel": self.hint_level,
            "helpRequestIndex": self.help_request_index,
            "recommendNote": self.recommend_note,
        }


def _help_index(event: InteractionEvent, state: HintLadderState) -> int | None:
    index = getattr(event, "help_request_index", None)
    if index is not None:
        return index
    if isinstance(event, HintRequestEvent):
        # Unnumbered request: the index the ladder would serve next
        return state.next_help_request_index
    return None


def decide(
    event: InteractionEvent,
    ladder_state: HintLadderState,
    error_count: int,
    strategy: Strategy | str,
) -> Decision:
    """
    Pick the guidance step for one event.

    Args:
        event: The event being decided on
        ladder_state: Ladder state for the event's (session, problem), after folding it
        error_count: Errors so far on the event's (session, problem), this one included
        strategy: Strategy whose thresholds apply

    Returns:
        Decision with the rule that fired
    """
    strategy = Strategy.parse(strategy)
    thresholds = strategy.thresholds
    recommend_note = error_count >= thresholds.aggregate_after_errors
    help_index = _help_index(event, ladder_state)
    level = ladder_state.current_level

    def make(kind: DecisionKind, rule: Rule, reasoning: str, hint_level: int | None = None) -> Decision:
        return Decision(
            kind=kind,
            rule_fired=rule,
            strategy=strategy,
            reasoning=reasoning,
            error_count=error_count,
            hint_level=hint_level,
            help_request_index=help_index,
            recommend_note=recommend_note,
        )

    # 1. Error threshold, independent of ladder position
    if (
        isinstance(event, ErrorEvent)
        and thresholds.escalation_finite
        and error_count >= thresholds.escalate_after_errors
    ):
        return make(
            DecisionKind.SHOW_EXPLANATION,
            Rule.ESCALATION_THRESHOLD_MET,
            f"{error_count} errors on problem reached threshold "
            f"{int(thresholds.escalate_after_errors)} for {strategy.value}",
        )

    # 2. Help requested again after the ladder ran out
    if (
        strategy.auto_escalation_enabled
        and ladder_state.escalated
        and isinstance(event, (HintRequestEvent, ExplanationViewEvent))
    ):
        return make(
            DecisionKind.SHOW_EXPLANATION,
            Rule.AUTO_ESCALATION_AFTER_HINTS,
            f"All {MAX_HINT_LEVEL} hint levels shown; escalating to explanation",
        )

    # 3. Progressive hints
    if isinstance(event, ErrorEvent) and level < MAX_HINT_LEVEL:
        return make(
            DecisionKind.SHOW_HINT,
            Rule.PROGRESSIVE_HINT,
            f"Error at hint level {level}; offering level {level + 1}",
            hint_level=level + 1,
        )

    if isinstance(event, HintRequestEvent):
        next_level = min(level + 1, MAX_HINT_LEVEL)
        if error_count == 0:
            rule, reasoning = Rule.NO_ERRORS_SHOW_HINT, "Help requested before any error on problem"
        elif level >= MAX_HINT_LEVEL:
            rule, reasoning = Rule.HINT_LADDER_CAPPED, f"{strategy.value} holds hints at level 3"
        else:
            rule, reasoning = Rule.PROGRESSIVE_HINT, f"Help requested; offering level {next_level}"
        return make(DecisionKind.SHOW_HINT, rule, reasoning, hint_level=next_level)

    if isinstance(event, HintViewEvent):
        if error_count == 0:
            rule = Rule.NO_ERRORS_SHOW_HINT
        elif event.hint_level == MAX_HINT_LEVEL and event.help_request_index > MAX_HINT_LEVEL:
            rule = Rule.HINT_LADDER_CAPPED
        else:
            rule = Rule.PROGRESSIVE_HINT
        return make(
            DecisionKind.SHOW_HINT,
            rule,
            f"Hint level {event.hint_level} shown",
            hint_level=event.hint_level,
        )

    # 4. Nothing to escalate
    if isinstance(event, ExecutionEvent) and event.successful:
        return make(DecisionKind.NO_INTERVENTION, Rule.TERMINAL_SUCCESS, "Query succeeded")

    if isinstance(event, ErrorEvent):
        return make(
            DecisionKind.CONTINUE,
            Rule.HINT_LADDER_EXHAUSTED,
            f"Hint ladder exhausted; {error_count} errors below threshold",
        )

    return make(DecisionKind.CONTINUE, Rule.NO_TRIGGER, f"No rule applies to {event.kind.value}")
