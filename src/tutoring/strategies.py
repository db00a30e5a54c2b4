"""
Escalation strategies.

A strategy is a named pair of error thresholds:
- escalate_after_errors: errors on a problem before a full explanation
- aggregate_after_errors: errors on a problem before a textbook note is recommended

hint-only carries infinite thresholds and never escalates.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum


class Strategy(str, Enum):
    """Escalation strategy assigned to a learner."""

    HINT_ONLY = "hint-only"
    ADAPTIVE_LOW = "adaptive-low"
    ADAPTIVE_MEDIUM = "adaptive-medium"
    ADAPTIVE_HIGH = "adaptive-high"

    @classmethod
    def parse(cls, value: str | Strategy) -> Strategy:
        """Accept either an enum member or its string value."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            valid = ", ".join(s.value for s in cls)
            raise ValueError(f"Unknown strategy {value!r} (expected one of: {valid})") from None

    @property
    def thresholds(self) -> StrategyThresholds:
        return STRATEGY_THRESHOLDS[self]

    @property
    def auto_escalation_enabled(self) -> bool:
        """Ladder exhaustion may lead to an explanation (never for hint-only)."""
        return self is not Strategy.HINT_ONLY


@dataclass(frozen=True)
class StrategyThresholds:
    """Error counts that trigger escalation and note aggregation."""

    escalate_after_errors: float
    aggregate_after_errors: float

    @property
    def escalation_finite(self) -> bool:
        return math.isfinite(self.escalate_after_errors)

    def to_dict(self) -> dict[str, int | str]:
        """Serialize with infinite values written as "Infinity"."""

        def normalize(value: float) -> int | str:
            return int(value) if math.isfinite(value) else "Infinity"

        return {
            "escalate": normalize(self.escalate_after_errors),
            "aggregate": normalize(self.aggregate_after_errors),
        }


STRATEGY_THRESHOLDS: dict[Strategy, StrategyThresholds] = {
    Strategy.HINT_ONLY: StrategyThresholds(math.inf, math.inf),
    Strategy.ADAPTIVE_LOW: StrategyThresholds(5, 10),
    Strategy.ADAPTIVE_MEDIUM: StrategyThresholds(3, 6),
    Strategy.ADAPTIVE_HIGH: StrategyThresholds(2, 4),
}


def thresholds_for(strategy: Strategy | str) -> StrategyThresholds:
    """Get the thresholds for a strategy (by member or value)."""
    return STRATEGY_THRESHOLDS[Strategy.parse(strategy)]
