"""
Per-concept coverage evidence.

Evidence objects are frozen: every update produces a new instance, so an
evidence record held by one profile snapshot can never change underneath it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Confidence(str, Enum):
    """How much evidence backs a concept score (independent of the score)."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


@dataclass(frozen=True)
class EvidenceCounts:
    successful_execution: int = 0
    hint_viewed: int = 0
    explanation_viewed: int = 0
    error_encountered: int = 0
    notes_added: int = 0

    @property
    def volume(self) -> int:
        return (
            self.successful_execution
            + self.hint_viewed
            + self.explanation_viewed
            + self.error_encountered
            + self.notes_added
        )

    @property
    def diversity(self) -> int:
        """Number of distinct evidence kinds observed."""
        return sum(
            1
            for count in (
                self.successful_execution,
                self.hint_viewed,
                self.explanation_viewed,
                self.error_encountered,
                self.notes_added,
            )
            if count > 0
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "successfulExecution": self.successful_execution,
            "hintViewed": self.hint_viewed,
            "explanationViewed": self.explanation_viewed,
            "errorEncountered": self.error_encountered,
            "notesAdded": self.notes_added,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> EvidenceCounts:
        return cls(
            successful_execution=int(data.get("successfulExecution", 0)),
            hint_viewed=int(data.get("hintViewed", 0)),
            explanation_viewed=int(data.get("explanationViewed", 0)),
            error_encountered=int(data.get("errorEncountered", 0)),
            notes_added=int(data.get("notesAdded", 0)),
        )


@dataclass(frozen=True)
class CoverageEvidence:
    """Mastery evidence for one concept and one learner."""

    concept_id: str
    score: int = 0
    confidence: Confidence = Confidence.LOW
    evidence_counts: EvidenceCounts = field(default_factory=EvidenceCounts)
    streak_correct: int = 0
    streak_incorrect: int = 0
    last_updated: int = 0

    def __post_init__(self):
        if not 0 <= self.score <= 100:
            raise ValueError(f"score out of range for {self.concept_id}: {self.score}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "conceptId": self.concept_id,
            "score": self.score,
            "confidence": self.confidence.value,
            "evidenceCounts": self.evidence_counts.to_dict(),
            "streakCorrect": self.streak_correct,
            "streakIncorrect": self.streak_incorrect,
            "lastUpdated": self.last_updated,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CoverageEvidence:
        return cls(
            concept_id=str(data["conceptId"]),
            score=int(data.get("score", 0)),
            confidence=Confidence(data.get("confidence", "low")),
            evidence_counts=EvidenceCounts.from_dict(data.get("evidenceCounts") or {}),
            streak_correct=int(data.get("streakCorrect", 0)),
            streak_incorrect=int(data.get("streakIncorrect", 0)),
            last_updated=int(data.get("lastUpdated", 0)),
        )
