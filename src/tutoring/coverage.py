"""
Concept Coverage Evidence Engine.

Turns interaction events into per-concept mastery evidence:

    successful execution   strong positive
    hint / explanation     weak positive
    textbook note          weak positive
    error                  penalty
    2 correct in a row     small bonus
    3+ correct in a row    larger bonus
    3+ errors in a row     extra penalty

Scores are clamped to [0, 100]. Confidence is derived from evidence volume and
diversity only, never from the score. Coverage statistics are computed over
the full concept catalogue, so untouched concepts pull the percentage down.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from typing import assert_never

from loguru import logger

from config import get_settings
from src.tutoring.concepts import CONCEPT_IDS, canonical_subtype, map_to_concepts
from src.tutoring.events import (
    CodeChangeEvent,
    ErrorEvent,
    ExecutionEvent,
    ExplanationViewEvent,
    HintRequestEvent,
    HintViewEvent,
    InteractionEvent,
    TextbookAddEvent,
    TextbookUpdateEvent,
)
from src.tutoring.evidence import Confidence, CoverageEvidence, EvidenceCounts
from src.tutoring.profile import LearnerProfile


@dataclass(frozen=True)
class CoverageWeights:
    """Score deltas and confidence tier thresholds."""

    success: int = 15
    hint: int = 2
    explanation: int = 3
    note: int = 4
    error: int = -5
    streak2_bonus: int = 5
    streak3_bonus: int = 10
    streak_penalty: int = -5
    mastery_threshold: int = 50
    medium_volume: int = 3
    high_volume: int = 8
    high_diversity: int = 2

    def __post_init__(self):
        positives = (self.success, self.hint, self.explanation, self.note)
        if any(weight <= 0 for weight in positives):
            raise ValueError("success/hint/explanation/note weights must be positive")
        if self.error >= 0 or self.streak_penalty > 0:
            raise ValueError("error weight must be negative and streak penalty non-positive")
        if not self.streak3_bonus > self.streak2_bonus >= 0:
            raise ValueError("streak3 bonus must exceed the streak2 bonus")

    @classmethod
    def from_settings(cls, values: Mapping[str, int] | None = None) -> CoverageWeights:
        return cls(**(values if values is not None else get_settings().get_coverage_weights()))


@dataclass(frozen=True)
class CoverageStats:
    """Coverage summary over the full concept set."""

    total_concepts: int
    covered_count: int
    coverage_percentage: float
    average_score: float
    by_confidence: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "totalConcepts": self.total_concepts,
            "coveredCount": self.covered_count,
            "coveragePercentage": self.coverage_percentage,
            "averageScore": self.average_score,
            "byConfidence": dict(self.by_confidence),
        }


def _clamp(score: int) -> int:
    return max(0, min(100, score))


def confidence_for(counts: EvidenceCounts, weights: CoverageWeights) -> Confidence:
    """Deterministic tier from evidence volume and diversity."""
    if counts.volume >= weights.high_volume and counts.diversity >= weights.high_diversity:
        return Confidence.HIGH
    if counts.volume >= weights.medium_volume:
        return Confidence.MEDIUM
    return Confidence.LOW


def streak_bonus(streak_correct: int, weights: CoverageWeights) -> int:
    if streak_correct >= 3:
        return weights.streak3_bonus
    if streak_correct == 2:
        return weights.streak2_bonus
    return 0


def apply_evidence(
    evidence: CoverageEvidence,
    event: InteractionEvent,
    weights: CoverageWeights,
) -> CoverageEvidence:
    """Return the evidence record after one event; the input is left untouched."""
    counts = evidence.evidence_counts
    streak_correct = evidence.streak_correct
    streak_incorrect = evidence.streak_incorrect

    match event:
        case ExecutionEvent(successful=True):
            counts = replace(counts, successful_execution=counts.successful_execution + 1)
            streak_correct += 1
            streak_incorrect = 0
            delta = weights.success + streak_bonus(streak_correct, weights)
        case ErrorEvent():
            counts = replace(counts, error_encountered=counts.error_encountered + 1)
            streak_incorrect += 1
            streak_correct = 0
            delta = weights.error + (weights.streak_penalty if streak_incorrect >= 3 else 0)
        case HintViewEvent():
            counts = replace(counts, hint_viewed=counts.hint_viewed + 1)
            delta = weights.hint
        case ExplanationViewEvent():
            counts = replace(counts, explanation_viewed=counts.explanation_viewed + 1)
            delta = weights.explanation
        case TextbookAddEvent() | TextbookUpdateEvent():
            counts = replace(counts, notes_added=counts.notes_added + 1)
            delta = weights.note
        case ExecutionEvent() | HintRequestEvent() | CodeChangeEvent():
            return evidence
        case _:
            assert_never(event)

    return replace(
        evidence,
        score=_clamp(evidence.score + delta),
        confidence=confidence_for(counts, weights),
        evidence_counts=counts,
        streak_correct=streak_correct,
        streak_incorrect=streak_incorrect,
        last_updated=max(evidence.last_updated, event.timestamp),
    )


def update_coverage(
    profile: LearnerProfile,
    event: InteractionEvent,
    weights: CoverageWeights | None = None,
) -> LearnerProfile:
    """
    Fold one event into a learner profile.

    Args:
        profile: Current profile snapshot (not modified)
        event: The interaction event to apply
        weights: Score weights; defaults to configured settings

    Returns:
        New profile with updated evidence, interaction count and error history.
        The version is bumped by the profile store when the snapshot is committed.
    """
    weights = weights or CoverageWeights.from_settings()
    concept_ids = map_to_concepts(event)

    evidence = dict(profile.concept_coverage_evidence)
    for concept_id in concept_ids:
        current = evidence.get(concept_id) or CoverageEvidence(concept_id=concept_id)
        updated = apply_evidence(current, event, weights)
        if updated is not current:
            evidence[concept_id] = updated

    history = profile.error_history
    if isinstance(event, ErrorEvent) and event.error_subtype_id:
        subtype = canonical_subtype(event.error_subtype_id) or event.error_subtype_id.strip().lower()
        history = {**history, subtype: history.get(subtype, 0) + 1}

    if concept_ids:
        logger.debug(f"Coverage update for {profile.id}: {event.kind.value} -> {concept_ids}")

    return replace(
        profile,
        concept_coverage_evidence=evidence,
        interaction_count=profile.interaction_count + 1,
        error_history=history,
    )


def build_profile(
    learner_id: str,
    events: Iterable[InteractionEvent],
    weights: CoverageWeights | None = None,
    base: LearnerProfile | None = None,
) -> LearnerProfile:
    """Fold a learner's events into a profile (no persistence involved)."""
    profile = base or LearnerProfile.create(learner_id)
    for event in events:
        if event.learner_id == learner_id:
            profile = update_coverage(profile, event, weights)
    return profile


def get_coverage_stats(
    profile: LearnerProfile,
    concept_ids: Iterable[str] = CONCEPT_IDS,
    mastery_threshold: int | None = None,
) -> CoverageStats:
    """
    Summarize coverage over the full concept set.

    Concepts without evidence count as low confidence with score 0.
    """
    threshold = mastery_threshold if mastery_threshold is not None else get_settings().mastery_threshold
    concepts = list(concept_ids)
    by_confidence = {tier.value: 0 for tier in Confidence}
    covered = 0
    total_score = 0

    for concept_id in concepts:
        evidence = profile.evidence_for(concept_id)
        if evidence is None:
            by_confidence[Confidence.LOW.value] += 1
            continue
        if evidence.score >= threshold:
            covered += 1
        total_score += evidence.score
        by_confidence[evidence.confidence.value] += 1

    total = len(concepts)
    return CoverageStats(
        total_concepts=total,
        covered_count=covered,
        coverage_percentage=round(covered / total * 100, 1) if total else 0.0,
        average_score=round(total_score / total, 1) if total else 0.0,
        by_confidence=by_confidence,
    )
