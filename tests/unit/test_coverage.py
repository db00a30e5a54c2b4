"""
Unit tests for the concept coverage evidence engine.

Tests:
- Score deltas, streak bonus and streak penalty
- Clamping to [0, 100] (seeded randomized check)
- Confidence tiers from volume and diversity
- Copy-on-write profiles and evidence
- Coverage statistics over the full concept set
"""

import random

import pytest

from src.tutoring.coverage import (
    CoverageWeights,
    build_profile,
    confidence_for,
    get_coverage_stats,
    update_coverage,
)
from src.tutoring.evidence import Confidence, CoverageEvidence, EvidenceCounts
from src.tutoring.profile import LearnerProfile

WEIGHTS = CoverageWeights()


@pytest.fixture
def profile():
    return LearnerProfile.create("learner-1")


def fold(profile, events):
    for event in events:
        profile = update_coverage(profile, event, WEIGHTS)
    return profile


class TestScoreDeltas:
    """Score changes per event kind."""

    def test_success_is_strong_positive(self, profile, events):
        updated = fold(profile, [events.execution()])
        evidence = updated.evidence_for("select-basic")

        assert evidence.score == 15
        assert evidence.evidence_counts.successful_execution == 1
        assert evidence.streak_correct == 1
        assert evidence.last_updated == 1_000

    def test_streak_bonuses(self, profile, events):
        scores = []
        for _ in range(4):
            profile = fold(profile, [events.execution()])
            scores.append(profile.evidence_for("select-basic").score)

        # 15, +15+5, +15+10, +15+10
        assert scores == [15, 35, 60, 85]

    def test_error_is_penalty(self, profile, events):
        updated = fold(profile, [events.execution()] * 3 + [events.error()])

        evidence = updated.evidence_for("select-basic")
        assert evidence.score == 55
        assert evidence.streak_correct == 0
        assert evidence.streak_incorrect == 1

    def test_streak_penalty_from_third_error(self, profile, events):
        base = fold(profile, [events.execution()] * 4)
        assert base.evidence_for("select-basic").score == 85

        scores = []
        for _ in range(4):
            base = fold(base, [events.error()])
            scores.append(base.evidence_for("select-basic").score)

        # -5, -5, -5-5, -5-5
        assert scores == [80, 75, 65, 55]

    def test_weak_positive_signals(self, profile, events):
        updated = fold(
            profile,
            [
                events.hint_view(1, 1, subtype="incorrect join usage"),
                events.make("explanation_view", helpRequestIndex=4, errorSubtypeId="incorrect join usage"),
                events.make("textbook_add", conceptIds=["joins"], noteId="note-1"),
            ],
        )

        evidence = updated.evidence_for("joins")
        assert evidence.score == 2 + 3 + 4
        assert evidence.evidence_counts.hint_viewed == 1
        assert evidence.evidence_counts.explanation_viewed == 1
        assert evidence.evidence_counts.notes_added == 1

    def test_non_evidence_events_count_as_interactions(self, profile, events):
        updated = fold(
            profile,
            [
                events.make("code_change", code="SELECT"),
                events.execution(successful=False),
                events.hint_request(),
            ],
        )

        assert updated.interaction_count == 3
        assert dict(updated.concept_coverage_evidence) == {}

    def test_error_history_uses_canonical_subtype(self, profile, events):
        updated = fold(profile, [events.error("no such column"), events.error("undefined column")])

        assert dict(updated.error_history) == {"undefined column": 2}

    def test_version_untouched(self, profile, events):
        assert fold(profile, [events.execution()]).version == profile.version


class TestClamping:
    """Scores stay within [0, 100] after any sequence."""

    def test_floor(self, profile, events):
        updated = fold(profile, [events.error()] * 10)
        assert updated.evidence_for("select-basic").score == 0

    def test_ceiling(self, profile, events):
        updated = fold(profile, [events.execution()] * 20)
        assert updated.evidence_for("select-basic").score == 100

    def test_randomized_sequences(self, events):
        rng = random.Random(1337)
        builders = [
            lambda: events.execution(successful=True, concepts=rng.sample(["joins", "select-basic", "order-by"], 2)),
            lambda: events.error(rng.choice(["incomplete query", "incorrect join usage", "wrong positioning"])),
            lambda: events.hint_view(rng.randint(1, 3), rng.randint(1, 9), subtype="incorrect join usage"),
            lambda: events.make("textbook_update", conceptIds=["order-by"]),
        ]

        for _ in range(50):
            profile = LearnerProfile.create("learner-1")
            for _ in range(60):
                profile = update_coverage(profile, rng.choice(builders)(), WEIGHTS)
                for evidence in profile.concept_coverage_evidence.values():
                    assert 0 <= evidence.score <= 100

    def test_evidence_rejects_out_of_range(self):
        with pytest.raises(ValueError):
            CoverageEvidence(concept_id="joins", score=101)


class TestConfidence:
    """Confidence depends on evidence volume and diversity only."""

    def test_low(self):
        assert confidence_for(EvidenceCounts(successful_execution=2), WEIGHTS) is Confidence.LOW

    def test_medium_by_volume(self):
        assert confidence_for(EvidenceCounts(error_encountered=3), WEIGHTS) is Confidence.MEDIUM

    def test_high_needs_diversity(self):
        single_kind = EvidenceCounts(error_encountered=9)
        mixed = EvidenceCounts(error_encountered=6, hint_viewed=2)

        assert confidence_for(single_kind, WEIGHTS) is Confidence.MEDIUM
        assert confidence_for(mixed, WEIGHTS) is Confidence.HIGH

    def test_independent_of_score(self, profile, events):
        low_scores = fold(profile, [events.error()] * 3)
        high_scores = fold(profile, [events.execution()] * 3)

        assert low_scores.evidence_for("select-basic").score == 0
        assert high_scores.evidence_for("select-basic").score == 60
        assert low_scores.evidence_for("select-basic").confidence is Confidence.MEDIUM
        assert high_scores.evidence_for("select-basic").confidence is Confidence.MEDIUM


class TestCopyOnWrite:
    """Updates never mutate an existing profile or evidence record."""

    def test_original_profile_unchanged(self, profile, events):
        first = fold(profile, [events.execution()])
        held = first.evidence_for("select-basic")

        second = fold(first, [events.execution()])

        assert held.score == 15
        assert first.evidence_for("select-basic") is held
        assert second.evidence_for("select-basic").score == 35
        assert first.interaction_count == 1

    def test_untouched_concepts_shared(self, profile, events):
        first = fold(profile, [events.make("textbook_add", conceptIds=["joins"])])
        second = fold(first, [events.execution()])

        assert second.evidence_for("joins") is first.evidence_for("joins")

    def test_evidence_map_is_read_only(self, profile, events):
        updated = fold(profile, [events.execution()])

        with pytest.raises(TypeError):
            updated.concept_coverage_evidence["joins"] = CoverageEvidence(concept_id="joins")


class TestCoverageStats:
    """Tests for get_coverage_stats()."""

    def test_empty_profile_counts_all_concepts(self, profile):
        stats = get_coverage_stats(profile, mastery_threshold=50)

        assert stats.total_concepts == 6
        assert stats.covered_count == 0
        assert stats.coverage_percentage == 0.0
        assert stats.average_score == 0.0
        assert stats.by_confidence == {"low": 6, "medium": 0, "high": 0}

    def test_partial_coverage(self, profile, events):
        updated = fold(profile, [events.execution()] * 3)
        stats = get_coverage_stats(updated, mastery_threshold=50)

        assert stats.total_concepts == 6
        assert stats.covered_count == 1
        assert stats.coverage_percentage == 16.7
        assert stats.average_score == 10.0
        assert stats.by_confidence == {"low": 5, "medium": 1, "high": 0}

    def test_to_dict(self, profile):
        data = get_coverage_stats(profile, mastery_threshold=50).to_dict()
        assert data["totalConcepts"] == 6


class TestWeights:
    def test_rejects_wrong_signs(self):
        with pytest.raises(ValueError):
            CoverageWeights(error=5)
        with pytest.raises(ValueError):
            CoverageWeights(success=0)

    def test_streak_bonus_ordering(self):
        with pytest.raises(ValueError):
            CoverageWeights(streak2_bonus=10, streak3_bonus=10)

    def test_from_settings_mapping(self):
        weights = CoverageWeights.from_settings({"success": 20, "mastery_threshold": 60})
        assert weights.success == 20
        assert weights.hint == 2

    def test_build_profile_filters_learner(self, events):
        other = events.make("execution", successful=True, conceptIds=["joins"], learnerId="learner-2")
        profile = build_profile("learner-1", [events.execution(), other], WEIGHTS)

        assert profile.interaction_count == 1
        assert profile.evidence_for("joins") is None
