"""
Learner Profile.

The one shared, mutable resource of the engine, modelled as immutable
snapshots: every mutation yields a new profile, and the profile store commits
snapshots with optimistic concurrency on `version`.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any

from src.tutoring.evidence import CoverageEvidence
from src.tutoring.strategies import Strategy


def _frozen_map(data: Mapping[str, Any] | None) -> Mapping[str, Any]:
    return MappingProxyType(dict(data or {}))


@dataclass(frozen=True)
class Preferences:
    escalation_threshold: int = 3
    aggregation_delay_ms: int = 300_000


@dataclass(frozen=True)
class LearnerProfile:
    """Snapshot of one learner's adaptive state."""

    id: str
    current_strategy: Strategy = Strategy.ADAPTIVE_MEDIUM
    concept_coverage_evidence: Mapping[str, CoverageEvidence] = field(default_factory=dict)
    interaction_count: int = 0
    version: int = 0
    preferences: Preferences = field(default_factory=Preferences)
    error_history: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self):
        # Read-only views so no caller can mutate a snapshot through a shared reference
        object.__setattr__(
            self, "concept_coverage_evidence", _frozen_map(self.concept_coverage_evidence)
        )
        object.__setattr__(self, "error_history", _frozen_map(self.error_history))

    @classmethod
    def create(
        cls,
        learner_id: str,
        strategy: Strategy | str = Strategy.ADAPTIVE_MEDIUM,
        preferences: Preferences | None = None,
    ) -> LearnerProfile:
        """Fresh profile for a learner seen for the first time."""
        return cls(
            id=learner_id,
            current_strategy=Strategy.parse(strategy),
            preferences=preferences or Preferences(),
        )

    def evidence_for(self, concept_id: str) -> CoverageEvidence | None:
        return self.concept_coverage_evidence.get(concept_id)

    def with_strategy(self, strategy: Strategy | str) -> LearnerProfile:
        return replace(self, current_strategy=Strategy.parse(strategy))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "currentStrategy": self.current_strategy.value,
            "conceptCoverageEvidence": {
                concept_id: evidence.to_dict()
                for concept_id, evidence in sorted(self.concept_coverage_evidence.items())
            },
            "interactionCount": self.interaction_count,
            "version": self.version,
            "preferences": {
                "escalationThreshold": self.preferences.escalation_threshold,
                "aggregationDelay": self.preferences.aggregation_delay_ms,
            },
            "errorHistory": dict(sorted(self.error_history.items())),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LearnerProfile:
        """
        Rebuild a profile from its stored form.

        Raises:
            KeyError, TypeError, ValueError: If the stored shape is invalid
        """
        if not isinstance(data, dict):
            raise TypeError(f"profile must be an object, got {type(data).__name__}")
        prefs = data.get("preferences") or {}
        evidence = {
            str(concept_id): CoverageEvidence.from_dict(item)
            for concept_id, item in (data.get("conceptCoverageEvidence") or {}).items()
        }
        return cls(
            id=str(data["id"]),
            current_strategy=Strategy.parse(data.get("currentStrategy", Strategy.ADAPTIVE_MEDIUM)),
            concept_coverage_evidence=evidence,
            interaction_count=int(data.get("interactionCount", 0)),
            version=int(data.get("version", 0)),
            preferences=Preferences(
                escalation_threshold=int(prefs.get("escalationThreshold", 3)),
                aggregation_delay_ms=int(prefs.get("aggregationDelay", 300_000)),
            ),
            error_history={str(k): int(v) for k, v in (data.get("errorHistory") or {}).items()},
        )


def _newer_evidence(a: CoverageEvidence, b: CoverageEvidence) -> CoverageEvidence:
    if a.last_updated != b.last_updated:
        return a if a.last_updated > b.last_updated else b
    return a if a.evidence_counts.volume >= b.evidence_counts.volume else b


def merge_profiles(
    base: LearnerProfile,
    local: LearnerProfile,
    remote: LearnerProfile,
) -> LearnerProfile:
    """
    Field-level merge of a locally computed profile onto a newer remote one.

    Rules:
    - interaction_count: max(local, remote)
    - error_history: per-subtype max
    - coverage evidence: per concept, the most recently updated record
      (ties go to the record backed by more evidence)
    - strategy and preferences: local if it changed them from base, else remote
    - version: remote.version; the commit adds the single increment
    """
    evidence: dict[str, CoverageEvidence] = dict(remote.concept_coverage_evidence)
    for concept_id, mine in local.concept_coverage_evidence.items():
        theirs = evidence.get(concept_id)
        evidence[concept_id] = mine if theirs is None else _newer_evidence(mine, theirs)

    history: dict[str, int] = dict(remote.error_history)
    for subtype, count in local.error_history.items():
        history[subtype] = max(count, history.get(subtype, 0))

    strategy = (
        local.current_strategy
        if local.current_strategy != base.current_strategy
        else remote.current_strategy
    )
    preferences = local.preferences if local.preferences != base.preferences else remote.preferences

    return replace(
        remote,
        current_strategy=strategy,
        concept_coverage_evidence=evidence,
        interaction_count=max(local.interaction_count, remote.interaction_count),
        preferences=preferences,
        error_history=history,
    )
