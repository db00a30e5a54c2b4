"""
Learner profile persistence with optimistic concurrency.

Profiles are stored as JSON under `profile:{learner_id}`. A commit succeeds
only against the version it was computed from. If another writer got there
first, the mutation is re-applied to the newer profile (`apply`), or, when no
mutation is at hand, the two snapshots are merged field by field (`commit`).
Each successful commit bumps `version` exactly once.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import replace

from loguru import logger

from config import get_settings
from src.db.kv_store import KeyValueStore
from src.tutoring.errors import QuotaExceededError
from src.tutoring.profile import LearnerProfile, Preferences, merge_profiles
from src.tutoring.sessions import PROFILE_UPDATED, ChangeNotifier
from src.tutoring.strategies import Strategy

Mutation = Callable[[LearnerProfile], LearnerProfile]


def profile_key(learner_id: str) -> str:
    return f"profile:{learner_id}"


def _decode(learner_id: str, raw: str | None) -> LearnerProfile | None:
    if raw is None:
        return None
    try:
        return LearnerProfile.from_dict(json.loads(raw))
    except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
        logger.warning(f"Corrupted profile for {learner_id}, using a fresh default: {e}")
        return None


def _encode(profile: LearnerProfile) -> str:
    return json.dumps(profile.to_dict(), sort_keys=True, separators=(",", ":"))


def _resolve(
    base: LearnerProfile,
    updated: LearnerProfile,
    remote: LearnerProfile | None,
    mutation: Mutation | None = None,
) -> LearnerProfile:
    if remote is None or remote.version == base.version:
        return replace(updated, version=base.version + 1)
    if mutation is None:
        logger.debug(
            f"Profile {base.id} moved from v{base.version} to v{remote.version}; merging"
        )
        return replace(merge_profiles(base, updated, remote), version=remote.version + 1)

    logger.debug(
        f"Profile {base.id} moved from v{base.version} to v{remote.version}; re-applying"
    )
    reapplied = mutation(remote)
    return replace(
        reapplied,
        interaction_count=max(reapplied.interaction_count, remote.interaction_count),
        version=remote.version + 1,
    )


class ProfileStore:
    """Loads and commits learner profiles."""

    def __init__(
        self,
        store: KeyValueStore,
        notifier: ChangeNotifier | None = None,
        default_strategy: Strategy | str | None = None,
        default_preferences: Preferences | None = None,
    ):
        settings = get_settings()
        self._store = store
        self._notifier = notifier or ChangeNotifier()
        self._default_strategy = Strategy.parse(default_strategy or settings.default_strategy)
        self._default_preferences = default_preferences or Preferences(
            escalation_threshold=settings.default_escalation_threshold,
            aggregation_delay_ms=settings.default_aggregation_delay_ms,
        )
        # Profiles the store refused to hold
        self._overlay: dict[str, LearnerProfile] = {}

    def is_degraded(self, learner_id: str) -> bool:
        return learner_id in self._overlay

    def _default(self, learner_id: str) -> LearnerProfile:
        return LearnerProfile.create(learner_id, self._default_strategy, self._default_preferences)

    def _current(self, learner_id: str) -> LearnerProfile | None:
        if learner_id in self._overlay:
            return self._overlay[learner_id]
        return _decode(learner_id, self._store.get(profile_key(learner_id)))

    def load(self, learner_id: str) -> LearnerProfile:
        """Current profile; absent or corrupt state yields a fresh, unsaved default."""
        return self._current(learner_id) or self._default(learner_id)

    def commit(
        self,
        base: LearnerProfile,
        updated: LearnerProfile,
        mutation: Mutation | None = None,
    ) -> LearnerProfile:
        """
        Write `updated`, which was computed from `base`.

        Args:
            base: Profile the update was computed from
            updated: The update
            mutation: How `updated` was derived from `base`; re-run against the
                newer profile on a version conflict instead of merging snapshots

        Returns:
            The profile as committed (version bumped once, merged if needed)

        Raises:
            ConflictError: If the store kept losing compare-and-set races
        """
        learner_id = base.id

        if learner_id in self._overlay:
            committed = _resolve(base, updated, self._overlay[learner_id], mutation)
            self._overlay[learner_id] = committed
        else:
            attempts: list[LearnerProfile] = []

            def mutate(raw: str | None) -> str:
                attempts.append(_resolve(base, updated, _decode(learner_id, raw), mutation))
                return _encode(attempts[-1])

            try:
                self._store.merge(profile_key(learner_id), mutate)
                committed = attempts[-1]
            except QuotaExceededError as e:
                logger.warning(f"Profile for {learner_id} kept in memory: {e}")
                committed = attempts[-1] if attempts else _resolve(base, updated, None)
                self._overlay[learner_id] = committed

        self._notifier.publish(PROFILE_UPDATED, {"learner_id": learner_id, "version": committed.version})
        return committed

    def apply(self, learner_id: str, mutation: Mutation) -> LearnerProfile:
        """Load, mutate and commit in one step; a conflict re-runs the mutation."""
        base = self.load(learner_id)
        return self.commit(base, mutation(base), mutation)
