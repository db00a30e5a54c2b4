"""
Session management and change notification.

The active session for a learner lives in the store under
`session:{learner_id}` and is re-read on every call, so a session started by
another process (another tab) is picked up immediately. Callers still holding
an older id get a StaleSessionError and must re-fetch.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from loguru import logger

from src.db.kv_store import KeyValueStore, read_json, write_json
from src.tutoring.clock import Clock
from src.tutoring.errors import QuotaExceededError, StaleSessionError

SESSION_CHANGED = "session:changed"
PROFILE_UPDATED = "profile:updated"
EXTERNAL_CHANGED = "external:changed"

Handler = Callable[[dict[str, Any]], None]


class ChangeNotifier:
    """In-process publish/subscribe bus."""

    def __init__(self):
        self._handlers: dict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, topic: str, handler: Handler) -> Callable[[], None]:
        """Register a handler; returns a callable that unsubscribes it."""
        self._handlers[topic].append(handler)

        def unsubscribe() -> None:
            if handler in self._handlers[topic]:
                self._handlers[topic].remove(handler)

        return unsubscribe

    def publish(self, topic: str, payload: dict[str, Any] | None = None) -> int:
        """Deliver to every handler of a topic; returns how many succeeded."""
        delivered = 0
        for handler in list(self._handlers.get(topic, ())):
            try:
                handler(payload or {})
                delivered += 1
            except Exception as e:  # Intentionally broad - one bad handler must not block the rest
                logger.error(f"Handler for {topic} failed: {e}")
        return delivered


@dataclass(frozen=True)
class ActiveSession:
    session_id: str
    learner_id: str
    started_at: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "sessionId": self.session_id,
            "learnerId": self.learner_id,
            "startedAt": self.started_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ActiveSession:
        return cls(
            session_id=str(data["sessionId"]),
            learner_id=str(data["learnerId"]),
            started_at=int(data["startedAt"]),
        )


def session_key(learner_id: str) -> str:
    return f"session:{learner_id}"


class SessionManager:
    """Tracks the active session per learner."""

    def __init__(self, store: KeyValueStore, clock: Clock, notifier: ChangeNotifier | None = None):
        self._store = store
        self._clock = clock
        self._notifier = notifier or ChangeNotifier()
        # Only used once the store refuses writes
        self._overlay: dict[str, ActiveSession] = {}
        self.persistence_degraded = False

    def _read(self, learner_id: str) -> ActiveSession | None:
        if learner_id in self._overlay:
            return self._overlay[learner_id]
        data = read_json(self._store, session_key(learner_id))
        if data is None:
            return None
        try:
            return ActiveSession.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Corrupted session record for {learner_id}, starting fresh: {e}")
            return None

    def get_active_session(self, learner_id: str) -> str:
        """Active session id, creating one if the learner has none."""
        current = self._read(learner_id)
        if current is None:
            return self.start_session(learner_id)
        return current.session_id

    def ensure_session(self, learner_id: str, session_id: str) -> str:
        """Adopt `session_id` as active if the learner has no session yet; returns the active id."""
        current = self._read(learner_id)
        if current is not None:
            return current.session_id
        return self._activate(learner_id, session_id, None)

    def start_session(self, learner_id: str) -> str:
        """Always open a new session, replacing the active one."""
        previous = self._read(learner_id)
        started_at = self._clock.now_ms()
        return self._activate(learner_id, f"session-{learner_id}-{started_at}", previous, started_at)

    def _activate(
        self,
        learner_id: str,
        session_id: str,
        previous: ActiveSession | None,
        started_at: int | None = None,
    ) -> str:
        session = ActiveSession(
            session_id=session_id,
            learner_id=learner_id,
            started_at=started_at if started_at is not None else self._clock.now_ms(),
        )
        try:
            write_json(self._store, session_key(learner_id), session.to_dict())
            self._overlay.pop(learner_id, None)
        except QuotaExceededError as e:
            logger.warning(f"Session for {learner_id} kept in memory: {e}")
            self._overlay[learner_id] = session
            self.persistence_degraded = True

        logger.info(f"Started session {session.session_id}")
        self._notifier.publish(
            SESSION_CHANGED,
            {
                "learner_id": learner_id,
                "session_id": session.session_id,
                "previous_session_id": previous.session_id if previous else None,
            },
        )
        return session.session_id

    def require_active(self, learner_id: str, session_id: str) -> str:
        """
        Check a caller's session id against the active one.

        Raises:
            StaleSessionError: If the caller's id is no longer active
        """
        active = self.get_active_session(learner_id)
        if session_id != active:
            raise StaleSessionError(learner_id, expected=active, actual=session_id)
        return active
