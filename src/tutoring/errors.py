"""
Tutoring Engine Errors.

None of these are fatal to the process:
- ValidationError: malformed event, rejected before persistence
- QuotaExceededError: storage saturated, engine keeps working in memory
- StaleSessionError: caller held an outdated session id and must re-fetch
- ConflictError: version mismatch that merge retries could not resolve
"""

from __future__ import annotations


class TutorError(Exception):
    """Base class for tutoring engine errors."""


class ValidationError(TutorError):
    """Raised when an interaction event is malformed."""

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or []

    def __str__(self) -> str:
        base = super().__str__()
        if not self.problems:
            return base
        return f"{base}: {'; '.join(self.problems)}"


class QuotaExceededError(TutorError):
    """Raised by a store write that would exceed its byte quota."""

    def __init__(self, key: str, size: int, quota: int):
        super().__init__(f"Storage quota exceeded writing {key!r} ({size} > {quota} bytes)")
        self.key = key
        self.size = size
        self.quota = quota


class StaleSessionError(TutorError):
    """Raised when a caller presents a session id that is no longer active."""

    def __init__(self, learner_id: str, expected: str, actual: str):
        super().__init__(
            f"Stale session for learner {learner_id}: held {actual!r}, active is {expected!r}"
        )
        self.learner_id = learner_id
        self.expected = expected
        self.actual = actual


class ConflictError(TutorError):
    """Raised when optimistic merges on a key are exhausted."""

    def __init__(self, key: str, attempts: int):
        super().__init__(f"Writes to {key!r} still conflicting after {attempts} attempts")
        self.key = key
        self.attempts = attempts
