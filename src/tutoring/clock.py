"""
Injectable time and id sources.

The engine never reads the wall clock or generates random ids directly;
tests and replay tooling swap in the deterministic variants.
"""

from __future__ import annotations

import itertools
import re
import time
import uuid
from typing import Protocol


class Clock(Protocol):
    def now_ms(self) -> int: ...


class IdGenerator(Protocol):
    def new_id(self, prefix: str, *parts: str | int | None) -> str: ...


class SystemClock:
    """Wall-clock milliseconds."""

    def now_ms(self) -> int:
        return int(time.time() * 1000)


class FixedClock:
    """Deterministic clock that advances by a fixed step on every read."""

    def __init__(self, start_ms: int = 1_700_000_000_000, step_ms: int = 1):
        self._current = start_ms
        self._step = step_ms

    def now_ms(self) -> int:
        value = self._current
        self._current += self._step
        return value

    def advance(self, delta_ms: int) -> None:
        self._current += delta_ms


def _sanitize_part(part: str) -> str:
    cleaned = re.sub(r"\s+", "-", part.strip())
    cleaned = re.sub(r"[^a-zA-Z0-9._-]", "-", cleaned)
    cleaned = re.sub(r"-+", "-", cleaned)
    return cleaned.strip("-")


def _join_id(base: list[str], parts: tuple[str | int | None, ...]) -> str:
    extra = [_sanitize_part(str(p)) for p in parts if p is not None]
    return "-".join(base + [p for p in extra if p])


class UuidIdGenerator:
    """Collision-resistant ids: prefix, counter and a uuid4 fragment."""

    def __init__(self, clock: Clock | None = None):
        self._clock = clock or SystemClock()
        self._counter = itertools.count(1)

    def new_id(self, prefix: str, *parts: str | int | None) -> str:
        base = [
            _sanitize_part(prefix) or "event",
            str(self._clock.now_ms()),
            format(next(self._counter), "x"),
            uuid.uuid4().hex[:8],
        ]
        return _join_id(base, parts)


class SequentialIdGenerator:
    """Deterministic ids for tests: prefix plus a running counter."""

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)

    def new_id(self, prefix: str, *parts: str | int | None) -> str:
        return _join_id([_sanitize_part(prefix) or "event", str(next(self._counter))], parts)
