"""
Key-Value Storage Adapters.

The tutoring engine only needs three operations from storage:

    get(key)             -> value or None
    set(key, value)      -> SetResult(success, quota_exceeded)
    merge(key, mutator)  -> value written, with optimistic retry

Two adapters:
- InMemoryKeyValueStore: dict-backed, for tests and replay tooling
- SqlKeyValueStore: SQLAlchemy `kv_entries` table, compare-and-set on revision

Both enforce an optional byte quota (0 = unlimited) over all stored values.
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Protocol

from loguru import logger
from sqlalchemy import Engine, func, select, update
from sqlalchemy.exc import IntegrityError

from src.db.database import init_db, session_factory, session_scope
from src.db.models.store import KeyValueRecord
from src.tutoring.errors import ConflictError, QuotaExceededError

Mutator = Callable[[str | None], str]


@dataclass(frozen=True)
class SetResult:
    success: bool
    quota_exceeded: bool = False


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> SetResult: ...

    def merge(self, key: str, mutator: Mutator) -> str: ...


def _size(key: str, value: str) -> int:
    return len(key.encode("utf-8")) + len(value.encode("utf-8"))


class _OptimisticStore:
    """
    Shared merge loop over two primitives: read-with-revision and compare-and-set.

    Subclasses implement `_read` and `_compare_and_set`; revision 0 means absent.
    """

    def __init__(self, quota_bytes: int = 0, max_retries: int = 5):
        self.quota_bytes = quota_bytes
        self.max_retries = max_retries

    def _read(self, key: str) -> tuple[str | None, int]:
        raise NotImplementedError

    def _compare_and_set(self, key: str, value: str, expected_revision: int) -> bool:
        raise NotImplementedError

    def _used_bytes(self, excluding: str) -> int:
        raise NotImplementedError

    def _check_quota(self, key: str, value: str) -> None:
        if not self.quota_bytes:
            return
        size = self._used_bytes(excluding=key) + _size(key, value)
        if size > self.quota_bytes:
            raise QuotaExceededError(key, size, self.quota_bytes)

    def get(self, key: str) -> str | None:
        return self._read(key)[0]

    def set(self, key: str, value: str) -> SetResult:
        try:
            self._check_quota(key, value)
        except QuotaExceededError as e:
            logger.warning(str(e))
            return SetResult(success=False, quota_exceeded=True)

        for _ in range(self.max_retries):
            _, revision = self._read(key)
            if self._compare_and_set(key, value, revision):
                return SetResult(success=True)
        return SetResult(success=False)

    def merge(self, key: str, mutator: Mutator) -> str:
        """
        Read, mutate and compare-and-set, retrying when another writer got in first.

        Raises:
            QuotaExceededError: If the mutated value does not fit the quota
            ConflictError: If every attempt lost the race
        """
        for attempt in range(1, self.max_retries + 1):
            current, revision = self._read(key)
            value = mutator(current)
            self._check_quota(key, value)
            if self._compare_and_set(key, value, revision):
                return value
            logger.warning(f"Write conflict on {key!r} (attempt {attempt}/{self.max_retries})")
        raise ConflictError(key, self.max_retries)


class InMemoryKeyValueStore(_OptimisticStore):
    """Dict-backed store."""

    def __init__(self, quota_bytes: int = 0, max_retries: int = 5):
        super().__init__(quota_bytes, max_retries)
        self._data: dict[str, tuple[str, int]] = {}

    def _read(self, key: str) -> tuple[str | None, int]:
        value, revision = self._data.get(key, (None, 0))
        return value, revision

    def _compare_and_set(self, key: str, value: str, expected_revision: int) -> bool:
        _, revision = self._read(key)
        if revision != expected_revision:
            return False
        self._data[key] = (value, revision + 1)
        return True

    def _used_bytes(self, excluding: str) -> int:
        return sum(_size(k, v) for k, (v, _) in self._data.items() if k != excluding)

    def keys(self) -> list[str]:
        return sorted(self._data)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)


class SqlKeyValueStore(_OptimisticStore):
    """Store backed by the `kv_entries` table."""

    def __init__(self, engine: Engine, quota_bytes: int = 0, max_retries: int = 5):
        super().__init__(quota_bytes, max_retries)
        self._factory = session_factory(engine)
        init_db(engine)

    def _read(self, key: str) -> tuple[str | None, int]:
        with session_scope(self._factory) as session:
            record = session.get(KeyValueRecord, key)
            if record is None:
                return None, 0
            return record.value, record.revision

    def _compare_and_set(self, key: str, value: str, expected_revision: int) -> bool:
        try:
            with session_scope(self._factory) as session:
                if expected_revision == 0:
                    session.add(KeyValueRecord(key=key, value=value, revision=1))
                    return True
                result = session.execute(
                    update(KeyValueRecord)
                    .where(
                        KeyValueRecord.key == key,
                        KeyValueRecord.revision == expected_revision,
                    )
                    .values(value=value, revision=expected_revision + 1)
                )
                return result.rowcount == 1
        except IntegrityError:
            # Another writer inserted the key first
            return False

    def _used_bytes(self, excluding: str) -> int:
        with session_scope(self._factory) as session:
            total = session.scalar(
                select(
                    func.coalesce(
                        func.sum(func.length(KeyValueRecord.key) + func.length(KeyValueRecord.value)),
                        0,
                    )
                ).where(KeyValueRecord.key != excluding)
            )
            return int(total or 0)


def read_json(store: KeyValueStore, key: str) -> Any | None:
    """Load a JSON document; corrupt values are logged and treated as absent."""
    raw = store.get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        logger.warning(f"Corrupted value under {key!r}, treating as absent: {e}")
        return None


def write_json(store: KeyValueStore, key: str, document: Any) -> None:
    """
    Persist a JSON document.

    Raises:
        QuotaExceededError: If the store rejected the write for lack of space
    """
    value = json.dumps(document, sort_keys=True, separators=(",", ":"))
    result = store.set(key, value)
    if result.quota_exceeded:
        raise QuotaExceededError(key, len(value.encode("utf-8")), getattr(store, "quota_bytes", 0))
    if not result.success:
        raise ConflictError(key, getattr(store, "max_retries", 1))
