"""Process-local stores with row-lock semantics, for tests and single-process use.

Each row has its own ``threading.Lock`` that a transaction holds until it
commits or rolls back, so ``try_claim`` and ``claim_blocking`` behave like
``FOR UPDATE SKIP LOCKED`` and ``FOR UPDATE`` respectively.
"""
import threading
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Dict, Hashable, Iterator, List, Optional, Set

from outbox_relay.domain.errors import DuplicateRecordError
from outbox_relay.domain.models.events import PROCESSED, RETRYABLE_STATUSES, InboxRecord, OutboxRecord
from outbox_relay.support.clock import Clock, utcnow


class _MemoryTable:
    def __init__(self, unique_key: Callable[[Any], Optional[Hashable]], clock: Clock = utcnow) -> None:
        self._unique_key = unique_key
        self._clock = clock
        self._rows: Dict[int, Any] = {}
        self._row_locks: Dict[int, threading.Lock] = {}
        self._next_id = 1
        self._mutex = threading.Lock()

    def _row_lock(self, record_id: int) -> threading.Lock:
        with self._mutex:
            return self._row_locks.setdefault(record_id, threading.Lock())

    def _insert(self, record):
        with self._mutex:
            key = self._unique_key(record)
            if key is not None:
                for existing in self._rows.values():
                    if self._unique_key(existing) == key:
                        raise DuplicateRecordError(f"duplicate key value violates unique constraint: {key!r}")
            record_id = self._next_id
            self._next_id += 1
            stored = replace(record, id=record_id, created_at=record.created_at or self._clock())
            self._rows[record_id] = stored
            return stored

    def _discard(self, record_id: int) -> None:
        with self._mutex:
            self._rows.pop(record_id, None)
            self._row_locks.pop(record_id, None)

    def _apply(self, record_id: int, fields: Dict[str, Any]) -> int:
        with self._mutex:
            current = self._rows.get(record_id)
            if current is None:
                return 0
            self._rows[record_id] = replace(current, **fields)
            return 1

    def get(self, record_id: int):
        with self._mutex:
            return self._rows.get(record_id)

    def all(self) -> List[Any]:
        with self._mutex:
            return [self._rows[k] for k in sorted(self._rows)]

    def update(self, record_id: int, **fields: Any) -> int:
        return self._apply(record_id, fields)

    @contextmanager
    def transaction(self) -> Iterator["_MemoryTransaction"]:
        tx = self._transaction_class(self)
        try:
            yield tx
        except BaseException:
            tx.rollback()
            raise
        else:
            tx.commit()

    _transaction_class: Callable[["_MemoryTable"], "_MemoryTransaction"]


class _MemoryTransaction:
    def __init__(self, table: _MemoryTable) -> None:
        self._table = table
        self._held: Dict[int, threading.Lock] = {}
        self._pending: Dict[int, Dict[str, Any]] = {}
        self._inserted: Set[int] = set()

    def _snapshot(self, record_id: int):
        current = self._table.get(record_id)
        if current is None:
            return None
        pending = self._pending.get(record_id)
        return replace(current, **pending) if pending else current

    def _lock(self, record_id: int, blocking: bool):
        if record_id in self._held:
            return self._snapshot(record_id)
        if self._table.get(record_id) is None:
            return None
        lock = self._table._row_lock(record_id)
        if not lock.acquire(blocking=blocking):
            return None
        self._held[record_id] = lock
        # the row may have been deleted while we waited
        return self._snapshot(record_id)

    def try_claim(self, record_id: int):
        return self._lock(record_id, blocking=False)

    def claim_blocking(self, record_id: int):
        return self._lock(record_id, blocking=True)

    def insert(self, record):
        stored = self._table._insert(record)
        lock = self._table._row_lock(stored.id)
        lock.acquire()
        self._held[stored.id] = lock
        self._inserted.add(stored.id)
        return stored

    def update(self, record_id: int, **fields: Any) -> int:
        if self._table.get(record_id) is None:
            return 0
        self._pending.setdefault(record_id, {}).update(fields)
        return 1

    def commit(self) -> None:
        try:
            for record_id, fields in self._pending.items():
                self._table._apply(record_id, fields)
        finally:
            self._release()

    def rollback(self) -> None:
        for record_id in self._inserted:
            self._table._discard(record_id)
        self._pending.clear()
        self._release()

    def _release(self) -> None:
        for lock in self._held.values():
            lock.release()
        self._held.clear()


class _MemoryOutboxTransaction(_MemoryTransaction):
    def due_for_update(self, limit: int, now: datetime, entity_table: Optional[str] = None) -> List[OutboxRecord]:
        claimed: List[OutboxRecord] = []
        candidates = self._table.due_ids(limit=len(self._table.all()), now=now, entity_table=entity_table)
        for record_id in candidates:
            if len(claimed) >= limit:
                break
            row = self.try_claim(record_id)
            if row is not None:
                claimed.append(row)
        return claimed


class _MemoryInboxTransaction(_MemoryTransaction):
    def get_by_key(self, source: str, event_key: str) -> Optional[InboxRecord]:
        found = self._table.get_by_key(source, event_key)
        return self._snapshot(found.id) if found is not None else None


class InMemoryOutboxStore(_MemoryTable):
    """Outbox rows unique per (entity_table, event_key)."""

    _transaction_class = _MemoryOutboxTransaction

    def __init__(self, clock: Clock = utcnow) -> None:
        super().__init__(_outbox_key, clock)

    def insert(self, record: OutboxRecord) -> OutboxRecord:
        return self._insert(record)

    def due_ids(self, limit: int, now: datetime, entity_table: Optional[str] = None) -> List[int]:
        due = [
            row.id
            for row in self.all()
            if row.status in RETRYABLE_STATUSES
            and row.is_due(now)
            and (not entity_table or row.entity_table == entity_table)
        ]
        return due[:limit]


class InMemoryInboxStore(_MemoryTable):
    """Inbox rows unique per (source, event_key)."""

    _transaction_class = _MemoryInboxTransaction

    def __init__(self, clock: Clock = utcnow) -> None:
        super().__init__(lambda row: (row.source, row.event_key), clock)

    def get_by_key(self, source: str, event_key: str) -> Optional[InboxRecord]:
        for row in self.all():
            if row.source == source and row.event_key == event_key:
                return row
        return None

    def delete_processed(self, source: str, cutoff: datetime) -> int:
        doomed = [
            row.id
            for row in self.all()
            if row.source == source
            and row.status == PROCESSED
            and row.processed_at is not None
            and row.processed_at < cutoff
        ]
        for record_id in doomed:
            self._discard(record_id)
        return len(doomed)


def _outbox_key(row: OutboxRecord) -> Optional[Hashable]:
    if row.event_key is None:
        return None
    return (row.entity_table, row.event_key)
