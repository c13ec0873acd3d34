"""Capabilities the delivery engine needs from a durable store.

A backing store must offer two row-lock primitives: ``try_claim`` (lock for
update, skip rows locked by another transaction) and ``claim_blocking`` (lock for
update, wait for the holder). Unique violations on insert raise
``DuplicateRecordError``.
"""
from datetime import datetime
from typing import Any, ContextManager, List, Optional, Protocol

from outbox_relay.domain.models.events import InboxRecord, OutboxRecord


class OutboxTransaction(Protocol):
    def try_claim(self, record_id: int) -> Optional[OutboxRecord]:
        ...

    def due_for_update(self, limit: int, now: datetime, entity_table: Optional[str] = None) -> List[OutboxRecord]:
        ...

    def update(self, record_id: int, **fields: Any) -> int:
        ...


class OutboxStore(Protocol):
    def insert(self, record: OutboxRecord) -> OutboxRecord:
        ...

    def get(self, record_id: int) -> Optional[OutboxRecord]:
        ...

    def due_ids(self, limit: int, now: datetime, entity_table: Optional[str] = None) -> List[int]:
        ...

    def update(self, record_id: int, **fields: Any) -> int:
        ...

    def transaction(self) -> ContextManager[OutboxTransaction]:
        ...


class InboxTransaction(Protocol):
    def insert(self, record: InboxRecord) -> InboxRecord:
        ...

    def get_by_key(self, source: str, event_key: str) -> Optional[InboxRecord]:
        ...

    def claim_blocking(self, record_id: int) -> Optional[InboxRecord]:
        ...

    def update(self, record_id: int, **fields: Any) -> int:
        ...


class InboxStore(Protocol):
    def get_by_key(self, source: str, event_key: str) -> Optional[InboxRecord]:
        ...

    def update(self, record_id: int, **fields: Any) -> int:
        ...

    def delete_processed(self, source: str, cutoff: datetime) -> int:
        ...

    def transaction(self) -> ContextManager[InboxTransaction]:
        ...
