"""Postgres-backed outbox/inbox stores.

Claims use ``FOR UPDATE SKIP LOCKED`` so concurrent workers partition the due
rows without blocking each other; the inbox uses a plain ``FOR UPDATE`` so that
redeliveries of one message serialize on its row.

Expected columns (DDL is managed outside this package):

* ``event_outbox``: id, event_key, entity_table, entity_pk, event_type, payload,
  status, attempts, next_attempt_at, processed_at, producer_node, created_at;
  unique (entity_table, event_key)
* ``webhook_outbox``: id, event_type, payload, status, retries,
  next_attempt_at, processed_at, created_at
* ``event_inbox``: id, source, event_key, payload, status, attempts,
  processed_at, last_error, created_at; unique (source, event_key)
"""
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from psycopg2 import sql
from psycopg2.extras import Json

from outbox_relay.adapters.postgres import db as pg
from outbox_relay.adapters.postgres.db import PostgresPool
from outbox_relay.domain.models.events import PROCESSED, InboxRecord, OutboxRecord

EVENT_OUTBOX_COLUMNS = (
    "event_key",
    "entity_table",
    "entity_pk",
    "event_type",
    "payload",
    "status",
    "attempts",
    "next_attempt_at",
    "processed_at",
    "producer_node",
)
WEBHOOK_OUTBOX_COLUMNS = ("event_type", "payload", "status", "retries", "next_attempt_at", "processed_at")
INBOX_COLUMNS = ("source", "event_key", "payload", "status", "attempts", "processed_at", "last_error")


def _adapt(column: str, value: Any) -> Any:
    if column == "payload" and isinstance(value, (dict, list)):
        return Json(value)
    return value


class _Table:
    def __init__(self, table: str, columns: Sequence[str], renames: Optional[Dict[str, str]] = None) -> None:
        self.table = table
        self.columns = tuple(columns)
        self.renames = renames or {}

    def column(self, field: str) -> str:
        name = self.renames.get(field, field)
        if name not in self.columns:
            raise ValueError(f"Unknown column {field!r} for table {self.table}")
        return name

    def update_query(self, record_id: int, fields: Dict[str, Any]) -> Tuple[sql.Composed, List[Any]]:
        assignments = []
        params: List[Any] = []
        for field, value in fields.items():
            name = self.column(field)
            assignments.append(sql.SQL("{} = %s").format(sql.Identifier(name)))
            params.append(_adapt(name, value))
        query = sql.SQL("UPDATE {} SET {} WHERE id = %s").format(
            sql.Identifier(self.table), sql.SQL(", ").join(assignments)
        )
        params.append(record_id)
        return query, params

    def insert_query(self, values: Dict[str, Any]) -> Tuple[sql.Composed, List[Any]]:
        names = [self.column(field) for field in values]
        query = sql.SQL("INSERT INTO {} ({}) VALUES ({}) RETURNING *").format(
            sql.Identifier(self.table),
            sql.SQL(", ").join(sql.Identifier(n) for n in names),
            sql.SQL(", ").join(sql.Placeholder() for _ in names),
        )
        return query, [_adapt(n, v) for n, v in zip(names, values.values())]

    def select_by_id(self, lock: str = "") -> sql.Composed:
        return sql.SQL("SELECT * FROM {} WHERE id = %s {}").format(sql.Identifier(self.table), sql.SQL(lock))

    def run_update(self, conn, record_id: int, fields: Dict[str, Any]) -> int:
        if not fields:
            return 0
        query, params = self.update_query(record_id, fields)
        return pg.execute(conn, query, params)


def _due_query(table: str, entity_table: Optional[str], columns: str, lock: str) -> sql.Composed:
    filters = (
        "((status = 'pending' AND next_attempt_at IS NULL)"
        " OR (status IN ('pending', 'failed') AND next_attempt_at <= %s))"
    )
    if entity_table:
        filters += " AND entity_table = %s"
    return sql.SQL("SELECT {} FROM {} WHERE {} ORDER BY id ASC LIMIT %s {}").format(
        sql.SQL(columns), sql.Identifier(table), sql.SQL(filters), sql.SQL(lock)
    )


def _due_params(now: datetime, entity_table: Optional[str], limit: int) -> List[Any]:
    params: List[Any] = [now]
    if entity_table:
        params.append(entity_table)
    params.append(limit)
    return params


class PostgresOutboxTransaction:
    def __init__(self, conn, store: "PostgresOutboxStore") -> None:
        self._conn = conn
        self._store = store

    def try_claim(self, record_id: int) -> Optional[OutboxRecord]:
        row = pg.fetch_one(self._conn, self._store.spec.select_by_id("FOR UPDATE SKIP LOCKED"), (record_id,))
        return self._store.to_record(row)

    def due_for_update(self, limit: int, now: datetime, entity_table: Optional[str] = None) -> List[OutboxRecord]:
        query = _due_query(self._store.spec.table, entity_table, "*", "FOR UPDATE SKIP LOCKED")
        rows = pg.fetch_all(self._conn, query, _due_params(now, entity_table, limit))
        return [self._store.to_record(row) for row in rows]

    def update(self, record_id: int, **fields: Any) -> int:
        return self._store.spec.run_update(self._conn, record_id, fields)


class PostgresOutboxStore:
    """Store for ``event_outbox`` (default) or ``webhook_outbox``."""

    def __init__(self, pool: PostgresPool, table: str = "event_outbox") -> None:
        self.pool = pool
        if table == "webhook_outbox":
            self.attempts_column = "retries"
            self.spec = _Table(table, WEBHOOK_OUTBOX_COLUMNS, {"attempts": "retries"})
        else:
            self.attempts_column = "attempts"
            self.spec = _Table(table, EVENT_OUTBOX_COLUMNS)

    @classmethod
    def for_webhooks(cls, pool: PostgresPool) -> "PostgresOutboxStore":
        return cls(pool, table="webhook_outbox")

    def to_record(self, row) -> Optional[OutboxRecord]:
        if row is None:
            return None
        return OutboxRecord.from_row(row, attempts_column=self.attempts_column)

    def insert(self, record: OutboxRecord) -> OutboxRecord:
        values = {
            "event_key": record.event_key,
            "entity_table": record.entity_table,
            "entity_pk": record.entity_pk,
            "event_type": record.event_type,
            "payload": record.payload,
            "next_attempt_at": record.next_attempt_at,
            "producer_node": record.producer_node,
        }
        values = {k: v for k, v in values.items() if v is not None and k in self.spec.columns}
        query, params = self.spec.insert_query(values)
        with self.pool.transaction() as conn:
            row = pg.insert_returning(conn, query, params)
        return self.to_record(row)

    def get(self, record_id: int) -> Optional[OutboxRecord]:
        with self.pool.connection() as conn:
            row = pg.fetch_one(conn, self.spec.select_by_id(), (record_id,))
            conn.commit()
        return self.to_record(row)

    def due_ids(self, limit: int, now: datetime, entity_table: Optional[str] = None) -> List[int]:
        query = _due_query(self.spec.table, entity_table, "id", "")
        with self.pool.connection() as conn:
            rows = pg.fetch_all(conn, query, _due_params(now, entity_table, limit))
            conn.commit()
        return [int(row["id"]) for row in rows]

    def update(self, record_id: int, **fields: Any) -> int:
        with self.pool.transaction() as conn:
            return self.spec.run_update(conn, record_id, fields)

    @contextmanager
    def transaction(self) -> Iterator[PostgresOutboxTransaction]:
        with self.pool.transaction() as conn:
            yield PostgresOutboxTransaction(conn, self)


class PostgresInboxTransaction:
    def __init__(self, conn, store: "PostgresInboxStore") -> None:
        self._conn = conn
        self._store = store

    def insert(self, record: InboxRecord) -> InboxRecord:
        query, params = self._store.spec.insert_query(
            {"source": record.source, "event_key": record.event_key, "payload": record.payload}
        )
        return InboxRecord.from_row(pg.insert_returning(self._conn, query, params))

    def get_by_key(self, source: str, event_key: str) -> Optional[InboxRecord]:
        return self._store.fetch_by_key(self._conn, source, event_key)

    def claim_blocking(self, record_id: int) -> Optional[InboxRecord]:
        row = pg.fetch_one(self._conn, self._store.spec.select_by_id("FOR UPDATE"), (record_id,))
        return InboxRecord.from_row(row) if row else None

    def update(self, record_id: int, **fields: Any) -> int:
        return self._store.spec.run_update(self._conn, record_id, fields)


class PostgresInboxStore:
    def __init__(self, pool: PostgresPool, table: str = "event_inbox") -> None:
        self.pool = pool
        self.spec = _Table(table, INBOX_COLUMNS)

    def fetch_by_key(self, conn, source: str, event_key: str) -> Optional[InboxRecord]:
        query = sql.SQL("SELECT * FROM {} WHERE source = %s AND event_key = %s").format(
            sql.Identifier(self.spec.table)
        )
        row = pg.fetch_one(conn, query, (source, event_key))
        return InboxRecord.from_row(row) if row else None

    def get_by_key(self, source: str, event_key: str) -> Optional[InboxRecord]:
        with self.pool.transaction() as conn:
            return self.fetch_by_key(conn, source, event_key)

    def update(self, record_id: int, **fields: Any) -> int:
        with self.pool.transaction() as conn:
            return self.spec.run_update(conn, record_id, fields)

    def delete_processed(self, source: str, cutoff: datetime) -> int:
        query = sql.SQL(
            "DELETE FROM {} WHERE source = %s AND status = %s AND processed_at IS NOT NULL AND processed_at < %s"
        ).format(sql.Identifier(self.spec.table))
        with self.pool.transaction() as conn:
            return pg.execute(conn, query, (source, PROCESSED, cutoff))

    @contextmanager
    def transaction(self) -> Iterator[PostgresInboxTransaction]:
        with self.pool.transaction() as conn:
            yield PostgresInboxTransaction(conn, self)
