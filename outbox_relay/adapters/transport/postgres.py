import json
import logging
import secrets
from typing import Optional

import psycopg2
from psycopg2.extras import Json

from outbox_relay.adapters.postgres import db as pg
from outbox_relay.adapters.postgres.db import PostgresPool
from outbox_relay.domain.models.envelope import MessageEnvelope
from outbox_relay.utils.logging import null_logger

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS messaging_messages (
    id TEXT PRIMARY KEY,
    topic TEXT NOT NULL,
    payload JSONB NOT NULL,
    headers JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

INSERT_SQL = """
INSERT INTO messaging_messages (id, topic, payload, headers, created_at)
VALUES (%s, %s, %s, %s, CURRENT_TIMESTAMP);
"""


class PostgresTransport:
    """Durable bus: appends envelopes to ``messaging_messages`` and pings LISTENers via NOTIFY."""

    def __init__(self, pool: PostgresPool, channel: str = "messaging_messages", logger: Optional[logging.Logger] = None):
        self.pool = pool
        self.channel = channel
        self.log = logger or null_logger()
        with self.pool.transaction() as conn:
            pg.execute(conn, CREATE_TABLE_SQL)

    def publish(self, envelope: MessageEnvelope) -> None:
        message_id = secrets.token_hex(16)
        with self.pool.transaction() as conn:
            pg.execute(
                conn,
                INSERT_SQL,
                (message_id, envelope.topic, Json(dict(envelope.payload)), Json(dict(envelope.headers))),
            )

        self._notify(message_id, envelope.topic)
        self.log.info("messaging.pg.publish", extra={"topic": envelope.topic, "id": message_id})

    def _notify(self, message_id: str, topic: str) -> None:
        # LISTEN/NOTIFY is optional; the row above is the source of truth.
        try:
            with self.pool.transaction() as conn:
                pg.execute(conn, "SELECT pg_notify(%s, %s);", (self.channel, json.dumps({"id": message_id, "topic": topic})))
        except psycopg2.Error as exc:
            self.log.debug("messaging.pg.notify_failed", extra={"channel": self.channel, "error": str(exc)})
