import logging
import secrets
from datetime import datetime
from typing import List, Optional

from psycopg2.extras import Json

from outbox_relay.adapters.postgres import db as pg
from outbox_relay.adapters.postgres.db import PostgresPool
from outbox_relay.adapters.scheduler.base import DUE_LIMIT
from outbox_relay.domain.models.envelope import MessageEnvelope
from outbox_relay.domain.models.events import PENDING, ScheduledJob
from outbox_relay.support.clock import Clock, ensure_aware, utcnow
from outbox_relay.utils.logging import null_logger

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS messaging_jobs (
    id TEXT PRIMARY KEY,
    task TEXT NOT NULL,
    payload JSONB NOT NULL,
    headers JSONB NOT NULL,
    run_at TIMESTAMPTZ NOT NULL,
    status TEXT NOT NULL DEFAULT 'pending',
    created_at TIMESTAMPTZ NOT NULL DEFAULT CURRENT_TIMESTAMP
);
"""

INSERT_SQL = """
INSERT INTO messaging_jobs (id, task, payload, headers, run_at, status)
VALUES (%s, %s, %s, %s, %s, 'pending');
"""

DUE_SQL = """
SELECT id, task, payload, headers, run_at, status
FROM messaging_jobs
WHERE status = 'pending' AND run_at <= %s
ORDER BY run_at ASC
LIMIT %s;
"""


class PostgresScheduler:
    """Delay queue in ``messaging_jobs``; consumers dequeue ``due`` rows themselves."""

    def __init__(self, pool: PostgresPool, logger: Optional[logging.Logger] = None, clock: Clock = utcnow):
        self.pool = pool
        self.log = logger or null_logger()
        self._clock = clock
        with self.pool.transaction() as conn:
            pg.execute(conn, CREATE_TABLE_SQL)

    def schedule(self, envelope: MessageEnvelope, run_at: datetime) -> ScheduledJob:
        job = ScheduledJob(
            id=secrets.token_hex(16),
            task=envelope.topic,
            payload=dict(envelope.payload),
            headers=dict(envelope.headers),
            run_at=ensure_aware(run_at),
            status=PENDING,
        )
        with self.pool.transaction() as conn:
            pg.execute(conn, INSERT_SQL, (job.id, job.task, Json(job.payload), Json(job.headers), job.run_at))
        self.log.info("messaging.pg.schedule", extra={"task": job.task, "run_at": job.run_at.isoformat(), "id": job.id})
        return job

    def due(self, now: Optional[datetime] = None) -> List[ScheduledJob]:
        now = ensure_aware(now) if now is not None else self._clock()
        with self.pool.transaction() as conn:
            rows = pg.fetch_all(conn, DUE_SQL, (now, DUE_LIMIT))
        return [
            ScheduledJob(
                id=row["id"],
                task=row["task"],
                payload=row["payload"] or {},
                headers=row["headers"] or {},
                run_at=ensure_aware(row["run_at"]),
                status=row["status"],
            )
            for row in rows
        ]
