import logging
import secrets
import threading
from datetime import datetime
from typing import List, Optional

from outbox_relay.adapters.scheduler.base import DUE_LIMIT
from outbox_relay.domain.models.envelope import MessageEnvelope
from outbox_relay.domain.models.events import PENDING, ScheduledJob
from outbox_relay.support.clock import Clock, ensure_aware, utcnow
from outbox_relay.utils.logging import null_logger


class InMemoryScheduler:
    """Delay queue kept in process memory."""

    def __init__(self, logger: Optional[logging.Logger] = None, clock: Clock = utcnow) -> None:
        self._jobs: List[ScheduledJob] = []
        self._lock = threading.Lock()
        self._clock = clock
        self.log = logger or null_logger()

    def schedule(self, envelope: MessageEnvelope, run_at: datetime) -> ScheduledJob:
        job = ScheduledJob(
            id=secrets.token_hex(16),
            task=envelope.topic,
            payload=dict(envelope.payload),
            headers=dict(envelope.headers),
            run_at=ensure_aware(run_at),
        )
        with self._lock:
            self._jobs.append(job)
        self.log.debug("messaging.in-memory.schedule", extra={"task": job.task, "run_at": job.run_at.isoformat()})
        return job

    def due(self, now: Optional[datetime] = None) -> List[ScheduledJob]:
        now = ensure_aware(now) if now is not None else self._clock()
        with self._lock:
            due = [job for job in self._jobs if job.status == PENDING and job.run_at <= now]
        due.sort(key=lambda job: job.run_at)
        return due[:DUE_LIMIT]
