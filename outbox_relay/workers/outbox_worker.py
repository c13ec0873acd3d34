"""Claim/process loop shared by the event and webhook outbox workers.

Each ``run_once`` picks up to ``batch_size`` due row ids, then for every id:

1. claims it in a short transaction (skip-locked row lock, re-check that the
   row is still retryable and due, push ``next_attempt_at`` forward by the
   lease) and commits;
2. delivers it outside any transaction, so no lock is held across network I/O;
3. marks it ``sent``, or records the failure and schedules a retry with
   backoff, or parks it as permanently ``failed`` once attempts run out.

A worker that dies between 1 and 3 leaves the row leased, not locked; it
becomes due again when the lease runs out.
"""
import logging
from dataclasses import replace
from datetime import timedelta
from typing import Any, Dict, Optional

from outbox_relay.adapters.crypto import Decryptor, maybe_decrypt
from outbox_relay.adapters.store.interfaces import OutboxStore
from outbox_relay.adapters.transport.base import Transport
from outbox_relay.adapters.webhook.dispatcher import HttpWebhookDispatcher, WebhookDispatcher
from outbox_relay.config.settings import EventOutboxSettings, WebhookOutboxSettings
from outbox_relay.domain.backoff import BackoffPolicy
from outbox_relay.domain.errors import DeliveryError
from outbox_relay.domain.models.envelope import MessageEnvelope
from outbox_relay.domain.models.events import FAILED, RETRYABLE_STATUSES, SENT, BatchReport, OutboxRecord
from outbox_relay.support.clock import Clock, utcnow
from outbox_relay.utils.logging import null_logger

MAX_ERROR_LENGTH = 2000


class OutboxWorker:
    kind = "outbox"
    table = "outbox"
    attempts_label = "attempts"

    def __init__(
        self,
        store: OutboxStore,
        *,
        batch_size: int,
        lock_seconds: int,
        max_attempts: int,
        backoff: BackoffPolicy,
        worker_name: str,
        entity_table: str = "",
        decryptor: Optional[Decryptor] = None,
        logger: Optional[logging.Logger] = None,
        clock: Clock = utcnow,
    ):
        self.store = store
        self.batch_size = max(1, batch_size)
        self.lock_seconds = lock_seconds
        self.max_attempts = max(0, max_attempts)
        self.backoff = backoff
        self.worker_name = worker_name
        self.entity_table = entity_table.strip()
        self.decryptor = decryptor
        self.log = logger or null_logger()
        self.clock = clock

    def run_once(self) -> BatchReport:
        report = BatchReport()
        ids = self.store.due_ids(limit=self.batch_size, now=self.clock(), entity_table=self.entity_table or None)

        for record_id in ids:
            report.processed += 1

            claimed = self.claim(record_id)
            if claimed is None:
                report.skipped += 1
                continue

            try:
                self.process(claimed)
            except Exception as exc:  # noqa: BLE001
                report.failed += 1
                self.release_with_failure(claimed, exc)
            else:
                report.sent += 1

        if report.processed:
            self.log.info(f"messaging.{self.kind}_outbox.batch", extra={"worker": self.worker_name, **report.as_dict()})
        return report

    def claim(self, record_id: int) -> Optional[OutboxRecord]:
        """Lease one row; ``None`` when a peer holds it or it is no longer due."""
        with self.store.transaction() as tx:
            row = tx.try_claim(record_id)
            if row is None:
                return None
            if row.status not in RETRYABLE_STATUSES:
                return None

            now = self.clock()
            if not row.is_due(now):
                return None

            lease_until = now + timedelta(seconds=self.lock_seconds)
            if tx.update(record_id, next_attempt_at=lease_until) <= 0:
                return None
            return replace(row, next_attempt_at=lease_until)

    def process(self, row: OutboxRecord) -> None:
        event_type = (row.event_type or "").strip()
        if not event_type:
            raise DeliveryError("missing_event_type")

        payload = maybe_decrypt(self.decryptor, self.table, row.decoded_payload())
        self.deliver(row, event_type, payload)

        self.store.update(row.id, status=SENT, processed_at=self.clock(), next_attempt_at=None)

    def deliver(self, row: OutboxRecord, event_type: str, payload: Dict[str, Any]) -> None:
        raise NotImplementedError

    def release_with_failure(self, row: OutboxRecord, exc: Exception) -> None:
        attempts = max(0, row.attempts + 1)
        context = {
            "id": row.id,
            "event_type": row.event_type,
            self.attempts_label: attempts,
            "error": (str(exc) or exc.__class__.__name__)[:MAX_ERROR_LENGTH],
            "worker": self.worker_name,
        }
        if row.event_key:
            context["event_key"] = row.event_key

        if self.max_attempts > 0 and attempts >= self.max_attempts:
            self.log.error(f"messaging.{self.kind}_outbox.failed_permanent", extra=context)
            self.store.update(row.id, status=FAILED, attempts=attempts, next_attempt_at=None)
            return

        delay = self.backoff.delay(attempts)
        self.log.warning(f"messaging.{self.kind}_outbox.failed_retry", extra={**context, "next_in_s": delay})
        self.store.update(
            row.id,
            status=FAILED,
            attempts=attempts,
            next_attempt_at=self.clock() + timedelta(seconds=delay),
        )


class EventOutboxWorker(OutboxWorker):
    """Publishes ``event_outbox`` rows through a Transport."""

    kind = "event"
    table = "event_outbox"

    def __init__(
        self,
        store: OutboxStore,
        transport: Transport,
        settings: Optional[EventOutboxSettings] = None,
        decryptor: Optional[Decryptor] = None,
        logger: Optional[logging.Logger] = None,
        clock: Clock = utcnow,
        backoff: Optional[BackoffPolicy] = None,
    ):
        settings = settings or EventOutboxSettings()
        super().__init__(
            store,
            batch_size=settings.batch_size,
            lock_seconds=settings.lock_seconds,
            max_attempts=settings.max_attempts,
            backoff=backoff or BackoffPolicy(settings.base_delay_seconds, settings.max_delay_seconds),
            worker_name=settings.worker_name,
            entity_table=settings.entity_table,
            decryptor=decryptor,
            logger=logger,
            clock=clock,
        )
        self.transport = transport

    def deliver(self, row: OutboxRecord, event_type: str, payload: Dict[str, Any]) -> None:
        headers = {
            "event_key": row.event_key,
            "entity_table": row.entity_table,
            "entity_pk": row.entity_pk,
            "created_at": row.created_at.isoformat() if row.created_at else None,
        }
        headers = {k: v for k, v in headers.items() if v is not None and v != ""}
        self.transport.publish(MessageEnvelope.wrap(event_type, payload, headers))


class WebhookOutboxWorker(OutboxWorker):
    """Dispatches ``webhook_outbox`` rows through a WebhookDispatcher."""

    kind = "webhook"
    table = "webhook_outbox"
    attempts_label = "retries"

    def __init__(
        self,
        store: OutboxStore,
        settings: Optional[WebhookOutboxSettings] = None,
        dispatcher: Optional[WebhookDispatcher] = None,
        decryptor: Optional[Decryptor] = None,
        logger: Optional[logging.Logger] = None,
        clock: Clock = utcnow,
        backoff: Optional[BackoffPolicy] = None,
    ):
        settings = settings or WebhookOutboxSettings()
        super().__init__(
            store,
            batch_size=settings.batch_size,
            lock_seconds=settings.lock_seconds,
            max_attempts=settings.max_retries,
            backoff=backoff or BackoffPolicy(settings.base_delay_seconds, settings.max_delay_seconds),
            worker_name=settings.worker_name,
            decryptor=decryptor,
            logger=logger,
            clock=clock,
        )
        self.dispatcher = dispatcher or HttpWebhookDispatcher(settings.http_timeout_seconds, logger=logger)

    def deliver(self, row: OutboxRecord, event_type: str, payload: Dict[str, Any]) -> None:
        meta = {"id": row.id, "event_type": event_type, "retries": row.attempts}
        result = self.dispatcher.dispatch(event_type, payload, meta)
        if not result.ok:
            raise DeliveryError(result.error or "webhook_failed")
