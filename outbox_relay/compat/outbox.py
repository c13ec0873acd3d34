"""Enqueue/flush API for producers that predate the outbox workers.

Rows land in the same ``event_outbox`` table the workers drain. The caller's
payload, headers and follow-up notifications are stored together in the row's
``payload`` JSON.
"""
import json
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

import httpx

from outbox_relay.adapters.store.interfaces import OutboxStore
from outbox_relay.domain.backoff import BackoffPolicy
from outbox_relay.domain.errors import DeliveryError, DuplicateRecordError
from outbox_relay.domain.models.events import FAILED, SENT, OutboxRecord
from outbox_relay.support.clock import Clock, ensure_aware, utcnow
from outbox_relay.support.ids import new_random_id, normalize, normalize_fixed_string
from outbox_relay.utils.logging import null_logger

CLAIM_LEASE_SECONDS = 300
NOTIFY_TIMEOUT_SECONDS = 5

LegacyRow = Dict[str, Any]
SendCallback = Callable[[LegacyRow], Any]


def resolve_sender(sender: Any) -> SendCallback:
    """Accept an object with ``send(row)`` or a plain callable."""
    send = getattr(sender, "send", None)
    if callable(send):
        return send
    if callable(sender):
        return sender
    raise ValueError("Invalid outbox sender: expected callable or object with send().")


def _dumps(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


class LegacyOutbox:
    def __init__(
        self,
        store: OutboxStore,
        logger: Optional[logging.Logger] = None,
        table: str = "outbox",
        clock: Clock = utcnow,
        http_client: Optional[httpx.Client] = None,
        backoff: Optional[BackoffPolicy] = None,
    ):
        self.store = store
        self.log = logger or null_logger()
        self.entity_table = normalize_fixed_string(table, 64, "outbox")
        self.clock = clock
        self.http_client = http_client
        self.backoff = backoff or BackoffPolicy(base_seconds=1, max_seconds=3600)

    def enqueue(
        self,
        topic: str,
        payload: Dict[str, Any],
        partition_key: Optional[str] = None,
        dedup_key: Optional[str] = None,
        headers: Optional[Mapping[str, Any]] = None,
        available_at: Optional[datetime] = None,
        notifications: Optional[Sequence[Mapping[str, Any]]] = None,
    ) -> Optional[OutboxRecord]:
        """Store an event; a repeated ``dedup_key`` for this table is absorbed and returns ``None``."""
        topic = topic.strip()
        if not topic:
            raise ValueError("Outbox topic must not be empty.")

        event_type = normalize_fixed_string(topic, 100, topic)
        entity_pk = normalize_fixed_string((partition_key or "").strip() or "-", 64, "-")

        if dedup_key is not None and dedup_key.strip():
            event_key = normalize(dedup_key, f"{self.entity_table}|{event_type}")
        else:
            event_key = new_random_id()

        stored = {
            "payload": payload,
            "headers": dict(headers or {}),
            "notifications": list(notifications or []),
        }
        try:
            stored_json = _dumps(stored)
        except (TypeError, ValueError) as exc:
            raise ValueError("Failed to encode outbox payload/headers.") from exc

        record = OutboxRecord(
            id=None,
            event_type=event_type,
            payload=stored_json,
            event_key=event_key,
            entity_table=self.entity_table,
            entity_pk=entity_pk,
            next_attempt_at=ensure_aware(available_at) if available_at else None,
        )
        try:
            return self.store.insert(record)
        except DuplicateRecordError:
            if dedup_key is None:
                raise
            self.log.info("outbox-duplicate", extra={"topic": event_type, "dedup": dedup_key})
            return None

    def flush(self, sender: Any, limit: int = 100) -> int:
        """Send due rows for this table through ``sender``; returns how many were sent."""
        callback = resolve_sender(sender)
        sent = 0

        for row in self._claim_batch(max(1, limit)):
            try:
                if not callback(self._to_legacy_row(row)):
                    raise DeliveryError("Sender reported failure.")
                self.store.update(row.id, status=SENT, processed_at=self.clock(), next_attempt_at=None)
                self._dispatch_notifications(row)
                sent += 1
            except Exception as exc:  # noqa: BLE001
                self._mark_failed(row, exc)

        return sent

    def _claim_batch(self, limit: int) -> List[OutboxRecord]:
        with self.store.transaction() as tx:
            now = self.clock()
            rows = tx.due_for_update(limit, now, self.entity_table)
            lease_until = now + timedelta(seconds=CLAIM_LEASE_SECONDS)
            for row in rows:
                tx.update(row.id, next_attempt_at=lease_until)
        return rows

    def _mark_failed(self, row: OutboxRecord, exc: Exception) -> None:
        wait = self.backoff.delay(row.attempts)
        self.store.update(
            row.id,
            status=FAILED,
            attempts=row.attempts + 1,
            next_attempt_at=self.clock() + timedelta(seconds=wait),
        )
        self.log.warning(
            "outbox-send-failed",
            extra={"id": row.id, "topic": row.event_type, "next_in_s": wait, "error": str(exc)},
        )

    def _stored(self, row: OutboxRecord) -> Dict[str, Any]:
        return row.decoded_payload()

    def _to_legacy_row(self, row: OutboxRecord) -> LegacyRow:
        stored = self._stored(row)
        return {
            "id": row.id,
            "topic": row.event_type,
            "part_key": row.entity_pk,
            "payload": _dumps(stored.get("payload", {})),
            "headers": _dumps(stored.get("headers", {})),
            "attempts": row.attempts,
        }

    def _dispatch_notifications(self, row: OutboxRecord) -> None:
        items = self._stored(row).get("notifications")
        if not isinstance(items, list):
            return
        for note in items:
            if not isinstance(note, dict):
                continue
            if note.get("type") == "webhook" and note.get("url"):
                body = note.get("payload")
                self._notify_webhook(str(note["url"]), body if isinstance(body, dict) else {})

    def _notify_webhook(self, url: str, payload: Dict[str, Any]) -> None:
        url = url.strip()
        if not url:
            return
        status = None
        try:
            if self.http_client is not None:
                response = self.http_client.post(url, json=payload, timeout=NOTIFY_TIMEOUT_SECONDS)
            else:
                response = httpx.post(url, json=payload, timeout=NOTIFY_TIMEOUT_SECONDS)
            status = response.status_code
            failed = status >= 400
        except (httpx.HTTPError, httpx.InvalidURL):
            failed = True
        if failed:
            self.log.warning("outbox-webhook-failed", extra={"url": url, "status": status})
