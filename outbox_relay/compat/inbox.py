"""Exactly-once handler execution for inbound messages."""
import logging
from datetime import timedelta
from typing import Any, Callable, Optional

from outbox_relay.adapters.store.interfaces import InboxStore
from outbox_relay.domain.errors import DuplicateRecordError
from outbox_relay.domain.models.events import FAILED, PROCESSED, InboxRecord
from outbox_relay.support.clock import Clock, utcnow
from outbox_relay.support.ids import normalize, normalize_fixed_string
from outbox_relay.utils.logging import null_logger

MAX_ERROR_LENGTH = 2000
SOURCE_MAX_LENGTH = 100


class Inbox:
    """Records each inbound message id per source and runs its handler to success once.

    ``source`` is the logical inbox name (historically a table name); it is
    hashed down when longer than the column allows.
    """

    def __init__(
        self,
        store: InboxStore,
        logger: Optional[logging.Logger] = None,
        source: str = "inbox",
        clock: Clock = utcnow,
    ):
        self.store = store
        self.log = logger or null_logger()
        self.source = normalize_fixed_string(source, SOURCE_MAX_LENGTH, "inbox")
        self.clock = clock

    def _event_key(self, message_id: str) -> str:
        return normalize(message_id, self.source)

    def process(self, message_id: str, topic: str, handler: Callable[[], Any]) -> bool:
        """Run ``handler`` unless this message was already processed.

        Returns ``True`` when the handler ran and succeeded, ``False`` for
        duplicates. A failing handler is recorded on the row and its exception
        re-raised after the failure is committed.
        """
        event_key = self._event_key(message_id)
        meta = {"component": "inbox", "message_id": message_id, "topic": topic, "source": self.source}

        thrown: Optional[BaseException] = None
        with self.store.transaction() as tx:
            try:
                row = tx.insert(InboxRecord(id=None, source=self.source, event_key=event_key, payload={"topic": topic}))
            except DuplicateRecordError:
                row = tx.get_by_key(self.source, event_key)

            if row is None or not row.id:
                self.log.info("inbox-duplicate", extra=meta)
                return False

            locked = tx.claim_blocking(row.id)
            if locked is None:
                self.log.info("inbox-locked", extra=meta)
                return False

            if locked.status == PROCESSED:
                self.log.info("inbox-duplicate", extra=meta)
                return False

            try:
                handler()
            except Exception as exc:
                error = str(exc)[:MAX_ERROR_LENGTH]
                tx.update(locked.id, status=FAILED, attempts=locked.attempts + 1, last_error=error)
                self.log.error("inbox-handler-failed", extra={"error": error, **meta})
                thrown = exc
            else:
                tx.update(locked.id, status=PROCESSED, processed_at=self.clock(), last_error=None)

        if thrown is not None:
            raise thrown
        return True

    def ack(self, message_id: str) -> None:
        """Mark a message processed without running a handler."""
        row = self.store.get_by_key(self.source, self._event_key(message_id))
        if row is None or not row.id:
            return
        self.store.update(row.id, status=PROCESSED, processed_at=self.clock(), last_error=None)

    def cleanup(self, status: str = PROCESSED, older_than_days: int = 30) -> int:
        """Delete this source's processed rows older than the cutoff; returns how many went."""
        if status != PROCESSED:
            return 0
        cutoff = self.clock() - timedelta(days=max(0, older_than_days))
        return self.store.delete_processed(self.source, cutoff)
