import json
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from outbox_relay.support.clock import parse_timestamp

PENDING = "pending"
SENT = "sent"
FAILED = "failed"
PROCESSED = "processed"

RETRYABLE_STATUSES = (PENDING, FAILED)


def _ts(value) -> Optional[datetime]:
    if value is None or value == "":
        return None
    return parse_timestamp(value)


@dataclass(frozen=True)
class OutboxRecord:
    """Snapshot of one event_outbox / webhook_outbox row."""

    id: Optional[int]
    event_type: str
    payload: Any
    status: str = PENDING
    attempts: int = 0
    next_attempt_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    event_key: Optional[str] = None
    entity_table: Optional[str] = None
    entity_pk: Optional[str] = None
    producer_node: Optional[str] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any], attempts_column: str = "attempts") -> "OutboxRecord":
        return cls(
            id=row.get("id"),
            event_type=row.get("event_type") or "",
            payload=row.get("payload"),
            status=row.get("status") or PENDING,
            attempts=int(row.get(attempts_column) or 0),
            next_attempt_at=_ts(row.get("next_attempt_at")),
            processed_at=_ts(row.get("processed_at")),
            created_at=_ts(row.get("created_at")),
            event_key=row.get("event_key"),
            entity_table=row.get("entity_table"),
            entity_pk=row.get("entity_pk"),
            producer_node=row.get("producer_node"),
        )

    def is_due(self, now: datetime) -> bool:
        # failed with no next attempt is a permanent failure
        if self.next_attempt_at is None:
            return self.status == PENDING
        return self.next_attempt_at <= now

    def decoded_payload(self) -> Dict[str, Any]:
        """Payload as a dict; anything that is not a JSON object decodes to ``{}``."""
        raw = self.payload
        if isinstance(raw, dict):
            return raw
        if not isinstance(raw, (str, bytes)) or not raw.strip():
            return {}
        try:
            decoded = json.loads(raw)
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}


@dataclass(frozen=True)
class InboxRecord:
    id: Optional[int]
    source: str
    event_key: str
    payload: Any = None
    status: str = PENDING
    attempts: int = 0
    processed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "InboxRecord":
        return cls(
            id=row.get("id"),
            source=row.get("source") or "",
            event_key=row.get("event_key") or "",
            payload=row.get("payload"),
            status=row.get("status") or PENDING,
            attempts=int(row.get("attempts") or 0),
            processed_at=_ts(row.get("processed_at")),
            last_error=row.get("last_error"),
            created_at=_ts(row.get("created_at")),
        )


@dataclass(frozen=True)
class ScheduledJob:
    id: str
    task: str
    payload: Dict[str, Any]
    headers: Dict[str, Any]
    run_at: datetime
    status: str = PENDING


@dataclass(frozen=True)
class WebhookDispatchResult:
    ok: bool
    http_status: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def success(cls, http_status: Optional[int] = None) -> "WebhookDispatchResult":
        return cls(True, http_status, None)

    @classmethod
    def failed(cls, error: str, http_status: Optional[int] = None) -> "WebhookDispatchResult":
        error = (error or "").strip()
        return cls(False, http_status, error or "webhook_failed")


@dataclass
class BatchReport:
    processed: int = 0
    sent: int = 0
    failed: int = 0
    skipped: int = 0

    def as_dict(self) -> Dict[str, int]:
        return asdict(self)
