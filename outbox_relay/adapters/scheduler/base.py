from datetime import datetime
from typing import List, Optional, Protocol

from outbox_relay.domain.models.envelope import MessageEnvelope
from outbox_relay.domain.models.events import ScheduledJob

DUE_LIMIT = 100


class Scheduler(Protocol):
    def schedule(self, envelope: MessageEnvelope, run_at: datetime) -> ScheduledJob:
        ...

    def due(self, now: Optional[datetime] = None) -> List[ScheduledJob]:
        ...
