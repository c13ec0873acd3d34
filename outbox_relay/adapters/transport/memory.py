import logging
import threading
from typing import List, Optional

from outbox_relay.domain.models.envelope import MessageEnvelope
from outbox_relay.utils.logging import null_logger


class InMemoryTransport:
    """Buffers published envelopes until ``drain`` is called."""

    def __init__(self, logger: Optional[logging.Logger] = None) -> None:
        self._buffer: List[MessageEnvelope] = []
        self._lock = threading.Lock()
        self.log = logger or null_logger()

    def publish(self, envelope: MessageEnvelope) -> None:
        with self._lock:
            self._buffer.append(envelope)
        self.log.debug("messaging.in-memory.publish", extra={"topic": envelope.topic, "headers": dict(envelope.headers)})

    def drain(self) -> List[MessageEnvelope]:
        with self._lock:
            buffer, self._buffer = self._buffer, []
        return buffer
