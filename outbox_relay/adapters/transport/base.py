from typing import Protocol

from outbox_relay.domain.models.envelope import MessageEnvelope


class Transport(Protocol):
    def publish(self, envelope: MessageEnvelope) -> None:
        ...


class NullTransport:
    """Write-only sink that drops everything; webhook delivery goes through the dispatcher instead."""

    def publish(self, envelope: MessageEnvelope) -> None:
        return None
