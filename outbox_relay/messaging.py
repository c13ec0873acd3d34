"""Publish/schedule facade over a Transport and a Scheduler."""
import logging
from datetime import datetime
from typing import Any, Dict, Mapping, Optional

from outbox_relay.adapters.postgres.db import PostgresPool
from outbox_relay.adapters.scheduler.base import Scheduler
from outbox_relay.adapters.scheduler.memory import InMemoryScheduler
from outbox_relay.adapters.scheduler.postgres import PostgresScheduler
from outbox_relay.adapters.transport.base import Transport
from outbox_relay.adapters.transport.memory import InMemoryTransport
from outbox_relay.adapters.transport.postgres import PostgresTransport
from outbox_relay.config.settings import MessagingSettings
from outbox_relay.domain.models.envelope import MessageEnvelope
from outbox_relay.domain.models.events import ScheduledJob
from outbox_relay.support.clock import ensure_aware
from outbox_relay.utils.logging import null_logger


class MessagingManager:
    def __init__(self, transport: Transport, scheduler: Scheduler, logger: Optional[logging.Logger] = None):
        self.transport = transport
        self.scheduler = scheduler
        self.log = logger or null_logger()

    @classmethod
    def boot(
        cls,
        settings: Optional[MessagingSettings] = None,
        pool: Optional[PostgresPool] = None,
        logger: Optional[logging.Logger] = None,
    ) -> "MessagingManager":
        """Wire the drivers named in ``settings``; a pool is opened from ``database_dsn`` when needed."""
        settings = settings or MessagingSettings()
        log = logger or null_logger()

        needs_pool = "postgres" in (settings.transport_driver, settings.scheduler_driver)
        if needs_pool and pool is None:
            if not settings.database_dsn:
                raise ValueError("RELAY_DATABASE_DSN is required for the postgres messaging driver.")
            pool = PostgresPool(settings.database_dsn)

        if settings.transport_driver == "postgres":
            transport = PostgresTransport(pool, settings.notify_channel, logger=log)
        else:
            transport = InMemoryTransport(logger=log)

        if settings.scheduler_driver == "postgres":
            scheduler = PostgresScheduler(pool, logger=log)
        else:
            scheduler = InMemoryScheduler(logger=log)

        log.info(
            "messaging.boot",
            extra={"transport": settings.transport_driver, "scheduler": settings.scheduler_driver},
        )
        return cls(transport, scheduler, log)

    def publish(
        self, topic: str, payload: Dict[str, Any], headers: Optional[Mapping[str, Any]] = None
    ) -> MessageEnvelope:
        envelope = MessageEnvelope.wrap(topic, payload, headers)
        self.transport.publish(envelope)
        return envelope

    def schedule(self, task: str, run_at: datetime, payload: Optional[Dict[str, Any]] = None) -> ScheduledJob:
        run_at = ensure_aware(run_at)
        envelope = MessageEnvelope.wrap(task, payload or {}, {"scheduled_at": run_at.isoformat()})
        return self.scheduler.schedule(envelope, run_at)
