import argparse
import json
import time
from typing import List, Optional

from outbox_relay.adapters.postgres.db import PostgresPool
from outbox_relay.adapters.postgres.stores import PostgresOutboxStore
from outbox_relay.adapters.transport.memory import InMemoryTransport
from outbox_relay.adapters.transport.postgres import PostgresTransport
from outbox_relay.config.settings import EventOutboxSettings, MessagingSettings, WebhookOutboxSettings
from outbox_relay.utils.logging import configure_logging
from outbox_relay.workers.outbox_worker import EventOutboxWorker, OutboxWorker, WebhookOutboxWorker


def build_worker(kind: str, settings: MessagingSettings, pg_pool: PostgresPool, log) -> OutboxWorker:
    if kind == "webhook":
        return WebhookOutboxWorker(
            PostgresOutboxStore.for_webhooks(pg_pool),
            settings=WebhookOutboxSettings(),
            logger=log,
        )

    if settings.transport_driver == "postgres":
        transport = PostgresTransport(pg_pool, settings.notify_channel, logger=log)
    else:
        transport = InMemoryTransport(logger=log)
    return EventOutboxWorker(PostgresOutboxStore(pg_pool), transport, settings=EventOutboxSettings(), logger=log)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drain the event or webhook outbox.")
    parser.add_argument("kind", choices=["event", "webhook"])
    parser.add_argument("--once", action="store_true", help="run a single batch, print its report and exit")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    settings = MessagingSettings()
    log = configure_logging(f"outbox_relay.{args.kind}_worker", settings.log_level)
    if not settings.database_dsn:
        log.error("RELAY_DATABASE_DSN is not set")
        return 2

    pg_pool = PostgresPool(settings.database_dsn)
    try:
        worker = build_worker(args.kind, settings, pg_pool, log)
        log.info("Starting outbox worker", extra={"kind": args.kind, "worker": worker.worker_name})

        if args.once:
            print(json.dumps(worker.run_once().as_dict()))
            return 0

        while True:
            report = worker.run_once()
            if not report.processed:
                time.sleep(settings.poll_interval_seconds)
    except KeyboardInterrupt:
        log.info("Stopping outbox worker", extra={"kind": args.kind})
        return 0
    finally:
        pg_pool.close()


if __name__ == "__main__":
    raise SystemExit(main())
