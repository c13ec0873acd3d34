import json
import logging

from outbox_relay.adapters.store.memory import InMemoryOutboxStore
from outbox_relay.config.settings import WebhookOutboxSettings
from outbox_relay.domain.backoff import BackoffPolicy
from outbox_relay.domain.models.events import FAILED, SENT, OutboxRecord, WebhookDispatchResult
from outbox_relay.workers.outbox_worker import WebhookOutboxWorker

from conftest import FixedRandom


class RecordingDispatcher:
    def __init__(self, result=None):
        self.result = result or WebhookDispatchResult.success(200)
        self.calls = []

    def dispatch(self, event_type, payload, meta=None):
        self.calls.append((event_type, payload, meta))
        return self.result


def _insert(store, **fields):
    values = {
        "id": None,
        "event_type": "invoice.paid",
        "payload": json.dumps({"url": "https://hooks.example.com/in", "body": {"invoice": 7}}),
    }
    values.update(fields)
    return store.insert(OutboxRecord(**values))


def _worker(store, dispatcher, clock, logger=None, **env):
    settings = WebhookOutboxSettings.from_env({f"RELAY_WEBHOOK_OUTBOX_{k.upper()}": v for k, v in env.items()})
    return WebhookOutboxWorker(
        store,
        settings=settings,
        dispatcher=dispatcher,
        logger=logger,
        clock=clock,
        backoff=BackoffPolicy(10, 3600, rng=FixedRandom(0)),
    )


def test_dispatches_and_marks_sent(clock):
    store = InMemoryOutboxStore(clock)
    dispatcher = RecordingDispatcher()
    row = _insert(store)

    report = _worker(store, dispatcher, clock).run_once()

    assert report.as_dict() == {"processed": 1, "sent": 1, "failed": 0, "skipped": 0}
    [(event_type, payload, meta)] = dispatcher.calls
    assert event_type == "invoice.paid"
    assert payload["body"] == {"invoice": 7}
    assert meta == {"id": row.id, "event_type": "invoice.paid", "retries": 0}
    assert store.get(row.id).status == SENT


def test_not_ok_result_is_retried(clock, caplog, test_logger):
    store = InMemoryOutboxStore(clock)
    row = _insert(store)
    dispatcher = RecordingDispatcher(WebhookDispatchResult.failed("http_503", 503))

    with caplog.at_level(logging.WARNING, logger=test_logger.name):
        report = _worker(store, dispatcher, clock, logger=test_logger).run_once()

    assert report.failed == 1
    stored = store.get(row.id)
    assert stored.status == FAILED
    assert stored.attempts == 1
    [record] = [r for r in caplog.records if r.getMessage() == "messaging.webhook_outbox.failed_retry"]
    assert record.retries == 1
    assert record.error == "http_503"


def test_max_retries_is_terminal(clock, caplog, test_logger):
    store = InMemoryOutboxStore(clock)
    row = _insert(store)
    dispatcher = RecordingDispatcher(WebhookDispatchResult.failed("missing_webhook_url"))

    with caplog.at_level(logging.ERROR, logger=test_logger.name):
        _worker(store, dispatcher, clock, logger=test_logger, max_retries="1").run_once()

    stored = store.get(row.id)
    assert stored.status == FAILED
    assert stored.next_attempt_at is None
    assert any(r.getMessage() == "messaging.webhook_outbox.failed_permanent" for r in caplog.records)
