import pytest

from outbox_relay.config.settings import MessagingSettings
from outbox_relay.utils.logging import null_logger
from outbox_relay.workers.outbox_worker import EventOutboxWorker, WebhookOutboxWorker
from outbox_relay.workers.runner import build_worker, main, parse_args


def test_parse_args():
    args = parse_args(["webhook", "--once"])
    assert args.kind == "webhook"
    assert args.once is True
    with pytest.raises(SystemExit):
        parse_args(["nope"])


def test_build_worker_picks_the_worker_kind():
    settings = MessagingSettings.from_env({})
    pool = object()

    assert isinstance(build_worker("event", settings, pool, null_logger()), EventOutboxWorker)
    webhook = build_worker("webhook", settings, pool, null_logger())
    assert isinstance(webhook, WebhookOutboxWorker)
    assert webhook.store.attempts_column == "retries"


def test_main_needs_a_dsn(monkeypatch):
    monkeypatch.delenv("RELAY_DATABASE_DSN", raising=False)
    assert main(["event", "--once"]) == 2
