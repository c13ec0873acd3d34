import pytest
from pydantic import ValidationError

from outbox_relay.config.settings import (
    DEFAULT_EVENT_WORKER_NAME,
    DEFAULT_WEBHOOK_WORKER_NAME,
    EventOutboxSettings,
    MessagingSettings,
    WebhookOutboxSettings,
)


def test_event_defaults():
    settings = EventOutboxSettings.from_env({})
    assert settings.batch_size == 100
    assert settings.lock_seconds == 300
    assert settings.max_attempts == 0
    assert settings.base_delay_seconds == 10
    assert settings.max_delay_seconds == 3600
    assert settings.entity_table == ""
    assert settings.worker_name == DEFAULT_EVENT_WORKER_NAME


def test_event_values_are_clamped():
    settings = EventOutboxSettings.from_env(
        {
            "RELAY_EVENT_OUTBOX_BATCH_SIZE": "0",
            "RELAY_EVENT_OUTBOX_LOCK_SECONDS": "2",
            "RELAY_EVENT_OUTBOX_MAX_ATTEMPTS": "-4",
            "RELAY_EVENT_OUTBOX_BASE_DELAY_SECONDS": "0",
            "RELAY_EVENT_OUTBOX_MAX_DELAY_SECONDS": "-1",
            "RELAY_EVENT_OUTBOX_ENTITY_TABLE": "  orders  ",
            "RELAY_EVENT_OUTBOX_WORKER_NAME": "   ",
            "UNRELATED": "x",
        }
    )
    assert settings.batch_size == 1
    assert settings.lock_seconds == 5
    assert settings.max_attempts == 0
    assert settings.base_delay_seconds == 1
    assert settings.max_delay_seconds == 1
    assert settings.entity_table == "orders"
    assert settings.worker_name == DEFAULT_EVENT_WORKER_NAME


def test_webhook_settings_from_env():
    settings = WebhookOutboxSettings.from_env(
        {"RELAY_WEBHOOK_OUTBOX_MAX_RETRIES": "7", "RELAY_WEBHOOK_OUTBOX_HTTP_TIMEOUT_SECONDS": "0"}
    )
    assert settings.max_retries == 7
    assert settings.http_timeout_seconds == 1
    assert settings.worker_name == DEFAULT_WEBHOOK_WORKER_NAME


def test_process_environment_is_read(monkeypatch):
    monkeypatch.setenv("RELAY_EVENT_OUTBOX_BATCH_SIZE", "25")
    assert EventOutboxSettings.from_env().batch_size == 25


def test_settings_are_frozen():
    settings = EventOutboxSettings.from_env({})
    with pytest.raises(ValidationError):
        settings.batch_size = 5


def test_messaging_driver_validation():
    settings = MessagingSettings.from_env({"RELAY_TRANSPORT_DRIVER": " Postgres "})
    assert settings.transport_driver == "postgres"
    assert settings.scheduler_driver == "in-memory"

    with pytest.raises(ValidationError):
        MessagingSettings.from_env({"RELAY_SCHEDULER_DRIVER": "redis"})
