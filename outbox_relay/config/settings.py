from typing import Annotated, Any, Mapping, Optional

from pydantic import BeforeValidator, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_EVENT_WORKER_NAME = "outbox-relay-event-worker"
DEFAULT_WEBHOOK_WORKER_NAME = "outbox-relay-webhook-worker"


def _at_least(minimum: int):
    def clamp(value: Any) -> int:
        return max(minimum, int(value))

    return clamp


AtLeastZero = Annotated[int, BeforeValidator(_at_least(0))]
AtLeastOne = Annotated[int, BeforeValidator(_at_least(1))]
AtLeastFive = Annotated[int, BeforeValidator(_at_least(5))]


class _EnvSettings(BaseSettings):
    @classmethod
    def from_env(cls, env: Optional[Mapping[str, Any]] = None):
        """Build from the process environment, or from an explicit ``env`` mapping."""
        if env is None:
            return cls()
        prefix = cls.model_config.get("env_prefix", "")
        values = {
            key[len(prefix):].lower(): value
            for key, value in env.items()
            if key.upper().startswith(prefix) and value is not None
        }
        return cls(**values)


class EventOutboxSettings(_EnvSettings):
    """Runtime configuration for the event outbox worker."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_EVENT_OUTBOX_", env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    batch_size: AtLeastOne = 100
    lock_seconds: AtLeastFive = 300
    max_attempts: AtLeastZero = 0
    base_delay_seconds: AtLeastOne = 10
    max_delay_seconds: AtLeastOne = 3600
    entity_table: str = ""
    worker_name: str = DEFAULT_EVENT_WORKER_NAME

    @field_validator("entity_table", mode="before")
    @classmethod
    def _trim_table(cls, value: Any) -> str:
        return str(value or "").strip()

    @field_validator("worker_name", mode="before")
    @classmethod
    def _default_name(cls, value: Any) -> str:
        return str(value or "").strip() or DEFAULT_EVENT_WORKER_NAME


class WebhookOutboxSettings(_EnvSettings):
    """Runtime configuration for the webhook outbox worker."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_WEBHOOK_OUTBOX_", env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    batch_size: AtLeastOne = 100
    lock_seconds: AtLeastFive = 300
    max_retries: AtLeastZero = 0
    base_delay_seconds: AtLeastOne = 10
    max_delay_seconds: AtLeastOne = 3600
    http_timeout_seconds: AtLeastOne = 5
    worker_name: str = DEFAULT_WEBHOOK_WORKER_NAME

    @field_validator("worker_name", mode="before")
    @classmethod
    def _default_name(cls, value: Any) -> str:
        return str(value or "").strip() or DEFAULT_WEBHOOK_WORKER_NAME


class MessagingSettings(_EnvSettings):
    """Connection and driver selection shared by the runner and the messaging facade."""

    model_config = SettingsConfigDict(
        env_prefix="RELAY_", env_file=".env", env_file_encoding="utf-8", extra="ignore", frozen=True
    )

    database_dsn: Optional[str] = None
    transport_driver: str = "in-memory"
    scheduler_driver: str = "in-memory"
    notify_channel: str = "messaging_messages"
    poll_interval_seconds: float = Field(5.0, ge=0)
    log_level: str = "INFO"

    @field_validator("transport_driver", "scheduler_driver", mode="before")
    @classmethod
    def _driver(cls, value: Any) -> str:
        driver = str(value or "in-memory").strip().lower()
        if driver not in ("in-memory", "postgres"):
            raise ValueError(f"Unsupported messaging driver: {driver}")
        return driver
