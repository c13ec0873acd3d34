import logging
from datetime import datetime, timedelta, timezone

import pytest


class FrozenClock:
    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


class FixedRandom:
    """Stands in for ``random`` so backoff jitter is predictable."""

    def __init__(self, value: int = 0):
        self.value = value

    def randint(self, low: int, high: int) -> int:
        return max(low, min(high, self.value))


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_logger():
    logger = logging.getLogger("outbox_relay.tests")
    logger.setLevel(logging.DEBUG)
    return logger
