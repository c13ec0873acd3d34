"""Retry delay policy shared by the outbox workers."""
import random
from dataclasses import dataclass, field
from typing import Any

MAX_EXPONENT = 10


@dataclass(frozen=True)
class BackoffPolicy:
    """Exponential backoff with a cap and additive jitter.

    ``delay(n) = min(max, base * 2**min(10, n)) + randint(0, jitter)``, clamped into ``[1, max]``.
    """

    base_seconds: int = 10
    max_seconds: int = 3600
    jitter_seconds: int = 15
    rng: Any = field(default=random, repr=False, compare=False)

    def delay(self, attempts: int) -> int:
        attempts = max(0, attempts)
        base = max(1, self.base_seconds)
        cap = max(1, self.max_seconds)

        exp = min(MAX_EXPONENT, attempts)
        delay = min(cap, base * (1 << exp))
        jitter = self.rng.randint(0, self.jitter_seconds) if self.jitter_seconds > 0 else 0

        return min(cap, max(1, delay + jitter))
