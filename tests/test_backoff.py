import pytest

from outbox_relay.domain.backoff import BackoffPolicy

from conftest import FixedRandom


@pytest.mark.parametrize("attempts", [0, 1, 5, 10, 50])
def test_equal_base_and_max_is_constant(attempts):
    policy = BackoffPolicy(base_seconds=30, max_seconds=30, rng=FixedRandom(15))
    assert policy.delay(attempts) == 30


def test_grows_exponentially_without_jitter():
    policy = BackoffPolicy(base_seconds=10, max_seconds=3600, rng=FixedRandom(0))
    assert [policy.delay(n) for n in range(4)] == [10, 20, 40, 80]


def test_exponent_is_capped_at_ten():
    policy = BackoffPolicy(base_seconds=1, max_seconds=100000, rng=FixedRandom(0))
    assert policy.delay(10) == 1024
    assert policy.delay(25) == 1024


def test_jitter_is_added_then_clamped_to_max():
    policy = BackoffPolicy(base_seconds=10, max_seconds=3600, rng=FixedRandom(7))
    assert policy.delay(1) == 27
    assert policy.delay(12) == 3600


def test_delay_is_within_bounds_with_real_randomness():
    policy = BackoffPolicy(base_seconds=10, max_seconds=60)
    for attempts in range(20):
        assert 1 <= policy.delay(attempts) <= 60


def test_negative_attempts_and_zero_jitter():
    policy = BackoffPolicy(base_seconds=5, max_seconds=60, jitter_seconds=0)
    assert policy.delay(-3) == 5
