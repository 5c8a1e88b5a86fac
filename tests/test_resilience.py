"""
Tests for the registration loop backoff
"""
import pytest

from fm_discovery.utils import ExponentialBackoff


def test_delays_double_from_start():
    backoff = ExponentialBackoff(start_ms=500, max_ms=900000)

    assert [backoff.next_delay() for _ in range(4)] == [0.5, 1.0, 2.0, 4.0]
    assert backoff.failures == 4
    assert backoff.current_ms == 8000


def test_delay_is_capped_at_max():
    backoff = ExponentialBackoff(start_ms=500, max_ms=1500)

    delays = [backoff.next_delay() for _ in range(6)]

    assert delays == [0.5, 1.0, 1.5, 1.5, 1.5, 1.5]
    assert backoff.current_ms == 1500


def test_long_failure_streak_stays_at_max():
    backoff = ExponentialBackoff(start_ms=500, max_ms=900000)

    for _ in range(5000):
        delay = backoff.next_delay()

    assert delay == 900.0


def test_reset_starts_a_new_streak():
    backoff = ExponentialBackoff(start_ms=250, max_ms=10000)
    backoff.next_delay()
    backoff.next_delay()

    backoff.reset()

    assert backoff.failures == 0
    assert backoff.next_delay() == 0.25


def test_max_below_start_is_raised_to_start():
    backoff = ExponentialBackoff(start_ms=500, max_ms=100)

    assert [backoff.next_delay() for _ in range(2)] == [0.5, 0.5]


def test_start_must_be_positive():
    with pytest.raises(ValueError):
        ExponentialBackoff(start_ms=0)
