"""
Unit tests for retry/backoff policies.
"""

import pytest

from core.retry import FETCH_RETRY_POLICY, RESYNC_POLICY, STREAM_RECONNECT_POLICY, RetryPolicy


def test_fetch_policy_waits_five_then_ten_seconds():
    assert FETCH_RETRY_POLICY.delay_for(0) == 5.0
    assert FETCH_RETRY_POLICY.delay_for(1) == 10.0
    assert not FETCH_RETRY_POLICY.exhausted(1)
    assert FETCH_RETRY_POLICY.exhausted(2)


def test_stream_policy_doubles_then_cools_down():
    delays = [STREAM_RECONNECT_POLICY.delay_for(attempt) for attempt in (1, 2, 3)]

    assert delays == [2.0, 4.0, 8.0]
    assert STREAM_RECONNECT_POLICY.exhausted(3)
    assert STREAM_RECONNECT_POLICY.cooldown == 30.0


def test_resync_policy_is_capped():
    delays = [RESYNC_POLICY.delay_for(attempt) for attempt in range(6)]

    assert delays == [5.0, 10.0, 20.0, 30.0, 30.0, 30.0]


@pytest.mark.parametrize("attempt", [-3, -1])
def test_negative_attempt_uses_base_delay(attempt):
    policy = RetryPolicy(max_attempts=1, base_delay=1.5)
    assert policy.delay_for(attempt) == 1.5


def test_custom_multiplier():
    policy = RetryPolicy(max_attempts=4, base_delay=1.0, multiplier=3.0, max_delay=20.0)
    assert [policy.delay_for(a) for a in range(4)] == [1.0, 3.0, 9.0, 20.0]
