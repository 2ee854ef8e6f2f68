"""Tests for the reconnect policy."""

from __future__ import annotations

import pytest

from robo_listen.core.resilience import ReconnectPolicy


class TestReconnectPolicy:
    def test_default_retries_forever_immediately(self) -> None:
        policy = ReconnectPolicy()
        assert policy.should_retry(1)
        assert policy.should_retry(10_000)
        assert policy.delay_for(1) == 0.0
        assert policy.delay_for(50) == 0.0

    def test_capped_attempts(self) -> None:
        policy = ReconnectPolicy(max_attempts=3)
        assert policy.should_retry(3)
        assert not policy.should_retry(4)

    def test_zero_attempts_never_retries(self) -> None:
        assert not ReconnectPolicy(max_attempts=0).should_retry(1)

    @pytest.mark.parametrize(
        ("attempt", "expected"),
        [(1, 0.5), (2, 1.0), (3, 2.0), (4, 4.0), (10, 5.0)],
    )
    def test_exponential_backoff_is_capped(self, attempt: int, expected: float) -> None:
        policy = ReconnectPolicy(delay_s=0.5, exponential_base=2.0, max_delay_s=5.0)
        assert policy.delay_for(attempt) == pytest.approx(expected)

    def test_constant_delay(self) -> None:
        policy = ReconnectPolicy(delay_s=1.5)
        assert policy.delay_for(1) == policy.delay_for(7) == 1.5

    def test_describe(self) -> None:
        assert ReconnectPolicy().describe(4) == "4"
        assert ReconnectPolicy(max_attempts=5).describe(2) == "2/5"
