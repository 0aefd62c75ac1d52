"""
Tests for engine restart throttling.

The bridge's restart loop asks should_restart() before every attempt and
records each attempt's outcome; these tests follow that loop.
"""

from datetime import datetime, timedelta

import pytest

from core.restart_backoff import RestartBackoff, RestartBackoffConfig


@pytest.fixture
def backoff():
    return RestartBackoff(
        RestartBackoffConfig(
            base_delay_seconds=0.5,
            max_delay_seconds=3.0,
            max_attempts_per_hour=4,
            jitter_enabled=False,
        )
    )


def crash_loop(backoff, attempts):
    """Drive the restart loop through `attempts` failed engine launches."""
    delays = []
    for n in range(attempts):
        allowed, delay, _ = backoff.should_restart()
        if not allowed:
            break
        delays.append(delay)
        backoff.record_restart(success=False, error=f"exit code {n}")
    return delays


class TestCrashLoop:
    def test_delays_double_up_to_the_cap(self, backoff):
        assert crash_loop(backoff, 4) == [0.5, 1.0, 2.0, 3.0]

    def test_blocked_after_hourly_cap(self, backoff):
        crash_loop(backoff, 4)

        allowed, delay, reason = backoff.should_restart()

        assert allowed is False
        assert delay == 0.0
        assert reason.startswith("max_attempts_exceeded")

    def test_failures_are_reported(self, backoff):
        crash_loop(backoff, 2)
        status = backoff.get_status()
        assert status["attempt_count"] == 2
        assert status["recent_failures"] == 2
        assert status["total_restarts"] == 2
        assert status["last_restart_time"] is not None

    def test_failure_history_is_bounded(self):
        backoff = RestartBackoff(RestartBackoffConfig(max_attempts_per_hour=50, jitter_enabled=False))
        crash_loop(backoff, 15)
        assert backoff.get_status()["recent_failures"] == 10


class TestCooldown:
    def test_counter_resets_after_quiet_period(self, backoff):
        crash_loop(backoff, 4)
        assert backoff.should_restart()[0] is False

        backoff._state.last_restart = datetime.now() - timedelta(hours=2)

        allowed, delay, _ = backoff.should_restart()
        assert allowed is True
        assert delay == 0.5
        assert backoff.get_status()["recent_failures"] == 0

    def test_recent_restart_keeps_counter(self, backoff):
        crash_loop(backoff, 1)
        backoff.record_restart(success=True)
        assert backoff.get_status()["attempt_count"] == 2


def test_jitter_stays_within_factor():
    backoff = RestartBackoff(RestartBackoffConfig(base_delay_seconds=10.0, jitter_factor=0.2))
    delays = [backoff.get_delay(0) for _ in range(20)]
    assert all(8.0 <= d <= 12.0 for d in delays)


def test_zero_base_delay_restarts_immediately():
    backoff = RestartBackoff(RestartBackoffConfig(base_delay_seconds=0.0, jitter_enabled=False))
    allowed, delay, reason = backoff.should_restart()
    assert allowed is True
    assert delay == 0.0
    assert reason == "restart_allowed: attempt 1"
