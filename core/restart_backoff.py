"""
Exponential Backoff for Engine Restarts.

Prevents restart storms when the queue engine keeps crashing by enforcing
exponential delays between restart attempts and a cap per hour.

Usage:
    from core.restart_backoff import RestartBackoff, RestartBackoffConfig

    backoff = RestartBackoff(RestartBackoffConfig(base_delay_seconds=1.0))
    allowed, delay, reason = backoff.should_restart()

    if not allowed:
        logger.error(f"Restart blocked: {reason}")
        return

    time.sleep(delay)
    # ... restart the engine ...
    backoff.record_restart(success=True)
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)


@dataclass
class RestartBackoffConfig:
    """Configuration for restart backoff."""

    base_delay_seconds: float = 1.0
    max_delay_seconds: float = 60.0
    backoff_multiplier: float = 2.0
    max_attempts_per_hour: int = 5
    jitter_enabled: bool = True
    jitter_factor: float = 0.1  # +/- 10% jitter
    cooldown_hours: float = 1.0  # Reset attempt counter after this period


@dataclass
class RestartState:
    """Restart tracking for one engine process slot."""

    component: str = "engine"
    attempt_count: int = 0
    last_restart: Optional[datetime] = None
    failed_attempts: List[dict] = field(default_factory=list)
    total_restarts: int = 0


class RestartBackoff:
    """
    Exponential backoff manager for engine restarts.

    1. Exponential delay between attempts
    2. Max attempts per hour
    3. Jitter
    """

    def __init__(self, config: Optional[RestartBackoffConfig] = None, component: str = "engine"):
        self.config = config or RestartBackoffConfig()
        self._state = RestartState(component=component)
        self._lock = threading.Lock()

    def _check_cooldown_reset(self) -> None:
        """Reset attempt counter if cooldown period has passed."""
        last = self._state.last_restart
        if last is None:
            return
        if datetime.now() - last > timedelta(hours=self.config.cooldown_hours):
            logger.info(
                f"Cooldown period ({self.config.cooldown_hours}h) passed. "
                f"Resetting engine restart counter from {self._state.attempt_count} to 0."
            )
            self._state.attempt_count = 0
            self._state.failed_attempts = []

    def get_delay(self, attempt: int) -> float:
        """
        Calculate delay for given attempt number.

        Formula: delay = base * (multiplier ^ attempt), capped at max_delay,
        then +/- jitter_factor when jitter is enabled.
        """
        delay = self.config.base_delay_seconds * (self.config.backoff_multiplier ** attempt)
        delay = min(delay, self.config.max_delay_seconds)

        if self.config.jitter_enabled:
            jitter = delay * self.config.jitter_factor
            delay = delay + random.uniform(-jitter, jitter)

        return max(0.0, delay)

    def should_restart(self) -> Tuple[bool, float, str]:
        """
        Determine if restart is allowed.

        Returns:
            Tuple of (allowed, delay_seconds, reason)
        """
        with self._lock:
            self._check_cooldown_reset()

            if self._state.attempt_count >= self.config.max_attempts_per_hour:
                return (
                    False,
                    0.0,
                    f"max_attempts_exceeded: {self._state.attempt_count} >= {self.config.max_attempts_per_hour}",
                )

            delay = self.get_delay(self._state.attempt_count)
            return True, delay, f"restart_allowed: attempt {self._state.attempt_count + 1}"

    def record_restart(self, success: bool = True, error: Optional[str] = None) -> None:
        """Record a restart attempt."""
        now = datetime.now()
        with self._lock:
            self._state.attempt_count += 1
            self._state.last_restart = now
            self._state.total_restarts += 1

            if not success:
                self._state.failed_attempts.append({
                    "time": now.isoformat(),
                    "error": error or "unknown",
                    "attempt": self._state.attempt_count,
                })
                # Keep only last 10 failures
                self._state.failed_attempts = self._state.failed_attempts[-10:]

        logger.info(f"Restart recorded: component={self._state.component}, attempt={self._state.attempt_count}")

    def get_status(self) -> dict:
        """Get current backoff status for monitoring."""
        with self._lock:
            self._check_cooldown_reset()
            last = self._state.last_restart
            return {
                "attempt_count": self._state.attempt_count,
                "max_attempts_per_hour": self.config.max_attempts_per_hour,
                "last_restart_time": last.isoformat() if last else None,
                "total_restarts": self._state.total_restarts,
                "recent_failures": len(self._state.failed_attempts),
            }
