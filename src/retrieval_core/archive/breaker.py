"""
retrieval_core/archive/breaker.py

Circuit breaker guarding the remote archive.

Three consecutive connectivity failures disable archive queries for
``15 minutes * disable_count``; every trip lengthens the next outage. While
disabled, queries fail open (the archive simply reports nothing) so callers
fall through to the remaining tiers. Re-enablement is lazy: the breaker is
only re-evaluated when the next query asks for permission.

All timing goes through an injectable clock (seconds since the epoch), so
tests drive it deterministically:

    clock = DeterministicClock()
    breaker = CircuitBreaker(clock=clock)
    for _ in range(3):
        breaker.record_failure()
    assert not breaker.allow_request()
    clock.advance(15 * 60)
    assert breaker.allow_request()
"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field

FAILURE_THRESHOLD = 3
BASE_DISABLE_SECONDS = 15 * 60
DISABLED_NOTICE_INTERVAL_SECONDS = 5.0


@dataclass
class CircuitBreakerState:
    consecutive_failures: int = 0
    disable_count: int = 0
    disabled_until: float = 0.0
    auto_disabled: bool = False
    last_disable_notice: float = float("-inf")


@dataclass
class CircuitBreaker:
    """Failure counter and cooldown for one archive client instance.

    Attributes:
        failure_threshold: Consecutive failures that trip the breaker
        base_disable_seconds: Outage length of the first trip
        notice_interval: Minimum seconds between "still disabled" notices
        clock: Time function (defaults to time.time)
    """

    failure_threshold: int = FAILURE_THRESHOLD
    base_disable_seconds: float = BASE_DISABLE_SECONDS
    notice_interval: float = DISABLED_NOTICE_INTERVAL_SECONDS
    clock: Callable[[], float] = field(default=time.time, repr=False)
    state: CircuitBreakerState = field(default_factory=CircuitBreakerState)

    @property
    def is_tripped(self) -> bool:
        return self.state.auto_disabled and self.clock() < self.state.disabled_until

    def allow_request(self) -> bool:
        """Return True when a query may go out; un-trips an expired breaker."""
        if not self.state.auto_disabled:
            return True
        if self.clock() >= self.state.disabled_until:
            self.state.auto_disabled = False
            return True
        return False

    def should_notify_disabled(self) -> bool:
        """Throttle "still disabled" notices to one per ``notice_interval``."""
        now = self.clock()
        if now - self.state.last_disable_notice > self.notice_interval:
            self.state.last_disable_notice = now
            return True
        return False

    def record_failure(self) -> bool:
        """Count a connectivity failure; return True if this one tripped the breaker."""
        self.state.consecutive_failures += 1
        if self.state.consecutive_failures < self.failure_threshold:
            return False

        self.state.auto_disabled = True
        self.state.disable_count += 1
        self.state.consecutive_failures = 0
        disabled_until = self.clock() + self.base_disable_seconds * self.state.disable_count
        self.state.disabled_until = max(self.state.disabled_until, disabled_until)
        return True

    def record_success(self) -> None:
        if self.state.auto_disabled:
            return
        self.state.consecutive_failures = 0
        self.state.disable_count = 0

    def disabled_duration_seconds(self) -> float:
        return max(0.0, self.state.disabled_until - self.clock())
