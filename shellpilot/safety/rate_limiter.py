"""Sliding-window admission control for shell commands."""

import math
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from shellpilot.exceptions import ConfigurationError, RateLimitError


@dataclass(frozen=True)
class RateDecision:
    """Admission decision for one command."""

    allowed: bool
    reason: str | None = None
    retry_after: int | None = None


@dataclass(frozen=True)
class RateStats:
    """Current window usage."""

    in_window: int
    max_count: int
    utilization: float


class RateLimiter:
    """Admit at most ``max_count`` commands per ``window_ms`` milliseconds."""

    def __init__(
        self,
        max_count: int = 30,
        window_ms: int = 60000,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_count < 1:
            raise ConfigurationError("Rate limit max_count must be at least 1", "rate_limit.max_commands")
        if window_ms <= 0:
            raise ConfigurationError("Rate limit window must be positive", "rate_limit.window_ms")
        self.max_count = int(max_count)
        self.window_ms = int(window_ms)
        self._clock = clock
        self._timestamps: deque[float] = deque()

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    def _purge(self, now_ms: float) -> None:
        while self._timestamps and now_ms - self._timestamps[0] >= self.window_ms:
            self._timestamps.popleft()

    def can_execute(self, command: str = "") -> RateDecision:
        """Record the command and admit it, or reject with a retry hint."""
        now_ms = self._now_ms()
        self._purge(now_ms)

        if len(self._timestamps) >= self.max_count:
            remaining_ms = self._timestamps[0] + self.window_ms - now_ms
            return RateDecision(
                allowed=False,
                reason=f"Rate limit exceeded: {self.max_count} commands per {self._window_label()}",
                retry_after=max(1, math.ceil(remaining_ms / 1000.0)),
            )

        self._timestamps.append(now_ms)
        return RateDecision(allowed=True)

    def check(self, command: str = "") -> None:
        """Like ``can_execute`` but raises RateLimitError on rejection."""
        decision = self.can_execute(command)
        if not decision.allowed:
            raise RateLimitError(decision.reason or "Rate limit exceeded", decision.retry_after or 1)

    def reset(self) -> None:
        self._timestamps.clear()

    def stats(self) -> RateStats:
        self._purge(self._now_ms())
        count = len(self._timestamps)
        return RateStats(
            in_window=count,
            max_count=self.max_count,
            utilization=count / self.max_count,
        )

    def _window_label(self) -> str:
        if self.window_ms == 60000:
            return "minute"
        seconds = self.window_ms / 1000.0
        return f"{seconds:g}s"
