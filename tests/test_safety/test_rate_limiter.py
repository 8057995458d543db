import pytest

from shellpilot.exceptions import ConfigurationError, RateLimitError
from shellpilot.safety import RateLimiter


class FakeClock:
    def __init__(self, start: float = 100.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


def test_admits_up_to_max_then_rejects():
    clock = FakeClock()
    limiter = RateLimiter(3, 1000, clock=clock)

    assert [limiter.can_execute("ls").allowed for _ in range(3)] == [True, True, True]

    rejected = limiter.can_execute("ls")
    assert rejected.allowed is False
    assert rejected.retry_after is not None and rejected.retry_after >= 1
    assert "Rate limit exceeded" in (rejected.reason or "")


def test_admits_again_after_window_elapses():
    clock = FakeClock()
    limiter = RateLimiter(3, 1000, clock=clock)
    for _ in range(3):
        limiter.can_execute("ls")
    assert limiter.can_execute("ls").allowed is False

    clock.advance_ms(1000)

    assert limiter.can_execute("ls").allowed is True


def test_reset_clears_window():
    clock = FakeClock()
    limiter = RateLimiter(3, 1000, clock=clock)
    for _ in range(3):
        limiter.can_execute("ls")

    limiter.reset()

    assert limiter.can_execute("ls").allowed is True


def test_retry_after_is_ceiled_seconds_until_oldest_expires():
    clock = FakeClock()
    limiter = RateLimiter(2, 10_000, clock=clock)
    limiter.can_execute()
    clock.advance_ms(2500)
    limiter.can_execute()

    decision = limiter.can_execute()

    # Oldest entry expires in 7.5s.
    assert decision.retry_after == 8


def test_rejected_calls_are_not_recorded():
    clock = FakeClock()
    limiter = RateLimiter(1, 1000, clock=clock)
    limiter.can_execute()
    for _ in range(5):
        assert limiter.can_execute().allowed is False

    clock.advance_ms(1000)

    assert limiter.stats().in_window == 0
    assert limiter.can_execute().allowed is True


def test_check_raises_rate_limit_error():
    clock = FakeClock()
    limiter = RateLimiter(1, 60000, clock=clock)
    limiter.check("ls")

    with pytest.raises(RateLimitError) as exc_info:
        limiter.check("ls")

    assert exc_info.value.retry_after == 60
    assert "1 commands per minute" in str(exc_info.value)
    assert "Retry after 60s" in str(exc_info.value)


def test_stats_reports_utilization():
    clock = FakeClock()
    limiter = RateLimiter(4, 1000, clock=clock)
    limiter.can_execute()
    limiter.can_execute()

    stats = limiter.stats()

    assert stats.in_window == 2
    assert stats.max_count == 4
    assert stats.utilization == pytest.approx(0.5)


@pytest.mark.parametrize("max_count,window_ms", [(0, 1000), (3, 0), (-1, 1000)])
def test_invalid_configuration_rejected(max_count, window_ms):
    with pytest.raises(ConfigurationError):
        RateLimiter(max_count, window_ms)
