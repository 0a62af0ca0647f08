"""
Unit tests for SlidingWindowRateLimiter.
"""
from vacuum_backend.utils.rate_limiter import SlidingWindowRateLimiter


def test_allows_up_to_limit_per_key(clock):
    limiter = SlidingWindowRateLimiter(max_events=3, window_seconds=3600, clock=clock)

    assert [limiter.allow("machine_offline:m-1") for _ in range(4)] == [True, True, True, False]
    # Other keys are independent
    assert limiter.allow("machine_offline:m-2") is True
    assert limiter.allow("maintenance_required:m-1") is True


def test_window_slides(clock):
    limiter = SlidingWindowRateLimiter(max_events=2, window_seconds=3600, clock=clock)
    limiter.allow("k")
    clock.advance(minutes=30)
    limiter.allow("k")

    assert limiter.allow("k") is False

    # First event leaves the window
    clock.advance(minutes=30)
    assert limiter.get_stats() == {"k": 1}
    assert limiter.allow("k") is True


def test_rejected_events_are_not_counted(clock):
    limiter = SlidingWindowRateLimiter(max_events=1, window_seconds=60, clock=clock)
    limiter.allow("k")
    for _ in range(5):
        limiter.allow("k")

    clock.advance(seconds=60)
    assert limiter.allow("k") is True


def test_stats_drop_keys_outside_window(clock):
    limiter = SlidingWindowRateLimiter(max_events=5, window_seconds=60, clock=clock)
    limiter.allow("a")
    limiter.allow("a")
    clock.advance(seconds=30)
    limiter.allow("b")

    assert limiter.get_stats() == {"a": 2, "b": 1}

    clock.advance(seconds=31)
    assert limiter.get_stats() == {"b": 1}
