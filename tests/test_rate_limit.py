import pytest

from errors import RateLimitedError
from rate_limit import SlidingWindowRateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_limit_is_per_key_and_window_slides():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(limit=2, window_secs=60, clock=clock)

    limiter.hit("user:1")
    clock.now += 10
    limiter.hit("user:1")
    limiter.hit("user:2")

    with pytest.raises(RateLimitedError) as excinfo:
        limiter.hit("user:1")
    assert excinfo.value.retry_after == 50.0

    clock.now += 50
    limiter.hit("user:1")


def test_rejected_hits_do_not_extend_the_window():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(limit=1, window_secs=10, clock=clock)
    limiter.hit("k")
    for _ in range(3):
        clock.now += 2
        with pytest.raises(RateLimitedError):
            limiter.hit("k")
    clock.now += 4
    limiter.hit("k")


def test_limit_must_be_positive():
    with pytest.raises(ValueError):
        SlidingWindowRateLimiter(limit=0, window_secs=10)


def test_expired_keys_are_dropped():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(limit=3, window_secs=10, clock=clock)
    for user_id in range(5):
        limiter.hit(f"user:{user_id}")
    assert limiter.tracked_keys() == 5

    clock.now += 10
    limiter.hit("user:99")
    assert limiter.tracked_keys() == 1
