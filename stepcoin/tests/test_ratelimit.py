from stepcoin.core.config import Settings
from stepcoin.core.ratelimit import RateLimitConfig, SlidingWindowLimiter, build_rate_limit_config


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _limiter(limit=2, window=60.0, enabled=True):
    clock = FakeClock()
    limiter = SlidingWindowLimiter(RateLimitConfig(enabled=enabled, limit=limit, window_seconds=window), time_fn=clock)
    return limiter, clock


def test_blocks_after_limit():
    limiter, _ = _limiter(limit=2)
    assert limiter.allow("user1")
    assert limiter.allow("user1")
    assert not limiter.allow("user1")
    assert limiter.remaining("user1") == 0


def test_keys_are_independent():
    limiter, _ = _limiter(limit=1)
    assert limiter.allow("user1")
    assert limiter.allow("user2")
    assert not limiter.allow("user1")


def test_window_slides():
    limiter, clock = _limiter(limit=2, window=60.0)
    limiter.allow("user1")
    clock.now += 30
    limiter.allow("user1")
    assert not limiter.allow("user1")
    assert limiter.retry_after("user1") == 30.0

    clock.now += 30.5
    assert limiter.allow("user1")
    assert not limiter.allow("user1")


def test_disabled_limiter_always_allows():
    limiter, _ = _limiter(limit=1, enabled=False)
    for _ in range(5):
        assert limiter.allow("user1")


def test_reset_clears_windows():
    limiter, _ = _limiter(limit=1)
    limiter.allow("user1")
    limiter.reset()
    assert limiter.allow("user1")


def test_config_from_settings():
    cfg = build_rate_limit_config(Settings(
        RATE_LIMIT_ENABLED=False,
        REDEMPTION_RATE_LIMIT_ATTEMPTS=3,
        REDEMPTION_RATE_LIMIT_WINDOW_SECONDS=10,
    ))
    assert cfg == RateLimitConfig(enabled=False, limit=3, window_seconds=10.0)
