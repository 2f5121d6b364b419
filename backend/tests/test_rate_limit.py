from app.system.rate_limit import SlidingWindowLimiter


class _Clock:
    def __init__(self):
        self.now = 1_000.0

    def __call__(self):
        return self.now


def test_window_slides():
    clock = _Clock()
    limiter = SlidingWindowLimiter(max_hits=2, window_seconds=60, clock=clock)
    assert limiter.hit("bot:1.2.3.4") is True
    assert limiter.hit("bot:1.2.3.4") is True
    assert limiter.hit("bot:1.2.3.4") is False

    clock.now += 61
    assert limiter.hit("bot:1.2.3.4") is True


def test_expired_keys_are_evicted():
    clock = _Clock()
    limiter = SlidingWindowLimiter(max_hits=5, window_seconds=60, clock=clock)
    for i in range(100):
        limiter.hit(f"bot:10.0.0.{i}")
    assert limiter.tracked_keys() == 100

    clock.now += 120
    limiter.hit("bot:10.0.1.1")
    assert limiter.tracked_keys() == 1
