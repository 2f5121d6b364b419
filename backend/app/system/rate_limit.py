"""Sliding-window limiter held in process memory (per worker, reset on restart)."""
import time
from collections import deque

PUBLIC_CHAT_WINDOW_SECONDS = 60 * 60
PUBLIC_CHAT_MAX_PER_WINDOW = 50


class SlidingWindowLimiter:
    def __init__(self, max_hits: int, window_seconds: int, clock=time.time):
        self.max_hits = max_hits
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque] = {}
        self._last_sweep = clock()

    def _prune(self, q: deque, now: float) -> None:
        cutoff = now - self.window_seconds
        while q and q[0] < cutoff:
            q.popleft()

    def _sweep(self, now: float) -> None:
        # drop keys whose whole window has passed
        for key in list(self._hits):
            q = self._hits[key]
            self._prune(q, now)
            if not q:
                del self._hits[key]
        self._last_sweep = now

    def hit(self, key: str) -> bool:
        """Count one hit for ``key``; False once the window is full."""
        now = self._clock()
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)
        q = self._hits.setdefault(key, deque())
        self._prune(q, now)
        if len(q) >= self.max_hits:
            return False
        q.append(now)
        return True

    def tracked_keys(self) -> int:
        return len(self._hits)

    def reset(self) -> None:
        self._hits.clear()
        self._last_sweep = self._clock()


public_chat_limiter = SlidingWindowLimiter(PUBLIC_CHAT_MAX_PER_WINDOW, PUBLIC_CHAT_WINDOW_SECONDS)


def check_public_chat_rate(*, bot_id: str, client_ip: str | None) -> tuple[bool, str | None]:
    # session ids come from the visitor, so the window is held per client IP
    if not public_chat_limiter.hit(f"{bot_id}:{client_ip or 'anonymous'}"):
        return False, "Too many messages. Please try again later."
    return True, None
