"""In-process account lockout.

Failures are counted per key (email + client address). State lives in memory
only, so it is per worker and resets on restart.
"""
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Callable

MAX_FAILURES = 5
WINDOW_SECONDS = 15 * 60
LOCK_SECONDS = 15 * 60


class LoginGuard:
    def __init__(
        self,
        max_failures: int = MAX_FAILURES,
        window_seconds: int = WINDOW_SECONDS,
        lock_seconds: int = LOCK_SECONDS,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.max_failures = max_failures
        self.window = timedelta(seconds=window_seconds)
        self.lock = timedelta(seconds=lock_seconds)
        self._clock = clock
        self._failures: dict[str, deque] = defaultdict(deque)
        self._locked_until: dict[str, datetime] = {}

    def _prune(self, key: str, now: datetime) -> None:
        q = self._failures[key]
        cutoff = now - self.window
        while q and q[0] < cutoff:
            q.popleft()

    def locked_until(self, key: str) -> datetime | None:
        until = self._locked_until.get(key)
        if not until:
            return None
        if until <= self._clock():
            self._locked_until.pop(key, None)
            return None
        return until

    def register_failure(self, key: str) -> datetime | None:
        """Record a failed attempt; returns the lock expiry once the key gets locked."""
        now = self._clock()
        self._prune(key, now)
        q = self._failures[key]
        q.append(now)
        if len(q) >= self.max_failures:
            until = now + self.lock
            self._locked_until[key] = until
            q.clear()
            return until
        return None

    def remaining_attempts(self, key: str) -> int:
        self._prune(key, self._clock())
        return max(0, self.max_failures - len(self._failures[key]))

    def clear(self, key: str) -> None:
        self._failures.pop(key, None)
        self._locked_until.pop(key, None)

    def reset(self) -> None:
        self._failures.clear()
        self._locked_until.clear()


login_guard = LoginGuard()


def lockout_key(email: str, client_ip: str | None) -> str:
    return f"{email.strip().lower()}:{client_ip or 'unknown'}"
