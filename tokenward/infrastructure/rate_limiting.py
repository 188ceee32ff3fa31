"""Rate-limit policies for login and one-shot token requests."""

from collections import defaultdict, deque
from typing import Deque, Dict, Tuple

from structlog import get_logger

from tokenward.core.exceptions import RateLimitExceededError
from tokenward.domain.interfaces.clock import IClock
from tokenward.domain.interfaces.services import IRateLimiter

logger = get_logger(__name__)


class NoopRateLimiter(IRateLimiter):
    async def hit(self, action: str, key: str) -> None:
        return None


class SlidingWindowRateLimiter(IRateLimiter):
    """Allows ``limit`` attempts per ``(action, key)`` within ``window_seconds``.

    Time is measured with the clock's monotonic source. Keys whose attempts
    have all left the window are evicted once per window, so memory tracks
    recent callers only.
    """

    def __init__(self, clock: IClock, limit: int = 5, window_seconds: float = 60.0):
        self.clock = clock
        self.limit = limit
        self.window_seconds = window_seconds
        self._attempts: Dict[Tuple[str, str], Deque[float]] = defaultdict(deque)
        self._last_sweep = clock.monotonic()

    @property
    def tracked_keys(self) -> int:
        return len(self._attempts)

    async def hit(self, action: str, key: str) -> None:
        now = self.clock.monotonic()
        if now - self._last_sweep >= self.window_seconds:
            self._sweep(now)
        attempts = self._attempts[(action, key)]
        self._trim(attempts, now)
        if len(attempts) >= self.limit:
            logger.warning("Rate limit exceeded", action=action, attempts=len(attempts))
            raise RateLimitExceededError()
        attempts.append(now)

    async def reset(self, action: str, key: str) -> None:
        self._attempts.pop((action, key), None)

    def _trim(self, attempts: Deque[float], now: float) -> None:
        while attempts and now - attempts[0] >= self.window_seconds:
            attempts.popleft()

    def _sweep(self, now: float) -> None:
        for bucket in list(self._attempts):
            attempts = self._attempts[bucket]
            self._trim(attempts, now)
            if not attempts:
                del self._attempts[bucket]
        self._last_sweep = now
        logger.debug("Rate limit buckets swept", remaining=len(self._attempts))
