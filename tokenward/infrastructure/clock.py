"""Clock implementations.

``SystemClock`` is used in production. ``FrozenClock`` only moves when told
to, which makes expiry and revocation ordering reproducible in tests and
simulations.
"""

import time
from datetime import datetime, timedelta, timezone
from typing import Optional

from tokenward.domain.interfaces.clock import IClock


class SystemClock(IClock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def monotonic(self) -> float:
        return time.monotonic()


class FrozenClock(IClock):
    """A manually driven clock.

    Args:
        start: Initial instant; naive datetimes are taken as UTC.
    """

    def __init__(self, start: Optional[datetime] = None):
        self._now = _aware(start or datetime(2024, 1, 1, tzinfo=timezone.utc))
        self._monotonic = 0.0

    def now(self) -> datetime:
        return self._now

    def monotonic(self) -> float:
        return self._monotonic

    def advance(self, delta: timedelta = timedelta(seconds=1)) -> datetime:
        if delta < timedelta(0):
            raise ValueError("A clock cannot move backwards")
        self._now += delta
        self._monotonic += delta.total_seconds()
        return self._now

    def set(self, moment: datetime) -> datetime:
        moment = _aware(moment)
        if moment < self._now:
            raise ValueError("A clock cannot move backwards")
        return self.advance(moment - self._now)


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)
