from abc import ABC, abstractmethod
from datetime import datetime


class IClock(ABC):
    """Source of time for every expiry and revocation decision."""

    @abstractmethod
    def now(self) -> datetime:
        """Current wall-clock time as an aware UTC datetime."""
        raise NotImplementedError

    @abstractmethod
    def monotonic(self) -> float:
        """Monotonic seconds, for measuring durations only."""
        raise NotImplementedError
