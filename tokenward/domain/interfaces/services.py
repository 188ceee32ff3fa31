"""Interfaces of external capabilities the core calls into."""

from abc import ABC, abstractmethod

from tokenward.domain.entities.identity import Identity
from tokenward.domain.value_objects.tokens import IssuedToken


class IPasswordHasher(ABC):
    """Pluggable password hashing capability."""

    @abstractmethod
    def hash(self, password: str) -> str:
        raise NotImplementedError

    @abstractmethod
    def verify(self, password: str, hashed_password: str) -> bool:
        """Constant-time check of ``password`` against ``hashed_password``."""
        raise NotImplementedError


class INotifier(ABC):
    """Delivers reset and verification tokens to the identity's owner."""

    @abstractmethod
    async def send_password_reset(self, identity: Identity, token: IssuedToken) -> None:
        raise NotImplementedError

    @abstractmethod
    async def send_email_verification(self, identity: Identity, token: IssuedToken) -> None:
        raise NotImplementedError


class IRateLimiter(ABC):
    """External rate-limit policy.

    ``hit`` records one attempt of ``action`` for ``key`` and raises
    ``RateLimitExceededError`` when the policy rejects it.
    """

    @abstractmethod
    async def hit(self, action: str, key: str) -> None:
        raise NotImplementedError

    async def reset(self, action: str, key: str) -> None:
        """Forget recorded attempts, e.g. after a successful login."""
        return None
