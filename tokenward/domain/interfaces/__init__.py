"""Ports (abstract collaborators) of the authentication core.

Concrete adapters live under ``tokenward.infrastructure``; domain services
depend only on these abstractions.
"""

from .clock import IClock
from .services import INotifier, IPasswordHasher, IRateLimiter
from .stores import (
    ICredentialStore,
    IOneShotTokenStore,
    IRefreshTokenStore,
    IRevocationStore,
    RedemptionResult,
    RotationResult,
)

__all__ = [
    "IClock",
    "ICredentialStore",
    "INotifier",
    "IOneShotTokenStore",
    "IPasswordHasher",
    "IRateLimiter",
    "IRefreshTokenStore",
    "IRevocationStore",
    "RedemptionResult",
    "RotationResult",
]
