from .identity import Identity, Role, normalize_email
from .records import (
    OneShotTokenRecord,
    RefreshTokenRecord,
    RevocationEntry,
    RevocationScope,
)

__all__ = [
    "Identity",
    "OneShotTokenRecord",
    "RefreshTokenRecord",
    "RevocationEntry",
    "RevocationScope",
    "Role",
    "normalize_email",
]
