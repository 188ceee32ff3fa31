"""Token identifier value object.

Refresh token ids, family ids, one-shot token ids and access token ids are all
drawn from the same cryptographically unpredictable generator.
"""

import base64
import secrets
import string
from dataclasses import dataclass
from typing import ClassVar


@dataclass(frozen=True)
class TokenId:
    """Value object for token and family identifiers (the ``jti``/``fid`` claims).

    256 bits of entropy rendered as 43 URL-safe base64 characters without padding.
    """

    value: str

    TOKEN_ID_LENGTH: ClassVar[int] = 43  # 32 bytes base64url, no padding
    VALID_CHARS: ClassVar[frozenset] = frozenset(string.ascii_letters + string.digits + "-_")

    def __post_init__(self):
        if not self.value:
            raise ValueError("Token ID cannot be empty")
        if len(self.value) != self.TOKEN_ID_LENGTH:
            raise ValueError(f"Token ID must be exactly {self.TOKEN_ID_LENGTH} characters")
        if not all(c in self.VALID_CHARS for c in self.value):
            raise ValueError("Token ID contains invalid characters")

    @classmethod
    def generate(cls) -> "TokenId":
        """Generate a new cryptographically secure token ID."""
        raw_bytes = secrets.token_bytes(32)
        return cls(base64.urlsafe_b64encode(raw_bytes).rstrip(b"=").decode("ascii"))

    @classmethod
    def is_valid(cls, value: str) -> bool:
        try:
            cls(value)
        except (TypeError, ValueError):
            return False
        return True

    def mask_for_logging(self) -> str:
        return mask(self.value)

    def __str__(self) -> str:
        return self.value


def new_token_id() -> str:
    """Default id generator used by issuers and ledgers."""
    return TokenId.generate().value


def mask(value: str | None) -> str | None:
    """Mask an identifier for safe logging, keeping a short prefix for correlation."""
    if value is None:
        return None
    if len(value) <= 8:
        return "*" * len(value)
    return value[:6] + "*" * 6
