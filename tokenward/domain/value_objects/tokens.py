"""Issued token value objects returned to callers of the core."""

from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from .token_claims import TokenClaims

if TYPE_CHECKING:
    from tokenward.domain.entities.identity import Identity


@dataclass(frozen=True)
class IssuedToken:
    """An encoded token together with the claims it carries."""

    token: str
    claims: TokenClaims

    @property
    def expires_at(self) -> datetime:
        return self.claims.expires_at

    def __str__(self) -> str:
        return self.token


@dataclass(frozen=True)
class TokenPair:
    """Access + refresh tokens minted together for one session family."""

    access: IssuedToken
    refresh: IssuedToken

    @property
    def access_token(self) -> str:
        return self.access.token

    @property
    def refresh_token(self) -> str:
        return self.refresh.token

    @property
    def family_id(self) -> str:
        return self.refresh.claims.family_id

    def as_dict(self, now: datetime) -> dict:
        return {
            "access_token": self.access.token,
            "refresh_token": self.refresh.token,
            "token_type": "bearer",
            "expires_in": int(self.access.claims.remaining(now)),
        }


@dataclass(frozen=True)
class AuthResult:
    """Outcome of register/login: the identity and its fresh session tokens."""

    identity: "Identity"
    tokens: TokenPair

    @property
    def access_token(self) -> str:
        return self.tokens.access_token

    @property
    def refresh_token(self) -> str:
        return self.tokens.refresh_token
