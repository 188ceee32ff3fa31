"""Token claims value object and its wire mapping."""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping, Optional


class TokenKind(str, Enum):
    """What a token may be used for."""

    ACCESS = "access"
    REFRESH = "refresh"
    RESET = "reset"
    VERIFY = "verify"


class OneShotPurpose(str, Enum):
    """Purposes a one-shot token can be issued for."""

    RESET = "reset"
    VERIFY = "verify"

    @property
    def token_kind(self) -> TokenKind:
        return TokenKind(self.value)


def to_timestamp(moment: datetime) -> float:
    """Convert an aware datetime to a POSIX timestamp keeping microseconds."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return round(moment.timestamp(), 6)


def from_timestamp(value: float) -> datetime:
    return datetime.fromtimestamp(float(value), tz=timezone.utc)


@dataclass(frozen=True)
class TokenClaims:
    """The verified content of a token.

    Attributes:
        subject_id: Identity the token speaks for.
        role: The identity's role at issuance time.
        kind: Token kind.
        token_id: Unique id of this token (``jti``).
        issued_at: Issuance instant (UTC).
        expires_at: Expiry instant (UTC).
        family_id: Session family; set on refresh tokens and on the access
            tokens minted alongside them.
    """

    subject_id: str
    role: str
    kind: TokenKind
    token_id: str
    issued_at: datetime
    expires_at: datetime
    family_id: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def remaining(self, now: datetime) -> float:
        """Seconds until expiry, never negative."""
        return max(0.0, (self.expires_at - now).total_seconds())

    def to_payload(self, issuer: str, audience: str) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "sub": self.subject_id,
            "role": self.role,
            "type": self.kind.value,
            "jti": self.token_id,
            "iat": to_timestamp(self.issued_at),
            "exp": to_timestamp(self.expires_at),
            "iss": issuer,
            "aud": audience,
        }
        if self.family_id is not None:
            payload["fid"] = self.family_id
        return payload

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "TokenClaims":
        """Build claims from a signature-verified payload.

        Raises:
            ValueError: If a claim is missing or has the wrong type.
        """
        try:
            subject_id = payload["sub"]
            role = payload["role"]
            kind = TokenKind(payload["type"])
            token_id = payload["jti"]
            issued_at = from_timestamp(payload["iat"])
            expires_at = from_timestamp(payload["exp"])
        except (KeyError, TypeError, ValueError, OverflowError) as exc:
            raise ValueError(f"Invalid token claims: {exc}") from exc

        family_id = payload.get("fid")
        for name, value in (("sub", subject_id), ("jti", token_id)):
            if not isinstance(value, str) or not value:
                raise ValueError(f"Claim '{name}' must be a non-empty string")
        if not isinstance(role, str):
            raise ValueError("Claim 'role' must be a string")
        if family_id is not None and not isinstance(family_id, str):
            raise ValueError("Claim 'fid' must be a string")
        if kind is TokenKind.REFRESH and not family_id:
            raise ValueError("Refresh tokens must carry a family id")
        if expires_at <= issued_at:
            raise ValueError("Token expires before it was issued")

        return cls(
            subject_id=subject_id,
            role=role,
            kind=kind,
            token_id=token_id,
            issued_at=issued_at,
            expires_at=expires_at,
            family_id=family_id,
        )
