"""Server-side records backing refresh rotation, revocation and one-shot tokens.

Records are immutable. A store "updates" a record by replacing it with a
copy produced by one of the transition methods below, which keeps every
state change explicit and single-step.
"""

from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Optional

from tokenward.domain.value_objects.token_claims import OneShotPurpose


@dataclass(frozen=True)
class RefreshTokenRecord:
    """One issued refresh token within a rotation chain (family).

    Invariant: at most one non-consumed record exists per ``family_id``.
    """

    token_id: str
    family_id: str
    subject_id: str
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False
    consumed_at: Optional[datetime] = None
    label: Optional[str] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def is_active(self, now: datetime) -> bool:
        return not self.consumed and not self.is_expired(now)

    def consume(self, now: datetime) -> "RefreshTokenRecord":
        return replace(self, consumed=True, consumed_at=now)

    def successor(self, token_id: str, now: datetime, expires_at: datetime) -> "RefreshTokenRecord":
        """The record that replaces this one in the same family on rotation."""
        return RefreshTokenRecord(
            token_id=token_id,
            family_id=self.family_id,
            subject_id=self.subject_id,
            issued_at=now,
            expires_at=expires_at,
            label=self.label,
        )


class RevocationScope(str, Enum):
    FAMILY = "family"
    SUBJECT = "subject"


@dataclass(frozen=True)
class RevocationEntry:
    """Marks a family, or every session of a subject, as revoked from ``revoked_at``."""

    scope: RevocationScope
    target_id: str
    revoked_at: datetime
    reason: str = "unspecified"

    def covers(self, issued_at: datetime) -> bool:
        """Whether a token issued at ``issued_at`` falls under this entry."""
        if self.scope is RevocationScope.FAMILY:
            return True
        return self.revoked_at >= issued_at


@dataclass(frozen=True)
class OneShotTokenRecord:
    """A single-use token for password reset or email verification."""

    token_id: str
    subject_id: str
    purpose: OneShotPurpose
    issued_at: datetime
    expires_at: datetime
    consumed: bool = False
    consumed_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return now > self.expires_at

    def consume(self, now: datetime) -> "OneShotTokenRecord":
        return replace(self, consumed=True, consumed_at=now)

    def release(self) -> "OneShotTokenRecord":
        return replace(self, consumed=False, consumed_at=None)
