"""Persistence ports for identities and token ledgers.

Every write that participates in a token state transition MUST be atomic
with respect to concurrent callers working on the same record. Adapters are
free to choose how (a lock, a transaction, an optimistic WATCH), but the
observable outcome must match the single-step semantics documented on each
method.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum, auto
from typing import List, Optional

from tokenward.domain.entities.identity import Identity, Role
from tokenward.domain.entities.records import (
    OneShotTokenRecord,
    RefreshTokenRecord,
    RevocationEntry,
)
from tokenward.domain.value_objects.token_claims import OneShotPurpose


class RotationResult(Enum):
    """Outcome of an atomic refresh rotation attempt."""

    OK = auto()
    NOT_FOUND = auto()
    EXPIRED = auto()
    REUSED = auto()


class RedemptionResult(Enum):
    """Outcome of an atomic one-shot claim attempt."""

    OK = auto()
    NOT_FOUND = auto()
    EXPIRED = auto()
    ALREADY_CONSUMED = auto()
    PURPOSE_MISMATCH = auto()


class ICredentialStore(ABC):
    """Owns identity records and password hashes."""

    @abstractmethod
    async def get_by_id(self, subject_id: str) -> Optional[Identity]:
        raise NotImplementedError

    @abstractmethod
    async def get_by_email(self, email: str) -> Optional[Identity]:
        """Case-insensitive lookup by email."""
        raise NotImplementedError

    @abstractmethod
    async def create(self, identity: Identity) -> Identity:
        """Persist a new identity.

        Raises:
            UserAlreadyExistsError: If the email is already registered.
        """
        raise NotImplementedError

    @abstractmethod
    async def update_password(self, subject_id: str, hashed_password: str) -> Identity:
        """Raises ``UserNotFoundError`` when the identity does not exist."""
        raise NotImplementedError

    @abstractmethod
    async def set_email_verified(self, subject_id: str, verified: bool = True) -> Identity:
        raise NotImplementedError

    @abstractmethod
    async def set_active(self, subject_id: str, active: bool) -> Identity:
        raise NotImplementedError

    @abstractmethod
    async def set_role(self, subject_id: str, role: Role) -> Identity:
        raise NotImplementedError


class IRefreshTokenStore(ABC):
    """Append-only refresh records plus one active-record pointer per family."""

    @abstractmethod
    async def add(self, record: RefreshTokenRecord) -> None:
        """Persist a brand-new record and make it the family's active record.

        Called before the encoded token is handed to the client.
        """
        raise NotImplementedError

    @abstractmethod
    async def get(self, token_id: str) -> Optional[RefreshTokenRecord]:
        raise NotImplementedError

    @abstractmethod
    async def rotate(
        self, old_token_id: str, successor: RefreshTokenRecord, now: datetime
    ) -> RotationResult:
        """Atomically consume ``old_token_id`` and install ``successor``.

        Checks, in order: existence (NOT_FOUND), expiry (EXPIRED), consumed
        flag (REUSED). On OK the old record is consumed, ``successor`` is
        stored, and the family's active pointer moves to it, all in one step.
        Of two concurrent calls presenting the same id, exactly one gets OK.
        """
        raise NotImplementedError

    @abstractmethod
    async def consume_family(self, family_id: str, now: datetime) -> int:
        """Consume the family's active record, if any. Returns records affected."""
        raise NotImplementedError

    @abstractmethod
    async def consume_all_for_subject(self, subject_id: str, now: datetime) -> int:
        """Consume the active record of every family of ``subject_id``."""
        raise NotImplementedError

    @abstractmethod
    async def list_active(self, subject_id: str, now: datetime) -> List[RefreshTokenRecord]:
        """Active (non-consumed, non-expired) records of a subject, one per family."""
        raise NotImplementedError


class IRevocationStore(ABC):
    """Holds revocation entries keyed by family id or subject id."""

    @abstractmethod
    async def add(self, entry: RevocationEntry, retain_until: datetime) -> None:
        """Store an entry. Subject entries keep only the latest ``revoked_at``."""
        raise NotImplementedError

    @abstractmethod
    async def get_family(self, family_id: str) -> Optional[RevocationEntry]:
        raise NotImplementedError

    @abstractmethod
    async def get_subject(self, subject_id: str) -> Optional[RevocationEntry]:
        raise NotImplementedError

    @abstractmethod
    async def prune(self, now: datetime) -> int:
        """Drop entries whose ``retain_until`` has passed. Returns entries removed."""
        raise NotImplementedError


class IOneShotTokenStore(ABC):
    """Redemption ledger for one-shot tokens."""

    @abstractmethod
    async def add(self, record: OneShotTokenRecord) -> None:
        """Persist a new record, consuming any outstanding record of the same
        subject and purpose."""
        raise NotImplementedError

    @abstractmethod
    async def get(self, token_id: str) -> Optional[OneShotTokenRecord]:
        raise NotImplementedError

    @abstractmethod
    async def claim(
        self, token_id: str, purpose: OneShotPurpose, now: datetime
    ) -> RedemptionResult:
        """Atomically mark the record consumed if it is redeemable.

        Checks, in order: existence, purpose, expiry, consumed flag.
        """
        raise NotImplementedError

    @abstractmethod
    async def release(self, token_id: str) -> None:
        """Undo a claim whose authorised action failed.

        A record that is no longer the outstanding token for its subject and
        purpose stays consumed.
        """
        raise NotImplementedError
