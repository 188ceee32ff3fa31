"""In-process store adapters.

Each store serialises its state transitions behind an ``asyncio.Lock`` and
never awaits between reading a record and writing its replacement, so every
documented operation is a single atomic step for coroutines sharing the
event loop. State lives in the process: use the Redis adapters when several
workers must share a ledger.
"""

import asyncio
from collections import defaultdict
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from structlog import get_logger

from tokenward.core.exceptions import UserAlreadyExistsError, UserNotFoundError
from tokenward.domain.entities.identity import Identity, Role, normalize_email
from tokenward.domain.entities.records import (
    OneShotTokenRecord,
    RefreshTokenRecord,
    RevocationEntry,
    RevocationScope,
)
from tokenward.domain.interfaces.clock import IClock
from tokenward.domain.interfaces.stores import (
    ICredentialStore,
    IOneShotTokenStore,
    IRefreshTokenStore,
    IRevocationStore,
    RedemptionResult,
    RotationResult,
)
from tokenward.domain.value_objects.token_claims import OneShotPurpose

logger = get_logger(__name__)


class InMemoryCredentialStore(ICredentialStore):
    """Identities keyed by id with a unique email index."""

    def __init__(self, clock: Optional[IClock] = None):
        self._clock = clock
        self._by_id: Dict[str, Identity] = {}
        self._id_by_email: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get_by_id(self, subject_id: str) -> Optional[Identity]:
        return self._by_id.get(subject_id)

    async def get_by_email(self, email: str) -> Optional[Identity]:
        subject_id = self._id_by_email.get(normalize_email(email))
        return self._by_id.get(subject_id) if subject_id else None

    async def create(self, identity: Identity) -> Identity:
        email = normalize_email(identity.email)
        async with self._lock:
            if email in self._id_by_email or identity.id in self._by_id:
                raise UserAlreadyExistsError()
            identity.email = email
            self._by_id[identity.id] = identity
            self._id_by_email[email] = identity.id
        logger.debug("Identity stored", subject_id=identity.id)
        return identity

    async def update_password(self, subject_id: str, hashed_password: str) -> Identity:
        return await self._update(subject_id, hashed_password=hashed_password)

    async def set_email_verified(self, subject_id: str, verified: bool = True) -> Identity:
        return await self._update(subject_id, email_verified=verified)

    async def set_active(self, subject_id: str, active: bool) -> Identity:
        return await self._update(subject_id, is_active=active)

    async def set_role(self, subject_id: str, role: Role) -> Identity:
        return await self._update(subject_id, role=role)

    async def _update(self, subject_id: str, **changes) -> Identity:
        async with self._lock:
            identity = self._by_id.get(subject_id)
            if identity is None:
                raise UserNotFoundError()
            for name, value in changes.items():
                setattr(identity, name, value)
            identity.updated_at = self._now()
        return identity

    def _now(self) -> datetime:
        return self._clock.now() if self._clock else datetime.now(timezone.utc)


class InMemoryRefreshTokenStore(IRefreshTokenStore):
    """Refresh records plus the active-record pointer of every family."""

    def __init__(self):
        self._records: Dict[str, RefreshTokenRecord] = {}
        self._active: Dict[str, str] = {}
        self._families: Dict[str, Set[str]] = defaultdict(set)
        self._lock = asyncio.Lock()

    async def add(self, record: RefreshTokenRecord) -> None:
        async with self._lock:
            previous = self._active.get(record.family_id)
            if previous is not None:
                # A family never has two live records.
                self._records[previous] = self._records[previous].consume(record.issued_at)
            self._records[record.token_id] = record
            self._active[record.family_id] = record.token_id
            self._families[record.subject_id].add(record.family_id)

    async def get(self, token_id: str) -> Optional[RefreshTokenRecord]:
        return self._records.get(token_id)

    async def rotate(
        self, old_token_id: str, successor: RefreshTokenRecord, now: datetime
    ) -> RotationResult:
        async with self._lock:
            current = self._records.get(old_token_id)
            if current is None:
                return RotationResult.NOT_FOUND
            if current.is_expired(now):
                return RotationResult.EXPIRED
            if current.consumed or self._active.get(current.family_id) != old_token_id:
                return RotationResult.REUSED

            self._records[old_token_id] = current.consume(now)
            self._records[successor.token_id] = successor
            self._active[current.family_id] = successor.token_id
            return RotationResult.OK

    async def consume_family(self, family_id: str, now: datetime) -> int:
        async with self._lock:
            return self._consume_family(family_id, now)

    async def consume_all_for_subject(self, subject_id: str, now: datetime) -> int:
        async with self._lock:
            return sum(self._consume_family(family_id, now) for family_id in self._families.get(subject_id, ()))

    async def list_active(self, subject_id: str, now: datetime) -> List[RefreshTokenRecord]:
        records = []
        for family_id in sorted(self._families.get(subject_id, ())):
            token_id = self._active.get(family_id)
            record = self._records.get(token_id) if token_id else None
            if record is not None and record.is_active(now):
                records.append(record)
        return sorted(records, key=lambda record: record.issued_at)

    def _consume_family(self, family_id: str, now: datetime) -> int:
        token_id = self._active.pop(family_id, None)
        if token_id is None:
            return 0
        record = self._records[token_id]
        if record.consumed:
            return 0
        self._records[token_id] = record.consume(now)
        return 1


class InMemoryRevocationStore(IRevocationStore):
    def __init__(self):
        self._families: Dict[str, Tuple[RevocationEntry, datetime]] = {}
        self._subjects: Dict[str, Tuple[RevocationEntry, datetime]] = {}
        self._lock = asyncio.Lock()

    async def add(self, entry: RevocationEntry, retain_until: datetime) -> None:
        async with self._lock:
            if entry.scope is RevocationScope.FAMILY:
                self._families[entry.target_id] = (entry, retain_until)
                return
            existing = self._subjects.get(entry.target_id)
            if existing is None or existing[0].revoked_at <= entry.revoked_at:
                self._subjects[entry.target_id] = (entry, retain_until)

    async def get_family(self, family_id: str) -> Optional[RevocationEntry]:
        found = self._families.get(family_id)
        return found[0] if found else None

    async def get_subject(self, subject_id: str) -> Optional[RevocationEntry]:
        found = self._subjects.get(subject_id)
        return found[0] if found else None

    async def prune(self, now: datetime) -> int:
        removed = 0
        async with self._lock:
            for entries in (self._families, self._subjects):
                stale = [key for key, (_, retain_until) in entries.items() if retain_until < now]
                for key in stale:
                    del entries[key]
                removed += len(stale)
        return removed


class InMemoryOneShotTokenStore(IOneShotTokenStore):
    def __init__(self):
        self._records: Dict[str, OneShotTokenRecord] = {}
        self._outstanding: Dict[Tuple[str, OneShotPurpose], str] = {}
        self._lock = asyncio.Lock()

    async def add(self, record: OneShotTokenRecord) -> None:
        key = (record.subject_id, record.purpose)
        async with self._lock:
            previous = self._outstanding.get(key)
            if previous is not None and not self._records[previous].consumed:
                self._records[previous] = self._records[previous].consume(record.issued_at)
            self._records[record.token_id] = record
            self._outstanding[key] = record.token_id

    async def get(self, token_id: str) -> Optional[OneShotTokenRecord]:
        return self._records.get(token_id)

    async def claim(
        self, token_id: str, purpose: OneShotPurpose, now: datetime
    ) -> RedemptionResult:
        async with self._lock:
            record = self._records.get(token_id)
            if record is None:
                return RedemptionResult.NOT_FOUND
            if record.purpose is not purpose:
                return RedemptionResult.PURPOSE_MISMATCH
            if record.is_expired(now):
                return RedemptionResult.EXPIRED
            if record.consumed:
                return RedemptionResult.ALREADY_CONSUMED
            self._records[token_id] = record.consume(now)
            return RedemptionResult.OK

    async def release(self, token_id: str) -> None:
        async with self._lock:
            record = self._records.get(token_id)
            if record is None or not record.consumed:
                return
            # A token superseded while its action ran stays consumed.
            if self._outstanding.get((record.subject_id, record.purpose)) == token_id:
                self._records[token_id] = record.release()
