from datetime import datetime, timedelta
from typing import Optional

from structlog import get_logger

from tokenward.domain.entities.records import RevocationEntry, RevocationScope
from tokenward.domain.interfaces.clock import IClock
from tokenward.domain.interfaces.stores import IRevocationStore
from tokenward.domain.value_objects.token_id import mask

logger = get_logger(__name__)


class RevocationRegistry:
    """Tracks revoked session families and subjects.

    A token is revoked when an entry exists for its family, or when its
    subject has an entry whose ``revoked_at`` is at or after the token's
    ``issued_at``. The latter lets "revoke all sessions" kill everything
    issued before it without touching sessions started afterwards.

    Entries are retained for ``retention`` (the longest token lifetime); past
    that, every token they could cover has expired on its own.
    """

    def __init__(self, store: IRevocationStore, clock: IClock, retention: timedelta):
        self.store = store
        self.clock = clock
        self.retention = retention

    async def revoke_family(
        self, family_id: str, at: Optional[datetime] = None, reason: str = "logout"
    ) -> RevocationEntry:
        entry = RevocationEntry(
            scope=RevocationScope.FAMILY,
            target_id=family_id,
            revoked_at=at or self.clock.now(),
            reason=reason,
        )
        await self.store.add(entry, retain_until=entry.revoked_at + self.retention)
        logger.info("Session family revoked", family_id=mask(family_id), reason=reason)
        return entry

    async def revoke_subject(
        self, subject_id: str, at: Optional[datetime] = None, reason: str = "revoke_all"
    ) -> RevocationEntry:
        entry = RevocationEntry(
            scope=RevocationScope.SUBJECT,
            target_id=subject_id,
            revoked_at=at or self.clock.now(),
            reason=reason,
        )
        await self.store.add(entry, retain_until=entry.revoked_at + self.retention)
        logger.info("All sessions of subject revoked", subject_id=subject_id, reason=reason)
        return entry

    async def revoke(
        self,
        *,
        family_id: Optional[str] = None,
        subject_id: Optional[str] = None,
        at: Optional[datetime] = None,
        reason: str = "unspecified",
    ) -> RevocationEntry:
        """Revoke by family id or by subject id; exactly one must be given."""
        if (family_id is None) == (subject_id is None):
            raise ValueError("Pass exactly one of family_id or subject_id")
        if family_id is not None:
            return await self.revoke_family(family_id, at=at, reason=reason)
        return await self.revoke_subject(subject_id, at=at, reason=reason)

    async def is_revoked(
        self, family_id: Optional[str], subject_id: str, issued_at: datetime
    ) -> bool:
        if family_id is not None and await self.store.get_family(family_id) is not None:
            return True
        entry = await self.store.get_subject(subject_id)
        return entry is not None and entry.covers(issued_at)

    async def prune(self, now: Optional[datetime] = None) -> int:
        removed = await self.store.prune(now or self.clock.now())
        if removed:
            logger.info("Expired revocation entries pruned", count=removed)
        return removed
