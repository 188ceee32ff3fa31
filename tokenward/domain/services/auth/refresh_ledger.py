"""Refresh token ledger: single-use rotation with replay detection.

Per family the ledger walks the states Active -> Rotated -> ... and, when a
consumed record is presented again, Compromised. A refresh token can be
redeemed exactly once; a second redemption revokes the whole family.
"""

from datetime import timedelta
from typing import Callable, List, Optional

from structlog import get_logger

from tokenward.core.exceptions import (
    TokenExpiredError,
    TokenNotFoundError,
    TokenReuseDetectedError,
)
from tokenward.domain.entities.records import RefreshTokenRecord
from tokenward.domain.interfaces.clock import IClock
from tokenward.domain.interfaces.stores import IRefreshTokenStore, RotationResult
from tokenward.domain.services.auth.revocation import RevocationRegistry
from tokenward.domain.value_objects.token_id import mask, new_token_id

logger = get_logger(__name__)

DEFAULT_REFRESH_TTL = timedelta(days=7)


class RefreshTokenLedger:
    """Persists refresh records and enforces single-use rotation.

    Attributes:
        store (IRefreshTokenStore): Atomic record store.
        registry (RevocationRegistry): Receives family/subject revocations.
        clock (IClock): Time source for expiry checks.
        refresh_ttl (timedelta): Lifetime of each refresh token.

    """

    def __init__(
        self,
        store: IRefreshTokenStore,
        registry: RevocationRegistry,
        clock: IClock,
        refresh_ttl: timedelta = DEFAULT_REFRESH_TTL,
        id_generator: Callable[[], str] = new_token_id,
    ):
        self.store = store
        self.registry = registry
        self.clock = clock
        self.refresh_ttl = refresh_ttl
        self._new_id = id_generator

    async def register(
        self,
        subject_id: str,
        family_id: Optional[str] = None,
        label: Optional[str] = None,
    ) -> RefreshTokenRecord:
        """Create the first record of a new family, or a fresh record for ``family_id``."""
        now = self.clock.now()
        record = RefreshTokenRecord(
            token_id=self._new_id(),
            family_id=family_id or self._new_id(),
            subject_id=subject_id,
            issued_at=now,
            expires_at=now + self.refresh_ttl,
            label=label,
        )
        await self.store.add(record)
        logger.debug(
            "Refresh record registered",
            subject_id=subject_id,
            family_id=mask(record.family_id),
            jti=mask(record.token_id),
        )
        return record

    async def get(self, token_id: str) -> Optional[RefreshTokenRecord]:
        return await self.store.get(token_id)

    async def rotate(self, presented_token_id: str) -> RefreshTokenRecord:
        """Consume the presented record and return its successor in the same family.

        Raises:
            TokenNotFoundError: No record exists for the presented id.
            TokenExpiredError: The record has expired; it is not treated as reused.
            TokenReuseDetectedError: The record was already consumed. The whole
                family has been revoked by the time this is raised.
        """
        now = self.clock.now()
        current = await self.store.get(presented_token_id)
        if current is None:
            logger.warning("Refresh attempted with unknown token", jti=mask(presented_token_id))
            raise TokenNotFoundError()

        successor = current.successor(self._new_id(), now, now + self.refresh_ttl)
        result = await self.store.rotate(presented_token_id, successor, now)

        if result is RotationResult.OK:
            logger.info(
                "Refresh token rotated",
                subject_id=current.subject_id,
                family_id=mask(current.family_id),
                old_jti=mask(presented_token_id),
                new_jti=mask(successor.token_id),
            )
            return successor
        if result is RotationResult.NOT_FOUND:
            raise TokenNotFoundError()
        if result is RotationResult.EXPIRED:
            logger.info("Expired refresh token presented", jti=mask(presented_token_id))
            raise TokenExpiredError()

        logger.warning(
            "Refresh token reuse detected, revoking family",
            subject_id=current.subject_id,
            family_id=mask(current.family_id),
            jti=mask(presented_token_id),
        )
        await self.revoke_family(current.family_id, reason="reuse_detected")
        raise TokenReuseDetectedError(family_id=current.family_id)

    async def revoke_family(self, family_id: str, reason: str = "logout") -> None:
        """Revoke a family and fail-close its still-active record."""
        await self.registry.revoke_family(family_id, reason=reason)
        await self.store.consume_family(family_id, self.clock.now())

    async def revoke_all_for_subject(self, subject_id: str, reason: str = "revoke_all") -> int:
        """Revoke every session of a subject. Returns the number of records consumed."""
        await self.registry.revoke_subject(subject_id, reason=reason)
        return await self.store.consume_all_for_subject(subject_id, self.clock.now())

    async def list_active_sessions(self, subject_id: str) -> List[RefreshTokenRecord]:
        return await self.store.list_active(subject_id, self.clock.now())
