"""Identity repository backed by SQLModel/SQLAlchemy async sessions.

Implements ``ICredentialStore`` on top of the ``identities`` table. Email
uniqueness is enforced by the database; a violated constraint surfaces as
``UserAlreadyExistsError``.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog import get_logger

from tokenward.core.exceptions import UserAlreadyExistsError, UserNotFoundError
from tokenward.domain.entities.identity import Identity, Role, normalize_email
from tokenward.domain.interfaces.clock import IClock
from tokenward.domain.interfaces.stores import ICredentialStore

logger = get_logger(__name__)


def _mask_email(email: str) -> str:
    return email[:3] + "***" if len(email) > 3 else "***"


class IdentityRepository(ICredentialStore):
    """SQLAlchemy implementation of the credential store.

    Args:
        db_session: Async session the repository commits through.
        clock: Source of ``updated_at``; wall clock when omitted.
    """

    def __init__(self, db_session: AsyncSession, clock: Optional[IClock] = None):
        self.db_session = db_session
        self.clock = clock

    async def get_by_id(self, subject_id: str) -> Optional[Identity]:
        result = await self.db_session.execute(select(Identity).where(Identity.id == subject_id))
        identity = result.scalars().first()
        logger.debug("Identity lookup by id completed", subject_id=subject_id, found=identity is not None)
        return identity

    async def get_by_email(self, email: str) -> Optional[Identity]:
        normalized = normalize_email(email)
        result = await self.db_session.execute(select(Identity).where(Identity.email == normalized))
        identity = result.scalars().first()
        logger.debug(
            "Identity lookup by email completed",
            email=_mask_email(normalized),
            found=identity is not None,
        )
        return identity

    async def create(self, identity: Identity) -> Identity:
        identity.email = normalize_email(identity.email)
        try:
            self.db_session.add(identity)
            await self.db_session.commit()
            await self.db_session.refresh(identity)
        except IntegrityError as exc:
            await self.db_session.rollback()
            logger.info("Identity creation rejected, email taken", email=_mask_email(identity.email))
            raise UserAlreadyExistsError() from exc
        except Exception as e:
            await self.db_session.rollback()
            logger.error("Error creating identity", error=str(e), error_type=type(e).__name__)
            raise
        logger.info("Identity created", subject_id=identity.id, email=_mask_email(identity.email))
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
        identity = await self.get_by_id(subject_id)
        if identity is None:
            raise UserNotFoundError()
        for name, value in changes.items():
            setattr(identity, name, value)
        identity.updated_at = self.clock.now() if self.clock else datetime.now(timezone.utc)
        try:
            await self.db_session.commit()
            await self.db_session.refresh(identity)
        except Exception as e:
            await self.db_session.rollback()
            logger.error(
                "Error updating identity",
                subject_id=subject_id,
                fields=sorted(changes),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise
        logger.debug("Identity updated", subject_id=subject_id, fields=sorted(changes))
        return identity
