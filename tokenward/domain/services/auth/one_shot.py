"""One-shot tokens for password reset and email verification.

A one-shot token is a signed token whose id is backed by a redemption
record. Redemption claims the record atomically, runs the action the token
authorises, and releases the claim again if that action fails, so a token is
never spent without its effect and an effect never applies twice.
"""

import asyncio
from datetime import timedelta
from typing import Awaitable, Callable, Dict, Optional

from structlog import get_logger

from tokenward.core.exceptions import (
    AlreadyConsumedError,
    PurposeMismatchError,
    TokenExpiredError,
    TokenNotFoundError,
)
from tokenward.domain.entities.records import OneShotTokenRecord
from tokenward.domain.interfaces.clock import IClock
from tokenward.domain.interfaces.stores import IOneShotTokenStore, RedemptionResult
from tokenward.domain.services.auth.token_codec import TokenCodec
from tokenward.domain.value_objects.token_claims import OneShotPurpose, TokenClaims
from tokenward.domain.value_objects.token_id import mask, new_token_id
from tokenward.domain.value_objects.tokens import IssuedToken

logger = get_logger(__name__)

RedemptionAction = Callable[[str], Awaitable[None]]

DEFAULT_TTLS: Dict[OneShotPurpose, timedelta] = {
    OneShotPurpose.RESET: timedelta(minutes=30),
    OneShotPurpose.VERIFY: timedelta(hours=24),
}

_FAILURES = {
    RedemptionResult.NOT_FOUND: TokenNotFoundError,
    RedemptionResult.EXPIRED: TokenExpiredError,
    RedemptionResult.ALREADY_CONSUMED: AlreadyConsumedError,
    RedemptionResult.PURPOSE_MISMATCH: PurposeMismatchError,
}


class OneShotTokenManager:
    """Issues and redeems single-use, time-bound tokens."""

    def __init__(
        self,
        codec: TokenCodec,
        clock: IClock,
        store: IOneShotTokenStore,
        ttls: Optional[Dict[OneShotPurpose, timedelta]] = None,
        id_generator: Callable[[], str] = new_token_id,
    ):
        self.codec = codec
        self.clock = clock
        self.store = store
        self.ttls = {**DEFAULT_TTLS, **(ttls or {})}
        self._new_id = id_generator

    async def issue(
        self,
        subject_id: str,
        purpose: OneShotPurpose,
        ttl: Optional[timedelta] = None,
    ) -> IssuedToken:
        """Create a redemption record and the token that references it.

        Any earlier outstanding token of the same subject and purpose is
        superseded.
        """
        now = self.clock.now()
        record = OneShotTokenRecord(
            token_id=self._new_id(),
            subject_id=subject_id,
            purpose=purpose,
            issued_at=now,
            expires_at=now + (ttl or self.ttls[purpose]),
        )
        await self.store.add(record)

        claims = TokenClaims(
            subject_id=subject_id,
            role="",
            kind=purpose.token_kind,
            token_id=record.token_id,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
        )
        logger.info(
            "One-shot token issued",
            subject_id=subject_id,
            purpose=purpose.value,
            jti=mask(record.token_id),
            expires_at=record.expires_at.isoformat(),
        )
        return IssuedToken(token=self.codec.encode(claims), claims=claims)

    async def redeem(
        self,
        token: str,
        purpose: OneShotPurpose,
        action: Optional[RedemptionAction] = None,
    ) -> str:
        """Redeem ``token`` for ``purpose`` and return its subject id.

        Args:
            token: The encoded one-shot token.
            purpose: The purpose the caller is redeeming for.
            action: Coroutine function receiving the subject id; it applies the
                state change the token authorises. The token stays unspent if
                it raises.

        Raises:
            InvalidSignatureError, MalformedTokenError: The token is not trustworthy.
            PurposeMismatchError: The token was issued for another purpose.
            TokenExpiredError: The token has expired.
            TokenNotFoundError: No redemption record exists.
            AlreadyConsumedError: The token was already redeemed.
        """
        claims = self.codec.decode(token)
        if claims.kind is not purpose.token_kind:
            logger.warning(
                "One-shot token redeemed for wrong purpose",
                expected=purpose.value,
                actual=claims.kind.value,
                jti=mask(claims.token_id),
            )
            raise PurposeMismatchError()
        if claims.is_expired(self.clock.now()):
            raise TokenExpiredError()

        # The claim and its action complete even if the caller goes away.
        return await asyncio.shield(self._redeem(claims, purpose, action))

    async def _redeem(
        self,
        claims: TokenClaims,
        purpose: OneShotPurpose,
        action: Optional[RedemptionAction],
    ) -> str:
        result = await self.store.claim(claims.token_id, purpose, self.clock.now())
        if result is not RedemptionResult.OK:
            logger.warning(
                "One-shot token redemption refused",
                purpose=purpose.value,
                result=result.name,
                jti=mask(claims.token_id),
            )
            raise _FAILURES[result]()

        if action is not None:
            try:
                await action(claims.subject_id)
            except Exception:
                await self.store.release(claims.token_id)
                logger.error(
                    "Authorised action failed, one-shot token released",
                    purpose=purpose.value,
                    subject_id=claims.subject_id,
                    jti=mask(claims.token_id),
                    exc_info=True,
                )
                raise

        logger.info(
            "One-shot token redeemed",
            purpose=purpose.value,
            subject_id=claims.subject_id,
            jti=mask(claims.token_id),
        )
        return claims.subject_id
