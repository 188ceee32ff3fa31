from structlog import get_logger

from tokenward.core.exceptions import TokenExpiredError, TokenRevokedError, WrongKindError
from tokenward.domain.interfaces.clock import IClock
from tokenward.domain.services.auth.revocation import RevocationRegistry
from tokenward.domain.services.auth.token_codec import TokenCodec
from tokenward.domain.value_objects.token_claims import TokenClaims, TokenKind
from tokenward.domain.value_objects.token_id import mask

logger = get_logger(__name__)

# Kinds whose validity depends on session revocation. One-shot tokens are
# governed by their own redemption ledger instead.
SESSION_KINDS = frozenset({TokenKind.ACCESS, TokenKind.REFRESH})


class TokenVerifier:
    """Validates a token's signature, kind, expiry and revocation status.

    Checks run in a fixed order: decode, kind, expiry, revocation. Malformed
    or mis-kinded tokens therefore never cause a revocation store lookup.
    """

    def __init__(self, codec: TokenCodec, registry: RevocationRegistry, clock: IClock):
        self.codec = codec
        self.registry = registry
        self.clock = clock

    async def verify(self, token: str, expected_kind: TokenKind) -> TokenClaims:
        """Return the claims of a valid token of ``expected_kind``.

        Raises:
            InvalidSignatureError: Signature mismatch.
            MalformedTokenError: Undecodable token or invalid claims.
            WrongKindError: The token is of another kind.
            TokenExpiredError: The token's expiry has passed.
            TokenRevokedError: The token's family or subject was revoked.
        """
        claims = self.codec.decode(token)

        if claims.kind is not expected_kind:
            logger.info(
                "Token of unexpected kind presented",
                expected=expected_kind.value,
                actual=claims.kind.value,
                jti=mask(claims.token_id),
            )
            raise WrongKindError()

        if claims.is_expired(self.clock.now()):
            logger.debug("Expired token presented", kind=claims.kind.value, jti=mask(claims.token_id))
            raise TokenExpiredError()

        if expected_kind in SESSION_KINDS and await self.registry.is_revoked(
            claims.family_id, claims.subject_id, claims.issued_at
        ):
            logger.info(
                "Revoked token presented",
                kind=claims.kind.value,
                subject_id=claims.subject_id,
                jti=mask(claims.token_id),
            )
            raise TokenRevokedError()

        return claims
