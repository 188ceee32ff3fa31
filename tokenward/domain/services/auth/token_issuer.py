from datetime import timedelta
from typing import Callable, Optional

from structlog import get_logger

from tokenward.domain.entities.identity import Identity
from tokenward.domain.entities.records import RefreshTokenRecord
from tokenward.domain.interfaces.clock import IClock
from tokenward.domain.services.auth.refresh_ledger import RefreshTokenLedger
from tokenward.domain.services.auth.token_codec import TokenCodec
from tokenward.domain.value_objects.token_claims import TokenClaims, TokenKind
from tokenward.domain.value_objects.token_id import mask, new_token_id
from tokenward.domain.value_objects.tokens import IssuedToken, TokenPair

logger = get_logger(__name__)

DEFAULT_ACCESS_TTL = timedelta(minutes=15)


class TokenIssuer:
    """Builds access tokens and access+refresh pairs for an authenticated identity.

    The refresh record is written to the ledger *before* the refresh token is
    encoded, so no refresh token ever exists without its server-side record.

    Attributes:
        codec (TokenCodec): Signs the claims.
        clock (IClock): Issuance time source.
        ledger (RefreshTokenLedger): Persists refresh records.
        access_ttl (timedelta): Access token lifetime.

    """

    def __init__(
        self,
        codec: TokenCodec,
        clock: IClock,
        ledger: RefreshTokenLedger,
        access_ttl: timedelta = DEFAULT_ACCESS_TTL,
        id_generator: Callable[[], str] = new_token_id,
    ):
        self.codec = codec
        self.clock = clock
        self.ledger = ledger
        self.access_ttl = access_ttl
        self._new_id = id_generator

    def issue_access_token(self, identity: Identity, family_id: Optional[str] = None) -> IssuedToken:
        """Create a short-lived access token for ``identity``.

        Args:
            identity: Authenticated identity.
            family_id: Session family the token belongs to, when minted as part
                of a pair. Lets family revocation reach access tokens too.

        Returns:
            IssuedToken: The encoded token and its claims.
        """
        now = self.clock.now()
        claims = TokenClaims(
            subject_id=identity.id,
            role=_role_value(identity),
            kind=TokenKind.ACCESS,
            token_id=self._new_id(),
            issued_at=now,
            expires_at=now + self.access_ttl,
            family_id=family_id,
        )
        token = IssuedToken(token=self.codec.encode(claims), claims=claims)
        logger.debug("Access token issued", subject_id=identity.id, jti=mask(claims.token_id))
        return token

    async def issue_refresh_pair(
        self,
        identity: Identity,
        family_id: Optional[str] = None,
        label: Optional[str] = None,
    ) -> TokenPair:
        """Create a refresh record and mint the matching access+refresh pair.

        Args:
            identity: Authenticated identity.
            family_id: Existing family to extend; a new family is started when None.
            label: Optional device/client label stored on the record.

        Returns:
            TokenPair: New access and refresh tokens.
        """
        record = await self.ledger.register(identity.id, family_id=family_id, label=label)
        return self.issue_pair_for_record(identity, record)

    def issue_pair_for_record(self, identity: Identity, record: RefreshTokenRecord) -> TokenPair:
        """Encode the pair for an already persisted refresh record (e.g. after rotation)."""
        refresh_claims = TokenClaims(
            subject_id=identity.id,
            role=_role_value(identity),
            kind=TokenKind.REFRESH,
            token_id=record.token_id,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
            family_id=record.family_id,
        )
        refresh = IssuedToken(token=self.codec.encode(refresh_claims), claims=refresh_claims)
        access = self.issue_access_token(identity, family_id=record.family_id)
        logger.debug(
            "Token pair issued",
            subject_id=identity.id,
            family_id=mask(record.family_id),
            refresh_jti=mask(record.token_id),
        )
        return TokenPair(access=access, refresh=refresh)


def _role_value(identity: Identity) -> str:
    role = identity.role
    return role.value if hasattr(role, "value") else str(role)
