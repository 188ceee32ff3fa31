"""Signed token encoding and decoding.

The codec is a pure function of claims and key material: it never touches a
store and never consults the clock. Signature, issuer and audience are
verified on decode; expiry is deliberately left to ``TokenVerifier`` so that
every expiry decision uses the injected clock.
"""

from typing import Optional

import jwt
from structlog import get_logger

from tokenward.core.exceptions import InvalidSignatureError, MalformedTokenError
from tokenward.domain.value_objects.token_claims import TokenClaims

logger = get_logger(__name__)

REQUIRED_CLAIMS = ["sub", "jti", "iat", "exp", "iss", "aud"]


class TokenCodec:
    """Encodes ``TokenClaims`` into JWTs and decodes JWTs back into claims.

    Args:
        signing_key: Secret (HS*) or PEM private key (RS*/ES*).
        verification_key: Secret (HS*) or PEM public key; defaults to
            ``signing_key`` for symmetric algorithms.
        algorithm: JWS algorithm name.
        issuer: Value written to and required in ``iss``.
        audience: Value written to and required in ``aud``.
    """

    def __init__(
        self,
        signing_key: str,
        *,
        verification_key: Optional[str] = None,
        algorithm: str = "HS256",
        issuer: str,
        audience: str,
    ):
        if not signing_key:
            raise ValueError("A signing key is required")
        self._signing_key = signing_key
        self._verification_key = verification_key or signing_key
        self._algorithm = algorithm
        self._issuer = issuer
        self._audience = audience

    @property
    def algorithm(self) -> str:
        return self._algorithm

    def encode(self, claims: TokenClaims) -> str:
        return jwt.encode(
            claims.to_payload(self._issuer, self._audience),
            self._signing_key,
            algorithm=self._algorithm,
        )

    def decode(self, token: str) -> TokenClaims:
        """Verify ``token`` and return its claims.

        Raises:
            InvalidSignatureError: The signature does not match.
            MalformedTokenError: The token is not a decodable JWT, uses an
                unexpected algorithm, or its claims are missing or invalid.
        """
        if not isinstance(token, str) or not token:
            raise MalformedTokenError()
        try:
            payload = jwt.decode(
                token,
                self._verification_key,
                algorithms=[self._algorithm],
                issuer=self._issuer,
                audience=self._audience,
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "verify_nbf": False,
                    "require": REQUIRED_CLAIMS,
                },
            )
        except jwt.InvalidSignatureError as exc:
            logger.debug("Token signature rejected")
            raise InvalidSignatureError() from exc
        except jwt.PyJWTError as exc:
            logger.debug("Token could not be decoded", error=type(exc).__name__)
            raise MalformedTokenError() from exc

        try:
            return TokenClaims.from_payload(payload)
        except ValueError as exc:
            logger.debug("Token claims rejected", error=str(exc))
            raise MalformedTokenError() from exc
