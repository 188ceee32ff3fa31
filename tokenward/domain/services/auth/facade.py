"""Authentication session facade.

This is the boundary the surrounding HTTP/GraphQL layer calls. It composes
the credential store, token issuer/verifier, refresh ledger, revocation
registry and one-shot token manager into the register/login/refresh/logout
and password/email flows.

Session families move through Unauthenticated -> Active -> Rotated ->
Revoked:
- register/login start a new family and issue an access+refresh pair.
- refresh rotates within the family; reuse revokes it.
- logout revokes the caller's family.
- change_password and reset_password revoke every family of the subject.
"""

import asyncio
from typing import Any, Dict, List, Optional

from structlog import get_logger

from tokenward.core.exceptions import (
    AccountDisabledError,
    InvalidCredentialsError,
    InvalidOldPasswordError,
    TokenNotFoundError,
    UserNotFoundError,
    WrongKindError,
)
from tokenward.domain.entities.identity import Identity, Role, normalize_email
from tokenward.domain.entities.records import RefreshTokenRecord
from tokenward.domain.interfaces.clock import IClock
from tokenward.domain.interfaces.services import INotifier, IPasswordHasher, IRateLimiter
from tokenward.domain.interfaces.stores import ICredentialStore
from tokenward.domain.services.auth.one_shot import OneShotTokenManager
from tokenward.domain.services.auth.password_policy import PasswordPolicyValidator
from tokenward.domain.services.auth.refresh_ledger import RefreshTokenLedger
from tokenward.domain.services.auth.token_issuer import TokenIssuer
from tokenward.domain.services.auth.token_verifier import TokenVerifier
from tokenward.domain.value_objects.token_claims import OneShotPurpose, TokenClaims, TokenKind
from tokenward.domain.value_objects.token_id import mask
from tokenward.domain.value_objects.tokens import AuthResult, TokenPair

logger = get_logger(__name__)

# Verified against when the email is unknown so both failure paths cost a hash check.
_TIMING_DUMMY_PASSWORD = "tokenward-timing-equaliser"


class AuthSessionFacade:
    """Orchestrates the authentication and session lifecycle flows.

    Attributes:
        credentials (ICredentialStore): Identity records.
        hasher (IPasswordHasher): Password hashing capability.
        issuer (TokenIssuer): Mints access tokens and pairs.
        verifier (TokenVerifier): Validates presented tokens.
        ledger (RefreshTokenLedger): Rotation and session revocation.
        one_shot (OneShotTokenManager): Reset and verification tokens.
        notifier (INotifier): Delivers one-shot tokens.
        rate_limiter (IRateLimiter | None): External attempt policy.
        password_policy (PasswordPolicyValidator | None): Applied to new passwords.

    """

    def __init__(
        self,
        credentials: ICredentialStore,
        hasher: IPasswordHasher,
        issuer: TokenIssuer,
        verifier: TokenVerifier,
        ledger: RefreshTokenLedger,
        one_shot: OneShotTokenManager,
        notifier: INotifier,
        clock: IClock,
        rate_limiter: Optional[IRateLimiter] = None,
        password_policy: Optional[PasswordPolicyValidator] = None,
    ):
        self.credentials = credentials
        self.hasher = hasher
        self.issuer = issuer
        self.verifier = verifier
        self.ledger = ledger
        self.one_shot = one_shot
        self.notifier = notifier
        self.clock = clock
        self.rate_limiter = rate_limiter
        self.password_policy = password_policy
        self._dummy_hash: Optional[str] = None

    # ------------------------------------------------------------------
    # Registration and login
    # ------------------------------------------------------------------

    async def register(
        self,
        email: str,
        password: str,
        profile_fields: Optional[Dict[str, Any]] = None,
        *,
        role: Role = Role.USER,
        label: Optional[str] = None,
        language: str = "en",
    ) -> AuthResult:
        """Create an identity and start its first session.

        Raises:
            PasswordPolicyError: The password violates the configured policy.
            UserAlreadyExistsError: The email is already registered.
        """
        self._check_password_policy(password, language)
        identity = Identity(
            email=normalize_email(email),
            hashed_password=self.hasher.hash(password),
            role=role,
            profile=dict(profile_fields or {}),
            created_at=self.clock.now(),
        )
        identity = await self.credentials.create(identity)
        tokens = await self.issuer.issue_refresh_pair(identity, label=label)
        logger.info("Identity registered", subject_id=identity.id, family_id=mask(tokens.family_id))
        return AuthResult(identity=identity, tokens=tokens)

    async def login(self, email: str, password: str, *, label: Optional[str] = None) -> AuthResult:
        """Authenticate by email and password and start a new session family.

        Raises:
            InvalidCredentialsError: Unknown email or wrong password (indistinguishable).
            AccountDisabledError: The identity has been deactivated.
            RateLimitExceededError: The rate-limit policy rejected the attempt.
        """
        normalized = normalize_email(email)
        if self.rate_limiter is not None:
            await self.rate_limiter.hit("login", normalized)

        identity = await self.credentials.get_by_email(normalized)
        if identity is None:
            self.hasher.verify(password, self._timing_dummy_hash())
            logger.info("Login failed", reason="unknown_email")
            raise InvalidCredentialsError()
        if not self.hasher.verify(password, identity.hashed_password):
            logger.info("Login failed", reason="wrong_password", subject_id=identity.id)
            raise InvalidCredentialsError()
        if not identity.is_active:
            logger.info("Login refused for disabled account", subject_id=identity.id)
            raise AccountDisabledError()

        if self.rate_limiter is not None:
            await self.rate_limiter.reset("login", normalized)
        tokens = await self.issuer.issue_refresh_pair(identity, label=label)
        logger.info("Login succeeded", subject_id=identity.id, family_id=mask(tokens.family_id))
        return AuthResult(identity=identity, tokens=tokens)

    # ------------------------------------------------------------------
    # Session lifecycle
    # ------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> TokenPair:
        """Exchange a refresh token for a new pair in the same family.

        Raises:
            TokenReuseDetectedError: The token was already used; the family is now revoked.
            TokenExpiredError: The refresh token has expired.
            TokenNotFoundError: The ledger has no record of the token.
            TokenRevokedError: The family or subject was revoked.
            InvalidTokenError: Signature, structure or kind is wrong.
            AccountDisabledError: The identity has been deactivated.
        """
        claims = await self.verifier.verify(refresh_token, TokenKind.REFRESH)
        identity = await self._require_identity(claims.subject_id)
        if not identity.is_active:
            logger.info("Refresh refused for disabled account", subject_id=identity.id)
            raise AccountDisabledError()

        record = await asyncio.shield(self.ledger.rotate(claims.token_id))
        return self.issuer.issue_pair_for_record(identity, record)

    async def logout(self, refresh_token: str) -> None:
        """Revoke the session family of ``refresh_token``.

        Expired or already revoked tokens are accepted so logout is idempotent;
        tokens that fail signature or kind checks are rejected.
        """
        claims = self.verifier.codec.decode(refresh_token)
        if claims.kind is not TokenKind.REFRESH:
            raise WrongKindError()
        await asyncio.shield(self.ledger.revoke_family(claims.family_id, reason="logout"))
        logger.info("Logout", subject_id=claims.subject_id, family_id=mask(claims.family_id))

    async def logout_all(self, subject_id: str) -> int:
        """Revoke every session of ``subject_id``. Returns the number of sessions ended."""
        count = await asyncio.shield(self.ledger.revoke_all_for_subject(subject_id, reason="logout_all"))
        logger.info("Logout from all sessions", subject_id=subject_id, sessions=count)
        return count

    async def list_sessions(self, subject_id: str) -> List[RefreshTokenRecord]:
        """Active sessions of ``subject_id``, one record per family."""
        return await self.ledger.list_active_sessions(subject_id)

    async def revoke_session(self, subject_id: str, family_id: str) -> None:
        """Revoke one of the subject's own sessions.

        Raises:
            TokenNotFoundError: The subject has no active session with this family id.
        """
        sessions = await self.ledger.list_active_sessions(subject_id)
        if not any(record.family_id == family_id for record in sessions):
            raise TokenNotFoundError()
        await asyncio.shield(self.ledger.revoke_family(family_id, reason="session_revoked"))

    async def verify_access_token(self, access_token: str) -> TokenClaims:
        """Validate an access token at the boundary of a protected operation.

        Raises:
            InvalidTokenError: Signature, structure or kind is wrong.
            TokenExpiredError: The token has expired.
            TokenRevokedError: Its family or subject has been revoked.
        """
        return await self.verifier.verify(access_token, TokenKind.ACCESS)

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    async def change_password(
        self,
        access_token: str,
        current_password: str,
        new_password: str,
        language: str = "en",
    ) -> None:
        """Change the caller's password and revoke all of their sessions.

        Every family is revoked, including the one that made the request;
        the caller has to log in again.

        Raises:
            InvalidOldPasswordError: ``current_password`` is wrong.
            PasswordPolicyError: ``new_password`` violates the policy.
        """
        claims = await self.verify_access_token(access_token)
        identity = await self._require_identity(claims.subject_id)
        if not self.hasher.verify(current_password, identity.hashed_password):
            logger.info("Password change refused", reason="wrong_current_password", subject_id=identity.id)
            raise InvalidOldPasswordError()
        self._check_password_policy(new_password, language)

        await asyncio.shield(
            self._replace_password(identity.id, self.hasher.hash(new_password), "password_change")
        )
        logger.info("Password changed", subject_id=identity.id)

    async def request_password_reset(self, email: str) -> None:
        """Send a reset token if the email belongs to an active identity.

        Returns normally whether or not the account exists.

        Raises:
            RateLimitExceededError: The rate-limit policy rejected the attempt.
        """
        normalized = normalize_email(email)
        if self.rate_limiter is not None:
            await self.rate_limiter.hit("password_reset", normalized)

        identity = await self.credentials.get_by_email(normalized)
        if identity is None or not identity.is_active:
            logger.info("Password reset requested for unknown or disabled account")
            return

        token = await self.one_shot.issue(identity.id, OneShotPurpose.RESET)
        await self.notifier.send_password_reset(identity, token)

    async def reset_password(self, token: str, new_password: str, language: str = "en") -> None:
        """Set a new password using a reset token.

        The token is spent only if the password change applies; all sessions
        of the subject are revoked.

        Raises:
            PasswordPolicyError: ``new_password`` violates the policy; the token stays valid.
            TokenExpiredError: The token has expired.
            AlreadyConsumedError: The token was already used.
            PurposeMismatchError: The token is not a reset token.
        """
        self._check_password_policy(new_password, language)
        hashed = self.hasher.hash(new_password)

        async def apply(subject_id: str) -> None:
            await self._replace_password(subject_id, hashed, "password_reset")

        subject_id = await self.one_shot.redeem(token, OneShotPurpose.RESET, action=apply)
        logger.info("Password reset completed", subject_id=subject_id)

    async def request_email_verification(self, subject_id: str) -> None:
        """Send an email-verification token to the identity.

        Raises:
            UserNotFoundError: No identity has this id.
            RateLimitExceededError: The rate-limit policy rejected the attempt.
        """
        identity = await self._require_identity(subject_id)
        if identity.email_verified:
            logger.debug("Email already verified", subject_id=subject_id)
            return
        if self.rate_limiter is not None:
            await self.rate_limiter.hit("email_verification", subject_id)

        token = await self.one_shot.issue(identity.id, OneShotPurpose.VERIFY)
        await self.notifier.send_email_verification(identity, token)

    async def verify_email(self, token: str) -> None:
        """Mark the identity's email verified using a verification token.

        Raises:
            TokenExpiredError: The token has expired.
            AlreadyConsumedError: The token was already used.
            PurposeMismatchError: The token is not a verification token.
        """

        async def apply(subject_id: str) -> None:
            await self.credentials.set_email_verified(subject_id, True)

        subject_id = await self.one_shot.redeem(token, OneShotPurpose.VERIFY, action=apply)
        logger.info("Email verified", subject_id=subject_id)

    # ------------------------------------------------------------------
    # Account administration
    # ------------------------------------------------------------------

    async def deactivate(self, subject_id: str) -> Identity:
        """Disable an identity and end all of its sessions."""
        identity = await self.credentials.set_active(subject_id, False)
        await asyncio.shield(self.ledger.revoke_all_for_subject(subject_id, reason="deactivated"))
        logger.info("Identity deactivated", subject_id=subject_id)
        return identity

    async def reactivate(self, subject_id: str) -> Identity:
        identity = await self.credentials.set_active(subject_id, True)
        logger.info("Identity reactivated", subject_id=subject_id)
        return identity

    async def change_role(self, subject_id: str, role: Role) -> Identity:
        """Change the certified role; outstanding tokens are revoked so the new role takes effect."""
        identity = await self.credentials.set_role(subject_id, role)
        await asyncio.shield(self.ledger.revoke_all_for_subject(subject_id, reason="role_change"))
        logger.info("Identity role changed", subject_id=subject_id, role=role.value)
        return identity

    async def prune_revocations(self) -> int:
        return await self.ledger.registry.prune()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _require_identity(self, subject_id: str) -> Identity:
        identity = await self.credentials.get_by_id(subject_id)
        if identity is None:
            logger.warning("Token references missing identity", subject_id=subject_id)
            raise UserNotFoundError()
        return identity

    async def _replace_password(self, subject_id: str, hashed_password: str, reason: str) -> None:
        # Sessions are revoked first so a failed update leaves the account
        # logged out rather than reachable with the old credentials.
        await self.ledger.revoke_all_for_subject(subject_id, reason=reason)
        await self.credentials.update_password(subject_id, hashed_password)

    def _check_password_policy(self, password: str, language: str) -> None:
        if self.password_policy is not None:
            self.password_policy.validate(password, language)

    def _timing_dummy_hash(self) -> str:
        if self._dummy_hash is None:
            self._dummy_hash = self.hasher.hash(_TIMING_DUMMY_PASSWORD)
        return self._dummy_hash
