from datetime import timedelta
from unittest.mock import AsyncMock

import pytest

from tokenward.core.exceptions import (
    AccountDisabledError,
    InvalidCredentialsError,
    InvalidOldPasswordError,
    PasswordPolicyError,
    RateLimitExceededError,
    TokenNotFoundError,
    TokenRevokedError,
    UserAlreadyExistsError,
    UserNotFoundError,
    WrongKindError,
)
from tokenward.domain.entities.identity import Role
from tokenward.domain.interfaces.services import IRateLimiter
from tokenward.domain.services.auth.facade import AuthSessionFacade
from tokenward.domain.services.auth.password_policy import PasswordPolicyValidator
from tokenward.domain.value_objects.token_claims import OneShotPurpose, TokenKind

EMAIL = "alice@example.com"
PASSWORD = "Secr3t!pass"


def _facade_with(facade, **overrides):
    parts = dict(
        credentials=facade.credentials,
        hasher=facade.hasher,
        issuer=facade.issuer,
        verifier=facade.verifier,
        ledger=facade.ledger,
        one_shot=facade.one_shot,
        notifier=facade.notifier,
        clock=facade.clock,
    )
    parts.update(overrides)
    return AuthSessionFacade(**parts)


@pytest.mark.asyncio
async def test_register_normalises_email_and_hashes_password(facade, hasher):
    # Act
    result = await facade.register("  Alice@Example.COM ", PASSWORD, {"name": "Alice"})

    # Assert
    assert result.identity.email == EMAIL
    assert result.identity.profile == {"name": "Alice"}
    assert result.identity.hashed_password != PASSWORD
    assert hasher.verify(PASSWORD, result.identity.hashed_password)
    assert (await facade.verify_access_token(result.access_token)).subject_id == result.identity.id


@pytest.mark.asyncio
async def test_register_duplicate_email(facade):
    await facade.register(EMAIL, PASSWORD)

    with pytest.raises(UserAlreadyExistsError):
        await facade.register(EMAIL.upper(), PASSWORD)


@pytest.mark.asyncio
async def test_register_applies_password_policy(facade):
    strict = _facade_with(facade, password_policy=PasswordPolicyValidator())

    with pytest.raises(PasswordPolicyError):
        await strict.register(EMAIL, "weak")
    assert await facade.credentials.get_by_email(EMAIL) is None


@pytest.mark.asyncio
async def test_register_with_admin_role(facade):
    result = await facade.register(EMAIL, PASSWORD, role=Role.ADMIN)

    assert (await facade.verify_access_token(result.access_token)).role == "admin"


@pytest.mark.asyncio
async def test_login_unknown_email_and_wrong_password_look_the_same(facade):
    await facade.register(EMAIL, PASSWORD)

    with pytest.raises(InvalidCredentialsError) as unknown:
        await facade.login("bob@example.com", PASSWORD)
    with pytest.raises(InvalidCredentialsError) as wrong:
        await facade.login(EMAIL, "wrong-password")

    assert unknown.value.message == wrong.value.message
    assert unknown.value.code == wrong.value.code


@pytest.mark.asyncio
async def test_unknown_email_still_costs_a_hash_check(facade, mocker):
    verify = mocker.spy(facade.hasher, "verify")

    with pytest.raises(InvalidCredentialsError):
        await facade.login("nobody@example.com", PASSWORD)

    assert verify.call_count == 1


@pytest.mark.asyncio
async def test_disabled_account_is_reported_only_with_the_right_password(facade):
    registered = await facade.register(EMAIL, PASSWORD)
    await facade.deactivate(registered.identity.id)

    with pytest.raises(InvalidCredentialsError):
        await facade.login(EMAIL, "wrong-password")
    with pytest.raises(AccountDisabledError):
        await facade.login(EMAIL, PASSWORD)


@pytest.mark.asyncio
async def test_login_consults_rate_limiter(facade):
    limiter = AsyncMock(spec=IRateLimiter)
    guarded = _facade_with(facade, rate_limiter=limiter)
    await guarded.register(EMAIL, PASSWORD)

    await guarded.login(" ALICE@example.com", PASSWORD)

    limiter.hit.assert_awaited_once_with("login", EMAIL)
    limiter.reset.assert_awaited_once_with("login", EMAIL)


@pytest.mark.asyncio
async def test_rate_limited_login_never_checks_credentials(facade, mocker):
    limiter = AsyncMock(spec=IRateLimiter)
    limiter.hit.side_effect = RateLimitExceededError()
    guarded = _facade_with(facade, rate_limiter=limiter)
    lookup = mocker.spy(facade.credentials, "get_by_email")

    with pytest.raises(RateLimitExceededError):
        await guarded.login(EMAIL, PASSWORD)
    lookup.assert_not_called()


@pytest.mark.asyncio
async def test_refresh_refused_for_disabled_account(facade):
    registered = await facade.register(EMAIL, PASSWORD)
    await facade.credentials.set_active(registered.identity.id, False)

    with pytest.raises(AccountDisabledError):
        await facade.refresh(registered.refresh_token)


@pytest.mark.asyncio
async def test_refresh_for_deleted_identity(facade, identity, issuer):
    pair = await issuer.issue_refresh_pair(identity)

    with pytest.raises(UserNotFoundError):
        await facade.refresh(pair.refresh_token)


@pytest.mark.asyncio
async def test_refresh_rejects_access_token(facade):
    registered = await facade.register(EMAIL, PASSWORD)

    with pytest.raises(WrongKindError):
        await facade.refresh(registered.access_token)


@pytest.mark.asyncio
async def test_logout_is_idempotent_and_accepts_expired_tokens(facade, clock):
    registered = await facade.register(EMAIL, PASSWORD)
    clock.advance(timedelta(days=30))

    await facade.logout(registered.refresh_token)
    await facade.logout(registered.refresh_token)

    assert await facade.list_sessions(registered.identity.id) == []


@pytest.mark.asyncio
async def test_logout_rejects_access_token(facade):
    registered = await facade.register(EMAIL, PASSWORD)

    with pytest.raises(WrongKindError):
        await facade.logout(registered.access_token)


@pytest.mark.asyncio
async def test_logout_all(facade, clock):
    registered = await facade.register(EMAIL, PASSWORD)
    await facade.login(EMAIL, PASSWORD)

    assert await facade.logout_all(registered.identity.id) == 2
    with pytest.raises(TokenRevokedError):
        await facade.verify_access_token(registered.access_token)


@pytest.mark.asyncio
async def test_revoke_session_only_touches_own_sessions(facade):
    alice = await facade.register(EMAIL, PASSWORD)
    bob = await facade.register("bob@example.com", PASSWORD)

    with pytest.raises(TokenNotFoundError):
        await facade.revoke_session(alice.identity.id, bob.tokens.family_id)

    await facade.revoke_session(alice.identity.id, alice.tokens.family_id)
    with pytest.raises(TokenRevokedError):
        await facade.verify_access_token(alice.access_token)
    assert (await facade.verify_access_token(bob.access_token)).subject_id == bob.identity.id


@pytest.mark.asyncio
async def test_change_password_with_wrong_current_password(facade):
    registered = await facade.register(EMAIL, PASSWORD)

    with pytest.raises(InvalidOldPasswordError):
        await facade.change_password(registered.access_token, "nope", "N3w!password")
    assert (await facade.verify_access_token(registered.access_token)).subject_id == registered.identity.id


@pytest.mark.asyncio
async def test_password_reset_request_for_unknown_email_is_silent(facade, notifier):
    await facade.request_password_reset("ghost@example.com")

    assert notifier.deliveries == []


@pytest.mark.asyncio
async def test_password_reset_request_for_disabled_account_is_silent(facade, notifier):
    registered = await facade.register(EMAIL, PASSWORD)
    await facade.deactivate(registered.identity.id)

    await facade.request_password_reset(EMAIL)

    assert notifier.deliveries == []


@pytest.mark.asyncio
async def test_reset_rejected_by_policy_keeps_token(facade, notifier):
    # Arrange
    strict = _facade_with(facade, password_policy=PasswordPolicyValidator())
    registered = await strict.register(EMAIL, PASSWORD)
    await strict.request_password_reset(EMAIL)
    token = notifier.last_token(OneShotPurpose.RESET)

    # Act
    with pytest.raises(PasswordPolicyError):
        await strict.reset_password(token, "weak")
    await strict.reset_password(token, "N3w!password")

    # Assert
    assert (await strict.login(EMAIL, "N3w!password")).identity.id == registered.identity.id


@pytest.mark.asyncio
async def test_failed_password_update_keeps_reset_token(facade, notifier, mocker):
    registered = await facade.register(EMAIL, PASSWORD)
    await facade.request_password_reset(EMAIL)
    token = notifier.last_token(OneShotPurpose.RESET)
    mocker.patch.object(facade.credentials, "update_password", side_effect=RuntimeError("db down"))

    with pytest.raises(RuntimeError):
        await facade.reset_password(token, "N3w!password")

    mocker.stopall()
    await facade.reset_password(token, "N3w!password")
    assert (await facade.login(EMAIL, "N3w!password")).identity.id == registered.identity.id


@pytest.mark.asyncio
async def test_email_verification_flow(facade, notifier):
    registered = await facade.register(EMAIL, PASSWORD)

    await facade.request_email_verification(registered.identity.id)
    await facade.verify_email(notifier.last_token(OneShotPurpose.VERIFY, registered.identity.id))

    assert (await facade.credentials.get_by_id(registered.identity.id)).email_verified
    await facade.request_email_verification(registered.identity.id)
    assert len(notifier.deliveries) == 1


@pytest.mark.asyncio
async def test_email_verification_for_unknown_subject(facade):
    with pytest.raises(UserNotFoundError):
        await facade.request_email_verification("missing")


@pytest.mark.asyncio
async def test_change_role_revokes_sessions_and_reissues_new_role(facade, clock):
    registered = await facade.register(EMAIL, PASSWORD)

    await facade.change_role(registered.identity.id, Role.ADMIN)
    clock.advance()
    relogin = await facade.login(EMAIL, PASSWORD)

    with pytest.raises(TokenRevokedError):
        await facade.verify_access_token(registered.access_token)
    claims = await facade.verify_access_token(relogin.access_token)
    assert claims.role == "admin"
    assert claims.kind is TokenKind.ACCESS


@pytest.mark.asyncio
async def test_reactivate_allows_login_again(facade):
    registered = await facade.register(EMAIL, PASSWORD)
    await facade.deactivate(registered.identity.id)

    await facade.reactivate(registered.identity.id)

    assert (await facade.login(EMAIL, PASSWORD)).identity.is_active


@pytest.mark.asyncio
async def test_prune_revocations(facade, clock):
    registered = await facade.register(EMAIL, PASSWORD)
    await facade.logout(registered.refresh_token)
    clock.advance(timedelta(days=8))

    assert await facade.prune_revocations() == 1
