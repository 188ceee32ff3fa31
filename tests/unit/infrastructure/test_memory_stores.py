from datetime import timedelta

import pytest

from tokenward.core.exceptions import UserAlreadyExistsError, UserNotFoundError
from tokenward.domain.entities.identity import Identity, Role
from tokenward.domain.entities.records import OneShotTokenRecord, RefreshTokenRecord
from tokenward.domain.interfaces.stores import RedemptionResult, RotationResult
from tokenward.domain.value_objects.token_claims import OneShotPurpose

from tests.conftest import REFRESH_TTL, START


def _identity(email="alice@example.com"):
    return Identity(email=email, hashed_password="hash", role=Role.USER)


@pytest.mark.asyncio
async def test_credential_store_lookup_is_case_insensitive(credentials):
    created = await credentials.create(_identity("Alice@Example.com"))

    assert await credentials.get_by_email("ALICE@example.COM") is created
    assert await credentials.get_by_id(created.id) is created
    assert await credentials.get_by_email("bob@example.com") is None


@pytest.mark.asyncio
async def test_credential_store_rejects_duplicate_email(credentials):
    await credentials.create(_identity())

    with pytest.raises(UserAlreadyExistsError):
        await credentials.create(_identity("ALICE@example.com"))


@pytest.mark.asyncio
async def test_credential_store_updates(credentials, clock):
    created = await credentials.create(_identity())
    clock.advance(timedelta(minutes=1))

    updated = await credentials.update_password(created.id, "new-hash")

    assert updated.hashed_password == "new-hash"
    assert updated.updated_at == clock.now()
    with pytest.raises(UserNotFoundError):
        await credentials.set_role("missing", Role.ADMIN)


@pytest.mark.asyncio
async def test_refresh_store_rejects_rotation_of_superseded_record(refresh_store):
    first = RefreshTokenRecord("rt-1", "family-1", "subject-1", START, START + REFRESH_TTL)
    second = RefreshTokenRecord("rt-2", "family-1", "subject-1", START, START + REFRESH_TTL)
    await refresh_store.add(first)
    await refresh_store.add(second)

    successor = first.successor("rt-3", START, START + REFRESH_TTL)

    assert await refresh_store.rotate("rt-1", successor, START) is RotationResult.REUSED
    assert await refresh_store.get("rt-3") is None


@pytest.mark.asyncio
async def test_refresh_store_list_active_skips_expired(refresh_store):
    await refresh_store.add(RefreshTokenRecord("rt-1", "family-1", "subject-1", START, START + timedelta(hours=1)))

    assert len(await refresh_store.list_active("subject-1", START)) == 1
    assert await refresh_store.list_active("subject-1", START + timedelta(hours=2)) == []


def _reset_record(token_id):
    return OneShotTokenRecord(
        token_id=token_id,
        subject_id="subject-1",
        purpose=OneShotPurpose.RESET,
        issued_at=START,
        expires_at=START + timedelta(minutes=30),
    )


@pytest.mark.asyncio
async def test_one_shot_release_only_restores_outstanding_token(one_shot_store):
    now = START + timedelta(minutes=1)
    await one_shot_store.add(_reset_record("os-1"))
    assert await one_shot_store.claim("os-1", OneShotPurpose.RESET, now) is RedemptionResult.OK
    await one_shot_store.add(_reset_record("os-2"))

    await one_shot_store.release("os-1")

    assert (await one_shot_store.get("os-1")).consumed
    await one_shot_store.release("os-2")
    assert not (await one_shot_store.get("os-2")).consumed
