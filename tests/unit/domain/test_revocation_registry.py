from datetime import timedelta

import pytest

from tokenward.domain.entities.records import RevocationScope

from tests.conftest import REFRESH_TTL, START


@pytest.mark.asyncio
async def test_family_revocation_covers_any_issue_time(registry, clock):
    await registry.revoke_family("family-1")

    assert await registry.is_revoked("family-1", "subject-1", START - timedelta(days=1))
    assert await registry.is_revoked("family-1", "subject-1", START + timedelta(days=1))
    assert not await registry.is_revoked("family-2", "subject-1", START)


@pytest.mark.asyncio
async def test_subject_revocation_only_covers_earlier_tokens(registry, clock):
    # Arrange
    issued_before = clock.now()
    clock.advance(timedelta(minutes=1))
    await registry.revoke_subject("subject-1")

    # Act / Assert
    assert await registry.is_revoked(None, "subject-1", issued_before)
    assert await registry.is_revoked(None, "subject-1", clock.now())
    assert not await registry.is_revoked(None, "subject-1", clock.now() + timedelta(microseconds=1))
    assert not await registry.is_revoked(None, "subject-2", issued_before)


@pytest.mark.asyncio
async def test_later_subject_revocation_wins(registry, revocation_store, clock):
    later = START + timedelta(hours=1)
    await registry.revoke_subject("subject-1", at=later)
    await registry.revoke_subject("subject-1", at=START)

    entry = await revocation_store.get_subject("subject-1")

    assert entry.revoked_at == later
    assert entry.scope is RevocationScope.SUBJECT


@pytest.mark.asyncio
async def test_revoke_requires_exactly_one_target(registry):
    with pytest.raises(ValueError):
        await registry.revoke(reason="test")
    with pytest.raises(ValueError):
        await registry.revoke(family_id="f", subject_id="s")

    entry = await registry.revoke(family_id="family-1", reason="test")

    assert entry.reason == "test"
    assert entry.revoked_at == START


@pytest.mark.asyncio
async def test_prune_drops_entries_past_retention(registry, clock):
    await registry.revoke_family("family-1")
    clock.advance(timedelta(days=1))
    await registry.revoke_subject("subject-1")

    clock.advance(REFRESH_TTL)
    removed = await registry.prune()

    assert removed == 1
    assert not await registry.is_revoked("family-1", "subject-1", START + timedelta(days=1, seconds=1))
    assert await registry.is_revoked(None, "subject-1", START)
