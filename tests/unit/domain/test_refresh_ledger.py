import asyncio
from datetime import timedelta

import pytest

from tokenward.core.exceptions import (
    TokenExpiredError,
    TokenNotFoundError,
    TokenReuseDetectedError,
)

from tests.conftest import REFRESH_TTL


@pytest.mark.asyncio
async def test_rotate_consumes_and_links_successor(ledger, refresh_store, clock):
    # Arrange
    record = await ledger.register("subject-1")
    clock.advance()

    # Act
    successor = await ledger.rotate(record.token_id)

    # Assert
    old = await refresh_store.get(record.token_id)
    assert old.consumed
    assert old.consumed_at == clock.now()
    assert successor.family_id == record.family_id
    assert successor.token_id != record.token_id
    assert successor.issued_at == clock.now()
    assert successor.expires_at == clock.now() + REFRESH_TTL
    assert not successor.consumed


@pytest.mark.asyncio
async def test_rotate_keeps_label(ledger):
    record = await ledger.register("subject-1", label="phone")

    successor = await ledger.rotate(record.token_id)

    assert successor.label == "phone"


@pytest.mark.asyncio
async def test_rotate_unknown_token(ledger):
    with pytest.raises(TokenNotFoundError):
        await ledger.rotate("missing")


@pytest.mark.asyncio
async def test_rotate_expired_token_is_not_reuse(ledger, registry, clock):
    record = await ledger.register("subject-1")
    clock.advance(REFRESH_TTL + timedelta(seconds=1))

    with pytest.raises(TokenExpiredError):
        await ledger.rotate(record.token_id)
    assert await registry.store.get_family(record.family_id) is None


@pytest.mark.asyncio
async def test_second_rotation_revokes_family(ledger, registry, refresh_store, clock):
    # Arrange
    record = await ledger.register("subject-1")
    successor = await ledger.rotate(record.token_id)

    # Act
    with pytest.raises(TokenReuseDetectedError) as excinfo:
        await ledger.rotate(record.token_id)

    # Assert
    assert excinfo.value.family_id == record.family_id
    assert await registry.is_revoked(record.family_id, "subject-1", successor.issued_at)
    assert (await refresh_store.get(successor.token_id)).consumed
    with pytest.raises(TokenReuseDetectedError):
        await ledger.rotate(successor.token_id)


@pytest.mark.asyncio
async def test_concurrent_rotations_of_same_token_yield_one_winner(ledger):
    # Arrange
    record = await ledger.register("subject-1")

    # Act
    results = await asyncio.gather(
        *(ledger.rotate(record.token_id) for _ in range(5)),
        return_exceptions=True,
    )

    # Assert
    winners = [result for result in results if not isinstance(result, Exception)]
    losers = [result for result in results if isinstance(result, Exception)]
    assert len(winners) == 1
    assert all(isinstance(loser, TokenReuseDetectedError) for loser in losers)


@pytest.mark.asyncio
async def test_rotations_on_different_families_do_not_contend(ledger):
    records = [await ledger.register("subject-1") for _ in range(3)]

    successors = await asyncio.gather(*(ledger.rotate(record.token_id) for record in records))

    assert {s.family_id for s in successors} == {r.family_id for r in records}


@pytest.mark.asyncio
async def test_revoke_family_closes_active_record(ledger, refresh_store, registry):
    record = await ledger.register("subject-1")

    await ledger.revoke_family(record.family_id)

    assert (await refresh_store.get(record.token_id)).consumed
    assert await registry.store.get_family(record.family_id) is not None
    with pytest.raises(TokenReuseDetectedError):
        await ledger.rotate(record.token_id)


@pytest.mark.asyncio
async def test_revoke_all_for_subject(ledger, clock):
    await ledger.register("subject-1")
    await ledger.register("subject-1")
    other = await ledger.register("subject-2")

    count = await ledger.revoke_all_for_subject("subject-1")

    assert count == 2
    assert await ledger.list_active_sessions("subject-1") == []
    assert await ledger.list_active_sessions("subject-2") == [other]


@pytest.mark.asyncio
async def test_list_active_sessions_follows_rotation(ledger, clock):
    first = await ledger.register("subject-1", label="laptop")
    clock.advance()
    await ledger.register("subject-1", label="phone")
    clock.advance()
    successor = await ledger.rotate(first.token_id)

    sessions = await ledger.list_active_sessions("subject-1")

    assert [s.label for s in sessions] == ["phone", "laptop"]
    assert successor in sessions
