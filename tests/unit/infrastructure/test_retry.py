from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError

from tokenward.core.exceptions import StoreUnavailableError
from tokenward.infrastructure.retry import StoreRetryPolicy


@pytest.fixture
def policy():
    return StoreRetryPolicy(attempts=3, wait_seconds=0, max_wait_seconds=0)


@pytest.mark.asyncio
async def test_transient_failure_is_retried(policy):
    operation = AsyncMock(side_effect=[RedisConnectionError("reset"), RedisTimeoutError("slow"), "ok"])

    assert await policy.run(operation, "key") == "ok"
    assert operation.await_count == 3
    operation.assert_awaited_with("key")


@pytest.mark.asyncio
async def test_exhausted_retries_surface_as_store_unavailable(policy):
    operation = AsyncMock(side_effect=RedisConnectionError("down"))

    with pytest.raises(StoreUnavailableError) as excinfo:
        await policy.run(operation)

    assert operation.await_count == 3
    assert isinstance(excinfo.value.__cause__, RedisConnectionError)


@pytest.mark.asyncio
async def test_other_errors_are_not_retried(policy):
    operation = AsyncMock(side_effect=KeyError("field"))

    with pytest.raises(KeyError):
        await policy.run(operation)
    assert operation.await_count == 1


def test_from_settings(mocker):
    settings = mocker.Mock(
        STORE_RETRY_ATTEMPTS=5,
        STORE_RETRY_WAIT_SECONDS=0.1,
        STORE_RETRY_MAX_WAIT_SECONDS=2.0,
    )

    policy = StoreRetryPolicy.from_settings(settings)

    assert (policy.attempts, policy.wait_seconds, policy.max_wait_seconds) == (5, 0.1, 2.0)


@pytest.mark.asyncio
async def test_plain_callable_returning_awaitable_is_awaited(policy):
    calls = []

    async def fetch(key):
        calls.append(key)
        if len(calls) == 1:
            raise RedisConnectionError("reset")
        return {"field": key}

    def bound_like(key):
        # Shaped like a redis-py command method: a plain function returning a coroutine.
        return fetch(key)

    assert await policy.run(bound_like, "record") == {"field": "record"}
    assert calls == ["record", "record"]
