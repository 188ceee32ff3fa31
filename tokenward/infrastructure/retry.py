"""Retry policy for store round trips.

Transient connection failures are retried with exponential backoff via
tenacity. When the attempts are exhausted the failure surfaces as
``StoreUnavailableError`` so callers never see driver exceptions.
"""

from typing import Any, Awaitable, Callable, Tuple, Type, TypeVar

from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import TimeoutError as RedisTimeoutError
from structlog import get_logger
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from tokenward.core.exceptions import StoreUnavailableError

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (RedisConnectionError, RedisTimeoutError)


class StoreRetryPolicy:
    """Runs a store coroutine under a bounded exponential-backoff retry.

    Args:
        attempts: Total attempts, including the first.
        wait_seconds: Backoff multiplier.
        max_wait_seconds: Upper bound of a single wait.
        retry_on: Exception types considered transient.
    """

    def __init__(
        self,
        attempts: int = 3,
        wait_seconds: float = 0.05,
        max_wait_seconds: float = 1.0,
        retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    ):
        self.attempts = attempts
        self.wait_seconds = wait_seconds
        self.max_wait_seconds = max_wait_seconds
        self.retry_on = retry_on

    @classmethod
    def from_settings(cls, settings) -> "StoreRetryPolicy":
        return cls(
            attempts=settings.STORE_RETRY_ATTEMPTS,
            wait_seconds=settings.STORE_RETRY_WAIT_SECONDS,
            max_wait_seconds=settings.STORE_RETRY_MAX_WAIT_SECONDS,
        )

    async def run(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.attempts),
            wait=wait_exponential(multiplier=self.wait_seconds, max=self.max_wait_seconds),
            retry=retry_if_exception_type(self.retry_on),
            reraise=True,
        )

        async def attempt() -> T:
            # redis-py methods return awaitables but are not coroutine functions.
            return await func(*args, **kwargs)

        try:
            return await retrying(attempt)
        except self.retry_on as exc:
            logger.error(
                "Store operation failed after retries",
                operation=getattr(func, "__name__", repr(func)),
                attempts=self.attempts,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise StoreUnavailableError() from exc
