"""Composition root for the authentication core.

Factories here turn a ``Settings`` instance into wired collaborators and,
ultimately, an ``AuthSessionFacade``. Domain services never read settings
themselves; everything they need is passed in here.
"""

from typing import Optional

from redis.asyncio import Redis

from tokenward.core.config.settings import Settings
from tokenward.core.config.settings import settings as default_settings
from tokenward.domain.interfaces.clock import IClock
from tokenward.domain.interfaces.services import INotifier, IPasswordHasher, IRateLimiter
from tokenward.domain.interfaces.stores import (
    ICredentialStore,
    IOneShotTokenStore,
    IRefreshTokenStore,
    IRevocationStore,
)
from tokenward.domain.services.auth.facade import AuthSessionFacade
from tokenward.domain.services.auth.one_shot import OneShotTokenManager
from tokenward.domain.services.auth.password_policy import PasswordPolicyValidator
from tokenward.domain.services.auth.refresh_ledger import RefreshTokenLedger
from tokenward.domain.services.auth.revocation import RevocationRegistry
from tokenward.domain.services.auth.token_codec import TokenCodec
from tokenward.domain.services.auth.token_issuer import TokenIssuer
from tokenward.domain.services.auth.token_verifier import TokenVerifier
from tokenward.domain.value_objects.token_claims import OneShotPurpose
from tokenward.infrastructure.clock import SystemClock
from tokenward.infrastructure.notifications.logging_notifier import LoggingNotifier
from tokenward.infrastructure.rate_limiting import NoopRateLimiter, SlidingWindowRateLimiter
from tokenward.infrastructure.redis import close_redis_client, create_redis_client
from tokenward.infrastructure.retry import StoreRetryPolicy
from tokenward.infrastructure.security.password_hasher import PasslibPasswordHasher
from tokenward.infrastructure.stores.memory import (
    InMemoryCredentialStore,
    InMemoryOneShotTokenStore,
    InMemoryRefreshTokenStore,
    InMemoryRevocationStore,
)
from tokenward.infrastructure.stores.redis_stores import (
    RedisOneShotTokenStore,
    RedisRefreshTokenStore,
    RedisRevocationStore,
)


def get_token_codec(settings: Settings) -> TokenCodec:
    return TokenCodec(
        settings.signing_key,
        verification_key=settings.verification_key,
        algorithm=settings.JWT_ALGORITHM,
        issuer=settings.JWT_ISSUER,
        audience=settings.JWT_AUDIENCE,
    )


def get_token_stores(settings: Settings, redis_client: Optional[Redis] = None):
    """Return ``(refresh_store, revocation_store, one_shot_store)`` for STORE_BACKEND."""
    if settings.STORE_BACKEND == "redis":
        client = redis_client or create_redis_client(settings)
        retry = StoreRetryPolicy.from_settings(settings)
        prefix = settings.REDIS_KEY_PREFIX
        return (
            RedisRefreshTokenStore(client, prefix, retry),
            RedisRevocationStore(client, prefix, retry),
            RedisOneShotTokenStore(client, prefix, retry),
        )
    return InMemoryRefreshTokenStore(), InMemoryRevocationStore(), InMemoryOneShotTokenStore()


def get_rate_limiter(settings: Settings, clock: IClock) -> IRateLimiter:
    if not settings.RATE_LIMIT_ENABLED:
        return NoopRateLimiter()
    return SlidingWindowRateLimiter(
        clock,
        limit=settings.RATE_LIMIT_ATTEMPTS,
        window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
    )


def build_auth_facade(
    settings: Optional[Settings] = None,
    *,
    clock: Optional[IClock] = None,
    credentials: Optional[ICredentialStore] = None,
    hasher: Optional[IPasswordHasher] = None,
    notifier: Optional[INotifier] = None,
    rate_limiter: Optional[IRateLimiter] = None,
    redis_client: Optional[Redis] = None,
    refresh_store: Optional[IRefreshTokenStore] = None,
    revocation_store: Optional[IRevocationStore] = None,
    one_shot_store: Optional[IOneShotTokenStore] = None,
) -> AuthSessionFacade:
    """Wire an ``AuthSessionFacade`` from settings, with optional overrides.

    Any collaborator passed explicitly replaces the one the settings would
    select, which is how tests inject a frozen clock or a fast hasher.
    """
    settings = settings or default_settings
    clock = clock or SystemClock()

    stores = get_token_stores(settings, redis_client)
    refresh_store = refresh_store or stores[0]
    revocation_store = revocation_store or stores[1]
    one_shot_store = one_shot_store or stores[2]

    codec = get_token_codec(settings)
    registry = RevocationRegistry(revocation_store, clock, retention=settings.max_token_ttl)
    ledger = RefreshTokenLedger(refresh_store, registry, clock, refresh_ttl=settings.refresh_token_ttl)
    issuer = TokenIssuer(codec, clock, ledger, access_ttl=settings.access_token_ttl)
    verifier = TokenVerifier(codec, registry, clock)
    one_shot = OneShotTokenManager(
        codec,
        clock,
        one_shot_store,
        ttls={
            OneShotPurpose.RESET: settings.password_reset_token_ttl,
            OneShotPurpose.VERIFY: settings.email_verification_token_ttl,
        },
    )
    policy = PasswordPolicyValidator.from_settings(settings) if settings.PASSWORD_POLICY_ENABLED else None

    return AuthSessionFacade(
        credentials=credentials or InMemoryCredentialStore(clock),
        hasher=hasher or PasslibPasswordHasher.from_settings(settings),
        issuer=issuer,
        verifier=verifier,
        ledger=ledger,
        one_shot=one_shot,
        notifier=notifier or LoggingNotifier(),
        clock=clock,
        rate_limiter=rate_limiter or get_rate_limiter(settings, clock),
        password_policy=policy,
    )


async def close_auth_facade(facade: AuthSessionFacade) -> None:
    """Release the connections held by a facade's stores.

    Only the Redis backend holds any; the in-memory stores need no cleanup.
    """
    store = facade.ledger.store
    if isinstance(store, RedisRefreshTokenStore):
        await close_redis_client(store.redis)
