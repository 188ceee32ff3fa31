import os

# Settings are read at import time; pin the environment before anything imports them.
os.environ["APP_ENV"] = "test"
os.environ["JWT_ALGORITHM"] = "HS256"
os.environ["JWT_SECRET_KEY"] = "test-signing-secret-0123456789abcdefghijklmnopqrstuv"
os.environ["STORE_BACKEND"] = "memory"

from datetime import datetime, timedelta, timezone

import pytest

from tokenward.domain.entities.identity import Identity, Role
from tokenward.domain.services.auth.facade import AuthSessionFacade
from tokenward.domain.services.auth.one_shot import OneShotTokenManager
from tokenward.domain.services.auth.refresh_ledger import RefreshTokenLedger
from tokenward.domain.services.auth.revocation import RevocationRegistry
from tokenward.domain.services.auth.token_codec import TokenCodec
from tokenward.domain.services.auth.token_issuer import TokenIssuer
from tokenward.domain.services.auth.token_verifier import TokenVerifier
from tokenward.infrastructure.clock import FrozenClock
from tokenward.infrastructure.notifications.logging_notifier import LoggingNotifier
from tokenward.infrastructure.security.password_hasher import PasslibPasswordHasher
from tokenward.infrastructure.stores.memory import (
    InMemoryCredentialStore,
    InMemoryOneShotTokenStore,
    InMemoryRefreshTokenStore,
    InMemoryRevocationStore,
)

TEST_SECRET = os.environ["JWT_SECRET_KEY"]
TEST_ISSUER = "https://auth.test"
TEST_AUDIENCE = "tokenward:test"
ACCESS_TTL = timedelta(minutes=15)
REFRESH_TTL = timedelta(days=7)
START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock():
    return FrozenClock(START)


@pytest.fixture
def codec():
    return TokenCodec(TEST_SECRET, issuer=TEST_ISSUER, audience=TEST_AUDIENCE)


@pytest.fixture
def refresh_store():
    return InMemoryRefreshTokenStore()


@pytest.fixture
def revocation_store():
    return InMemoryRevocationStore()


@pytest.fixture
def one_shot_store():
    return InMemoryOneShotTokenStore()


@pytest.fixture
def registry(revocation_store, clock):
    return RevocationRegistry(revocation_store, clock, retention=REFRESH_TTL)


@pytest.fixture
def ledger(refresh_store, registry, clock):
    return RefreshTokenLedger(refresh_store, registry, clock, refresh_ttl=REFRESH_TTL)


@pytest.fixture
def issuer(codec, clock, ledger):
    return TokenIssuer(codec, clock, ledger, access_ttl=ACCESS_TTL)


@pytest.fixture
def verifier(codec, registry, clock):
    return TokenVerifier(codec, registry, clock)


@pytest.fixture
def one_shot(codec, clock, one_shot_store):
    return OneShotTokenManager(codec, clock, one_shot_store)


@pytest.fixture(scope="session")
def hasher():
    """bcrypt at its minimum work factor keeps the suite fast."""
    return PasslibPasswordHasher(rounds=4)


@pytest.fixture
def credentials(clock):
    return InMemoryCredentialStore(clock)


@pytest.fixture
def notifier():
    return LoggingNotifier()


@pytest.fixture
def facade(credentials, hasher, issuer, verifier, ledger, one_shot, notifier, clock):
    return AuthSessionFacade(
        credentials=credentials,
        hasher=hasher,
        issuer=issuer,
        verifier=verifier,
        ledger=ledger,
        one_shot=one_shot,
        notifier=notifier,
        clock=clock,
    )


@pytest.fixture
def identity():
    return Identity(
        id="subject-1",
        email="alice@example.com",
        hashed_password="not-a-real-hash",
        role=Role.USER,
    )
