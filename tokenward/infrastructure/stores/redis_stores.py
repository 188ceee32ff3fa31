"""Redis-backed store adapters.

Every state transition that reads a record and then writes it runs under
optimistic locking: the participating keys are WATCHed, read, checked and
rewritten in a MULTI/EXEC block. A concurrent write aborts the EXEC with
``WatchError`` and the transition is re-evaluated against the new state, so
of two concurrent rotations of one refresh token exactly one succeeds.

Key layout (``p`` is the configured prefix)::

    p:rt:<token_id>                hash   refresh record
    p:rt:family:<family_id>        string active token id of the family
    p:rt:subject:<subject_id>      set    family ids of the subject
    p:rev:family:<family_id>       hash   family revocation entry
    p:rev:subject:<subject_id>     hash   latest subject revocation entry
    p:rev:index                    zset   revocation keys scored by retain-until
    p:os:<token_id>                hash   one-shot record
    p:os:open:<subject>:<purpose>  string outstanding one-shot token id

Records carry a Redis TTL derived from their own lifetime so abandoned keys
disappear without a sweeper.
"""

import math
import secrets
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from redis.asyncio import Redis
from redis.exceptions import WatchError
from structlog import get_logger

from tokenward.domain.entities.records import (
    OneShotTokenRecord,
    RefreshTokenRecord,
    RevocationEntry,
    RevocationScope,
)
from tokenward.domain.interfaces.stores import (
    IOneShotTokenStore,
    IRefreshTokenStore,
    IRevocationStore,
    RedemptionResult,
    RotationResult,
)
from tokenward.domain.value_objects.token_claims import OneShotPurpose, from_timestamp, to_timestamp
from tokenward.domain.value_objects.token_id import mask
from tokenward.infrastructure.retry import StoreRetryPolicy

logger = get_logger(__name__)


def _ttl_seconds(start: datetime, end: datetime) -> int:
    return max(1, math.ceil((end - start).total_seconds()))


def _extended_ttl(ttl: int, remaining: int) -> int:
    # Redis reports -2 for a missing key and -1 for a key without expiry.
    return max(ttl, remaining)


def _ts(moment: Optional[datetime]) -> str:
    return "" if moment is None else repr(to_timestamp(moment))


def _dt(value: Optional[str]) -> Optional[datetime]:
    return from_timestamp(float(value)) if value else None


def _flag(value: Optional[str]) -> bool:
    return value == "1"


class _RedisStore:
    def __init__(self, redis: Redis, key_prefix: str = "tw", retry: Optional[StoreRetryPolicy] = None):
        self.redis = redis
        self.key_prefix = key_prefix
        self.retry = retry or StoreRetryPolicy()

    def _key(self, *parts: str) -> str:
        return ":".join((self.key_prefix, *parts))


class RedisRefreshTokenStore(_RedisStore, IRefreshTokenStore):
    """Refresh ledger with WATCH/MULTI/EXEC rotation."""

    def _record_key(self, token_id: str) -> str:
        return self._key("rt", token_id)

    def _family_key(self, family_id: str) -> str:
        return self._key("rt", "family", family_id)

    def _subject_key(self, subject_id: str) -> str:
        return self._key("rt", "subject", subject_id)

    @staticmethod
    def _dump(record: RefreshTokenRecord) -> Dict[str, str]:
        return {
            "family_id": record.family_id,
            "subject_id": record.subject_id,
            "issued_at": _ts(record.issued_at),
            "expires_at": _ts(record.expires_at),
            "consumed": "1" if record.consumed else "0",
            "consumed_at": _ts(record.consumed_at),
            "label": record.label or "",
        }

    @staticmethod
    def _load(token_id: str, data: Dict[str, str]) -> RefreshTokenRecord:
        return RefreshTokenRecord(
            token_id=token_id,
            family_id=data["family_id"],
            subject_id=data["subject_id"],
            issued_at=_dt(data["issued_at"]),
            expires_at=_dt(data["expires_at"]),
            consumed=_flag(data.get("consumed")),
            consumed_at=_dt(data.get("consumed_at")),
            label=data.get("label") or None,
        )

    async def add(self, record: RefreshTokenRecord) -> None:
        await self.retry.run(self._add, record)

    async def _add(self, record: RefreshTokenRecord) -> None:
        ttl = _ttl_seconds(record.issued_at, record.expires_at)
        record_key = self._record_key(record.token_id)
        family_key = self._family_key(record.family_id)
        subject_key = self._subject_key(record.subject_id)

        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(family_key)
                    previous = await pipe.get(family_key)
                    previous_key = self._record_key(previous) if previous else None
                    if previous_key is not None:
                        await pipe.watch(previous_key)
                        if not await pipe.exists(previous_key):
                            previous_key = None
                    subject_ttl = _extended_ttl(ttl, await pipe.ttl(subject_key))
                    pipe.multi()
                    if previous_key is not None:
                        # A family never has two live records.
                        pipe.hset(previous_key, mapping={"consumed": "1", "consumed_at": _ts(record.issued_at)})
                    pipe.hset(record_key, mapping=self._dump(record))
                    pipe.expire(record_key, ttl)
                    pipe.set(family_key, record.token_id, ex=ttl)
                    pipe.sadd(subject_key, record.family_id)
                    pipe.expire(subject_key, subject_ttl)
                    await pipe.execute()
                    return
                except WatchError:
                    logger.debug("Concurrent family write, retrying add", family_id=mask(record.family_id))
                    continue

    async def get(self, token_id: str) -> Optional[RefreshTokenRecord]:
        data = await self.retry.run(self.redis.hgetall, self._record_key(token_id))
        return self._load(token_id, data) if data else None

    async def rotate(
        self, old_token_id: str, successor: RefreshTokenRecord, now: datetime
    ) -> RotationResult:
        return await self.retry.run(self._rotate, old_token_id, successor, now)

    async def _rotate(
        self, old_token_id: str, successor: RefreshTokenRecord, now: datetime
    ) -> RotationResult:
        old_key = self._record_key(old_token_id)
        new_key = self._record_key(successor.token_id)
        ttl = _ttl_seconds(now, successor.expires_at)

        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(old_key)
                    data = await pipe.hgetall(old_key)
                    if not data:
                        return RotationResult.NOT_FOUND
                    current = self._load(old_token_id, data)
                    if current.is_expired(now):
                        return RotationResult.EXPIRED

                    family_key = self._family_key(current.family_id)
                    await pipe.watch(family_key)
                    active = await pipe.get(family_key)
                    if current.consumed and active == successor.token_id:
                        # An earlier attempt committed but its reply was lost.
                        return RotationResult.OK
                    if current.consumed or active != old_token_id:
                        return RotationResult.REUSED

                    subject_key = self._subject_key(current.subject_id)
                    subject_ttl = _extended_ttl(ttl, await pipe.ttl(subject_key))

                    pipe.multi()
                    pipe.hset(old_key, mapping={"consumed": "1", "consumed_at": _ts(now)})
                    pipe.hset(new_key, mapping=self._dump(successor))
                    pipe.expire(new_key, ttl)
                    pipe.set(family_key, successor.token_id, ex=ttl)
                    pipe.sadd(subject_key, current.family_id)
                    pipe.expire(subject_key, subject_ttl)
                    await pipe.execute()
                    return RotationResult.OK
                except WatchError:
                    # Someone touched the record or family; re-evaluate from scratch.
                    logger.debug("Concurrent rotation detected, re-evaluating", jti=mask(old_token_id))
                    continue

    async def consume_family(self, family_id: str, now: datetime) -> int:
        return await self.retry.run(self._consume_family, family_id, now)

    async def _consume_family(self, family_id: str, now: datetime) -> int:
        family_key = self._family_key(family_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(family_key)
                    token_id = await pipe.get(family_key)
                    if token_id is None:
                        return 0
                    record_key = self._record_key(token_id)
                    await pipe.watch(record_key)
                    consumed = await pipe.hget(record_key, "consumed")
                    pipe.multi()
                    pipe.delete(family_key)
                    if consumed == "0":
                        pipe.hset(record_key, mapping={"consumed": "1", "consumed_at": _ts(now)})
                    await pipe.execute()
                    return 1 if consumed == "0" else 0
                except WatchError:
                    continue

    async def consume_all_for_subject(self, subject_id: str, now: datetime) -> int:
        family_ids = await self.retry.run(self.redis.smembers, self._subject_key(subject_id))
        total = 0
        for family_id in family_ids:
            total += await self.consume_family(family_id, now)
        return total

    async def list_active(self, subject_id: str, now: datetime) -> List[RefreshTokenRecord]:
        subject_key = self._subject_key(subject_id)
        family_ids = await self.retry.run(self.redis.smembers, subject_key)
        records, stale = [], []
        for family_id in sorted(family_ids):
            token_id = await self.retry.run(self.redis.get, self._family_key(family_id))
            record = await self.get(token_id) if token_id else None
            if record is not None and record.is_active(now):
                records.append(record)
            elif token_id is None:
                stale.append(family_id)
        if stale:
            await self.retry.run(self.redis.srem, subject_key, *stale)
        return sorted(records, key=lambda record: record.issued_at)


class RedisRevocationStore(_RedisStore, IRevocationStore):
    """Revocation entries with a retain-until index used by ``prune``."""

    def _entry_key(self, scope: RevocationScope, target_id: str) -> str:
        return self._key("rev", scope.value, target_id)

    @property
    def _index_key(self) -> str:
        return self._key("rev", "index")

    async def add(self, entry: RevocationEntry, retain_until: datetime) -> None:
        await self.retry.run(self._add, entry, retain_until)

    async def _add(self, entry: RevocationEntry, retain_until: datetime) -> None:
        key = self._entry_key(entry.scope, entry.target_id)
        ttl = _ttl_seconds(entry.revoked_at, retain_until)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    if entry.scope is RevocationScope.SUBJECT:
                        existing = _dt(await pipe.hget(key, "revoked_at"))
                        if existing is not None and existing > entry.revoked_at:
                            # A later subject entry already covers this one.
                            return
                    pipe.multi()
                    pipe.hset(key, mapping={"revoked_at": _ts(entry.revoked_at), "reason": entry.reason})
                    pipe.expire(key, ttl)
                    pipe.zadd(self._index_key, {key: to_timestamp(retain_until)})
                    await pipe.execute()
                    return
                except WatchError:
                    continue

    async def get_family(self, family_id: str) -> Optional[RevocationEntry]:
        return await self._get(RevocationScope.FAMILY, family_id)

    async def get_subject(self, subject_id: str) -> Optional[RevocationEntry]:
        return await self._get(RevocationScope.SUBJECT, subject_id)

    async def _get(self, scope: RevocationScope, target_id: str) -> Optional[RevocationEntry]:
        data = await self.retry.run(self.redis.hgetall, self._entry_key(scope, target_id))
        if not data:
            return None
        return RevocationEntry(
            scope=scope,
            target_id=target_id,
            revoked_at=_dt(data["revoked_at"]),
            reason=data.get("reason") or "unspecified",
        )

    async def prune(self, now: datetime) -> int:
        return await self.retry.run(self._prune, now)

    async def _prune(self, now: datetime) -> int:
        # Strictly before ``now``, matching the in-memory store.
        cutoff = to_timestamp(now)
        keys = await self.redis.zrangebyscore(self._index_key, "-inf", f"({cutoff!r}")
        removed = 0
        for key in keys:
            removed += await self._prune_key(key, cutoff)
        return removed

    async def _prune_key(self, key: str, cutoff: float) -> int:
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    # Entry writes touch the entry key, so watching it catches
                    # a revocation renewed after the index was read.
                    await pipe.watch(key)
                    score = await pipe.zscore(self._index_key, key)
                    if score is None or score >= cutoff:
                        return 0
                    pipe.multi()
                    pipe.delete(key)
                    pipe.zrem(self._index_key, key)
                    await pipe.execute()
                    return 1
                except WatchError:
                    continue


class RedisOneShotTokenStore(_RedisStore, IOneShotTokenStore):
    def _record_key(self, token_id: str) -> str:
        return self._key("os", token_id)

    def _open_key(self, subject_id: str, purpose: OneShotPurpose) -> str:
        return self._key("os", "open", subject_id, purpose.value)

    @staticmethod
    def _load(token_id: str, data: Dict[str, str]) -> OneShotTokenRecord:
        return OneShotTokenRecord(
            token_id=token_id,
            subject_id=data["subject_id"],
            purpose=OneShotPurpose(data["purpose"]),
            issued_at=_dt(data["issued_at"]),
            expires_at=_dt(data["expires_at"]),
            consumed=_flag(data.get("consumed")),
            consumed_at=_dt(data.get("consumed_at")),
        )

    async def add(self, record: OneShotTokenRecord) -> None:
        await self.retry.run(self._add, record)

    async def _add(self, record: OneShotTokenRecord) -> None:
        open_key = self._open_key(record.subject_id, record.purpose)
        record_key = self._record_key(record.token_id)
        ttl = _ttl_seconds(record.issued_at, record.expires_at)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(open_key)
                    previous = await pipe.get(open_key)
                    previous_key = self._record_key(previous) if previous else None
                    if previous_key is not None:
                        await pipe.watch(previous_key)
                        if not await pipe.exists(previous_key):
                            previous_key = None
                    pipe.multi()
                    if previous_key is not None:
                        pipe.hset(previous_key, mapping={"consumed": "1", "consumed_at": _ts(record.issued_at)})
                    pipe.hset(
                        record_key,
                        mapping={
                            "subject_id": record.subject_id,
                            "purpose": record.purpose.value,
                            "issued_at": _ts(record.issued_at),
                            "expires_at": _ts(record.expires_at),
                            "consumed": "1" if record.consumed else "0",
                            "consumed_at": _ts(record.consumed_at),
                        },
                    )
                    pipe.expire(record_key, ttl)
                    pipe.set(open_key, record.token_id, ex=ttl)
                    await pipe.execute()
                    return
                except WatchError:
                    continue

    async def get(self, token_id: str) -> Optional[OneShotTokenRecord]:
        data = await self.retry.run(self.redis.hgetall, self._record_key(token_id))
        return self._load(token_id, data) if data else None

    async def claim(
        self, token_id: str, purpose: OneShotPurpose, now: datetime
    ) -> RedemptionResult:
        # Identifies this claim so a retry can recognise its own committed write.
        claim_id = secrets.token_hex(8)
        return await self.retry.run(self._claim, token_id, purpose, now, claim_id)

    async def _claim(
        self, token_id: str, purpose: OneShotPurpose, now: datetime, claim_id: str
    ) -> RedemptionResult:
        key = self._record_key(token_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    data = await pipe.hgetall(key)
                    if not data:
                        return RedemptionResult.NOT_FOUND
                    record = self._load(token_id, data)
                    if record.purpose is not purpose:
                        return RedemptionResult.PURPOSE_MISMATCH
                    if record.is_expired(now):
                        return RedemptionResult.EXPIRED
                    if record.consumed:
                        if data.get("claim_id") == claim_id:
                            return RedemptionResult.OK
                        return RedemptionResult.ALREADY_CONSUMED
                    pipe.multi()
                    pipe.hset(key, mapping={"consumed": "1", "consumed_at": _ts(now), "claim_id": claim_id})
                    await pipe.execute()
                    return RedemptionResult.OK
                except WatchError:
                    continue

    async def release(self, token_id: str) -> None:
        await self.retry.run(self._release, token_id)

    async def _release(self, token_id: str) -> None:
        key = self._record_key(token_id)
        async with self.redis.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    data = await pipe.hgetall(key)
                    if not data:
                        return
                    open_key = self._open_key(data["subject_id"], OneShotPurpose(data["purpose"]))
                    await pipe.watch(open_key)
                    if await pipe.get(open_key) != token_id:
                        # Superseded while the action ran; the newer token stays the only live one.
                        logger.debug("Superseded one-shot token left consumed", jti=mask(token_id))
                        return
                    pipe.multi()
                    pipe.hset(key, mapping={"consumed": "0", "consumed_at": "", "claim_id": ""})
                    await pipe.execute()
                    return
                except WatchError:
                    continue
