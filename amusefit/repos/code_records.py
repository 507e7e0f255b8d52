from __future__ import annotations
import abc
import asyncio
import zlib
from datetime import datetime, timedelta
from typing import AsyncContextManager, Callable

from redis import asyncio as aioredis

from ..models import VerificationRecord

Clock = Callable[[], datetime]


class RecordStore(abc.ABC):
    """Storage behind the code store. Callers hold lock(key) around read-modify-write."""

    @abc.abstractmethod
    def lock(self, key: str) -> AsyncContextManager: ...

    @abc.abstractmethod
    async def get(self, key: str) -> VerificationRecord | None: ...

    @abc.abstractmethod
    async def set(self, key: str, record: VerificationRecord, now: datetime) -> None: ...

    @abc.abstractmethod
    async def delete(self, key: str) -> None: ...

    @abc.abstractmethod
    async def expired_keys(self, now: datetime) -> list[str]: ...

    @abc.abstractmethod
    async def hit(self, key: str, window_sec: int) -> tuple[int, int]:
        """Fixed-window counter. Returns (count in window, seconds until reset)."""

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class InMemoryRecordStore(RecordStore):
    """Single-process store; everything is lost on restart."""

    def __init__(self, clock: Clock, *, lock_stripes: int = 64) -> None:
        self._clock = clock
        self._records: dict[str, VerificationRecord] = {}
        self._counters: dict[str, tuple[int, datetime]] = {}
        # fixed pool so the lock table never grows with the number of contacts
        self._locks = [asyncio.Lock() for _ in range(lock_stripes)]

    def lock(self, key: str) -> asyncio.Lock:
        return self._locks[zlib.crc32(key.encode()) % len(self._locks)]

    async def get(self, key: str) -> VerificationRecord | None:
        rec = self._records.get(key)
        return rec.model_copy() if rec else None

    async def set(self, key: str, record: VerificationRecord, now: datetime) -> None:
        self._records[key] = record.model_copy()

    async def delete(self, key: str) -> None:
        self._records.pop(key, None)

    async def expired_keys(self, now: datetime) -> list[str]:
        return [k for k, r in self._records.items() if r.is_expired(now)]

    async def hit(self, key: str, window_sec: int) -> tuple[int, int]:
        now = self._clock()
        count, resets_at = self._counters.get(key, (0, now))
        if now >= resets_at:
            count, resets_at = 0, now + timedelta(seconds=window_sec)
        count += 1
        self._counters[key] = (count, resets_at)
        # drop stale windows opportunistically
        if len(self._counters) > 10_000:
            self._counters = {k: v for k, v in self._counters.items() if v[1] > now}
        return count, max(1, int((resets_at - now).total_seconds()))

    def __len__(self) -> int:
        return len(self._records)


class RedisRecordStore(RecordStore):
    """Records as JSON strings with a native TTL, shared by every app instance."""

    LOCK_TIMEOUT_SEC = 5

    def __init__(self, redis: aioredis.Redis) -> None:
        self._redis = redis

    @classmethod
    def from_url(cls, url: str) -> "RedisRecordStore":
        return cls(aioredis.from_url(url, encoding="utf-8", decode_responses=True))

    def lock(self, key: str):
        return self._redis.lock(
            f"lock:{key}", timeout=self.LOCK_TIMEOUT_SEC, blocking_timeout=self.LOCK_TIMEOUT_SEC
        )

    async def get(self, key: str) -> VerificationRecord | None:
        raw = await self._redis.get(key)
        if not raw:
            return None
        return VerificationRecord.model_validate_json(raw)

    async def set(self, key: str, record: VerificationRecord, now: datetime) -> None:
        ttl_ms = int((record.expires_at - now).total_seconds() * 1000)
        await self._redis.set(key, record.model_dump_json(), px=max(ttl_ms, 1))

    async def delete(self, key: str) -> None:
        await self._redis.delete(key)

    async def expired_keys(self, now: datetime) -> list[str]:
        # redis evicts records on their own TTL
        return []

    async def hit(self, key: str, window_sec: int) -> tuple[int, int]:
        count = await self._redis.incr(key)
        if count == 1:
            await self._redis.expire(key, window_sec)
        ttl = await self._redis.ttl(key)
        return count, ttl if ttl and ttl > 0 else window_sec

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except Exception:
            return False

    async def close(self) -> None:
        await self._redis.aclose()
