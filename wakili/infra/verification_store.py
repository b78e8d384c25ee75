import logging
from datetime import datetime, timedelta
from typing import Dict, Protocol, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from wakili.infra.clock import Clock, utc_now

logger = logging.getLogger("wakili.verification_store")


class VerificationStore(Protocol):
    async def put(self, key: str, value: str, ttl_seconds: int) -> None: ...

    async def get(self, key: str) -> str | None: ...

    async def delete(self, key: str) -> None: ...

    async def close(self) -> None: ...


class InMemoryVerificationStore:
    def __init__(self, clock: Clock = utc_now) -> None:
        self.clock = clock
        self._entries: Dict[str, Tuple[str, datetime]] = {}

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        self._prune()
        self._entries[key] = (value, self.clock() + timedelta(seconds=ttl_seconds))

    async def get(self, key: str) -> str | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at <= self.clock():
            self._entries.pop(key, None)
            return None
        return value

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def close(self) -> None:
        return None

    def _prune(self) -> None:
        now = self.clock()
        for key, (_, expires_at) in list(self._entries.items()):
            if expires_at <= now:
                self._entries.pop(key, None)


class RedisVerificationStore:
    def __init__(self, redis_url: str, redis_client: redis.Redis | None = None) -> None:
        self.redis = redis_client or redis.from_url(redis_url, encoding="utf-8", decode_responses=False)

    async def put(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.redis.set(self._key(key), value, ex=ttl_seconds)
        except RedisError:
            logger.warning("redis verification store write failed")
            raise

    async def get(self, key: str) -> str | None:
        try:
            value = await self.redis.get(self._key(key))
        except RedisError:
            logger.warning("redis verification store read failed")
            raise
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode()
        return str(value)

    async def delete(self, key: str) -> None:
        try:
            await self.redis.delete(self._key(key))
        except RedisError:
            logger.warning("redis verification store delete failed")
            raise

    async def close(self) -> None:
        try:
            await self.redis.aclose()
        except RedisError:
            logger.warning("redis verification store close failed")

    def _key(self, key: str) -> str:
        return f"verification:{key}"


def create_verification_store(app_settings) -> VerificationStore:
    if getattr(app_settings, "redis_url", None):
        return RedisVerificationStore(app_settings.redis_url)
    return InMemoryVerificationStore()
