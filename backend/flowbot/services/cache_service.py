# /flowbot/services/cache_service.py

import asyncio
import logging
import time
from typing import Dict, Optional, Tuple
import redis.asyncio as redis

from flowbot.config.settings import settings
from flowbot.utils.circuit_breaker import CircuitBreaker
from flowbot.utils.metrics import cache_operations

# Key-value backends for every per-chat map of the core (flow state, recovery
# state, prompt recency, last-send timestamps). Values are strings; callers
# serialize. TTLs are in milliseconds.

logger = logging.getLogger(__name__)


class KeyValueStore:
    """Async string store with optional per-key expiry."""

    async def get(self, key: str) -> Optional[str]:
        raise NotImplementedError

    async def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None

    async def close(self) -> None:
        return None


class InMemoryKeyValueStore(KeyValueStore):
    """
    Process-local store. Each key with a TTL owns one expiry handle scheduled
    with loop.call_later; writing the key again cancels and re-arms it.
    """

    def __init__(self, clock=time.monotonic):
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._clock = clock

    def __len__(self) -> int:
        return len(self._data)

    async def get(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, deadline = entry
        # The timer may not have fired yet when the loop is busy
        if deadline is not None and self._clock() >= deadline:
            self._evict(key)
            return None
        return value

    async def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        self._cancel_timer(key)
        if ttl_ms is not None and ttl_ms > 0:
            seconds = ttl_ms / 1000
            self._data[key] = (value, self._clock() + seconds)
            loop = asyncio.get_running_loop()
            self._timers[key] = loop.call_later(seconds, self._evict, key)
        else:
            self._data[key] = (value, None)

    async def delete(self, key: str) -> None:
        self._evict(key)

    async def close(self) -> None:
        for handle in self._timers.values():
            handle.cancel()
        self._timers.clear()
        self._data.clear()

    def _cancel_timer(self, key: str) -> None:
        handle = self._timers.pop(key, None)
        if handle is not None:
            handle.cancel()

    def _evict(self, key: str) -> None:
        self._cancel_timer(key)
        self._data.pop(key, None)


class RedisKeyValueStore(KeyValueStore):
    """
    Redis-backed store. Every call goes through the circuit breaker; failures
    are logged, counted and degraded to a miss so a Redis outage never breaks
    message handling.
    """

    def __init__(self, client: redis.Redis, prefix: str = "", circuit_breaker: Optional[CircuitBreaker] = None):
        self.redis = client
        self.prefix = prefix
        self.circuit_breaker = circuit_breaker or CircuitBreaker()

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[str]:
        try:
            result = await self.circuit_breaker.call(self.redis.get, self._key(key))
            cache_operations.labels(operation="get", status="hit" if result else "miss").inc()
            if result is None:
                return None
            return result.decode('utf-8') if isinstance(result, bytes) else str(result)
        except Exception as e:
            cache_operations.labels(operation="get", status="error").inc()
            logger.warning(f"Cache get failed for key {self._key(key)}: {e}")
            return None

    async def set(self, key: str, value: str, ttl_ms: Optional[int] = None) -> None:
        try:
            if ttl_ms is not None and ttl_ms > 0:
                await self.circuit_breaker.call(self.redis.set, self._key(key), value, px=int(ttl_ms))
            else:
                await self.circuit_breaker.call(self.redis.set, self._key(key), value)
            cache_operations.labels(operation="set", status="success").inc()
        except Exception as e:
            cache_operations.labels(operation="set", status="error").inc()
            logger.warning(f"Cache set failed for key {self._key(key)}: {e}")

    async def delete(self, key: str) -> None:
        try:
            await self.circuit_breaker.call(self.redis.delete, self._key(key))
            cache_operations.labels(operation="delete", status="success").inc()
        except Exception as e:
            cache_operations.labels(operation="delete", status="error").inc()
            logger.warning(f"Cache delete failed for key {self._key(key)}: {e}")

    async def exists(self, key: str) -> bool:
        try:
            result = await self.circuit_breaker.call(self.redis.exists, self._key(key))
            cache_operations.labels(operation="exists", status="success").inc()
            return bool(result)
        except Exception as e:
            cache_operations.labels(operation="exists", status="error").inc()
            logger.warning(f"Cache exists failed for key {self._key(key)}: {e}")
            return False

    async def close(self) -> None:
        await self.redis.aclose()


def create_redis_client(redis_url: str) -> Optional[redis.Redis]:
    try:
        pool = redis.ConnectionPool.from_url(redis_url, max_connections=20)
        return redis.Redis(connection_pool=pool)
    except Exception as e:
        logger.critical(f"Failed to connect to Redis at {redis_url}: {e}")
        return None


def create_key_value_store(
    driver: Optional[str] = None,
    redis_client: Optional[redis.Redis] = None,
    prefix: str = "",
) -> KeyValueStore:
    """
    Pick a backend: explicit driver, then the FLOW_STORE setting, then memory.
    Test mode always gets memory. A Redis store that cannot be built falls
    back to memory with a warning.
    """
    if settings.is_test:
        return InMemoryKeyValueStore()

    driver = (driver or settings.flow_store or "memory").lower()
    if driver == "redis":
        client = redis_client or create_redis_client(settings.redis_url)
        if client is not None:
            return RedisKeyValueStore(client, prefix=prefix)
        logger.warning("Redis store requested but unavailable; falling back to in-memory store.")
    elif driver != "memory":
        logger.warning(f"Unknown store driver '{driver}'; using in-memory store.")
    return InMemoryKeyValueStore()
