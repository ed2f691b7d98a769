"""
Key-value cache stores behind one async interface.

- RedisCacheClient: Redis (redis.asyncio) with connection pooling and a
  circuit breaker
- MemoryCacheClient: in-process LRU store with per-key TTL, used when no
  REDIS_URL is configured and in tests

Both stores JSON-serialize values and never raise: any store failure is
logged and reported as a miss (get) or False (set).
"""
import fnmatch
import hashlib
import json
import time
from collections import OrderedDict
from typing import Any, Dict, Optional, Tuple

from redis import asyncio as redis_asyncio
from redis.exceptions import RedisError

from figbud.core.circuit_breaker import CircuitBreaker, CircuitBreakerOpenError
from figbud.core.logging import get_logger

logger = get_logger(__name__)


class CacheClient:
    """Async key-value store interface used by the response cache."""

    name = "base"

    async def get(self, key: str) -> Optional[Any]:
        raise NotImplementedError

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        raise NotImplementedError

    async def delete(self, pattern: str) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        return None

    def is_available(self) -> bool:
        return True

    def get_circuit_breaker_metrics(self) -> Optional[Dict[str, Any]]:
        return None


class MemoryCacheClient(CacheClient):
    """LRU store with TTL; evicts the least recently used key when full."""

    name = "memory"

    def __init__(self, max_entries: int = 1000, clock=time.time):
        self.max_entries = max_entries
        self._clock = clock
        # key -> (serialized value, absolute expiry)
        self._entries: "OrderedDict[str, Tuple[str, float]]" = OrderedDict()

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            return None

        serialized, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None

        self._entries.move_to_end(key)
        return json.loads(serialized)

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        try:
            serialized = json.dumps(value)
        except (TypeError, ValueError) as e:
            logger.warning(
                "cache_serialize_failed",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False

        if key in self._entries:
            self._entries.move_to_end(key)
        elif len(self._entries) >= self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("cache_evicted", key=evicted)

        self._entries[key] = (serialized, self._clock() + ttl)
        return True

    async def delete(self, pattern: str) -> int:
        matching = [k for k in self._entries if fnmatch.fnmatchcase(k, pattern)]
        for key in matching:
            del self._entries[key]
        return len(matching)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheClient(CacheClient):
    """Redis store with circuit breaker protection."""

    name = "redis"

    def __init__(self, url: str):
        self.url = url
        self._redis: Optional[redis_asyncio.Redis] = None
        self.circuit_breaker = CircuitBreaker(
            name="redis_cache",
            failure_threshold=3,
            recovery_timeout_seconds=30.0,
        )

    async def initialize(self) -> bool:
        """Open the pool and ping. Returns False (and stays unavailable) on failure."""
        try:
            logger.info("redis_initializing", url=self.url)
            self._redis = redis_asyncio.from_url(
                self.url,
                max_connections=20,
                socket_connect_timeout=5,
                socket_timeout=5,
                retry_on_timeout=True,
                decode_responses=True,
            )
            await self._redis.ping()
            logger.info("redis_initialized")
            return True
        except Exception as e:
            logger.error(
                "redis_initialization_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            self._redis = None
            return False

    async def close(self) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.aclose()
            logger.info("redis_closed")
        except Exception as e:
            logger.error("redis_close_failed", error=str(e), error_type=type(e).__name__)
        finally:
            self._redis = None

    def is_available(self) -> bool:
        return self._redis is not None and self.circuit_breaker.is_available()

    async def get(self, key: str) -> Optional[Any]:
        if not self.is_available():
            return None

        try:
            value = await self.circuit_breaker.call_async(self._redis.get, key)
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", key=key)
            return None
        except RedisError as e:
            logger.warning(
                "cache_get_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return None
        except Exception as e:
            logger.error(
                "cache_get_unexpected_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return None

        if value is None:
            return None
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            return value

    async def set(self, key: str, value: Any, ttl: int) -> bool:
        if not self.is_available():
            return False

        try:
            serialized = value if isinstance(value, str) else json.dumps(value)
            await self.circuit_breaker.call_async(self._redis.setex, key, ttl, serialized)
            return True
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", key=key)
            return False
        except (RedisError, TypeError, ValueError) as e:
            logger.warning(
                "cache_set_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
            )
            return False
        except Exception as e:
            logger.error(
                "cache_set_unexpected_error",
                key=key,
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            return False

    async def delete(self, pattern: str) -> int:
        if not self.is_available():
            return 0

        deleted_count = 0
        try:
            async for key in self._redis.scan_iter(match=pattern):
                await self.circuit_breaker.call_async(self._redis.delete, key)
                deleted_count += 1
        except CircuitBreakerOpenError:
            logger.debug("cache_circuit_breaker_open", pattern=pattern)
        except RedisError as e:
            logger.warning(
                "cache_delete_error",
                pattern=pattern,
                error=str(e),
                error_type=type(e).__name__,
            )
        return deleted_count

    def get_circuit_breaker_metrics(self) -> Dict[str, Any]:
        return self.circuit_breaker.get_metrics()


_cache_client: Optional[CacheClient] = None


async def initialize_cache(redis_url: Optional[str], memory_max_entries: int = 1000) -> CacheClient:
    """
    Build the process-wide cache store.

    Uses Redis when a URL is configured and reachable, otherwise the
    in-process memory store.
    """
    global _cache_client

    if redis_url:
        client = RedisCacheClient(redis_url)
        if await client.initialize():
            _cache_client = client
            return client
        logger.warning(
            "cache_redis_unavailable",
            message="Falling back to in-process memory cache",
        )

    _cache_client = MemoryCacheClient(max_entries=memory_max_entries)
    return _cache_client


async def close_cache() -> None:
    global _cache_client
    if _cache_client is not None:
        await _cache_client.close()
        _cache_client = None


def get_cache_client() -> CacheClient:
    """Process-wide cache store (memory store until initialize_cache runs)."""
    global _cache_client
    if _cache_client is None:
        _cache_client = MemoryCacheClient()
    return _cache_client


def hash_payload(payload: str) -> str:
    """Stable hex digest used for cache keys."""
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()
