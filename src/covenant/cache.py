"""Redis-backed cache used as the fast path for credential lookups.

The cache is an accelerator, never the source of truth. Every operation
retries once after resetting the connection pool and then degrades quietly:
reads become misses and writes report ``False``. Callers decide whether a
failed write matters.
"""

from __future__ import annotations

import inspect
from typing import Any

from redis.asyncio import Redis

from covenant.logging import get_logger

logger = get_logger(__name__)


def create_redis_client(redis_url: str) -> Redis:
    """Create a pooled Redis client that returns ``str`` values."""
    return Redis.from_url(redis_url, decode_responses=True, max_connections=20)


class Cache:
    """Small key/value facade over :class:`redis.asyncio.Redis`."""

    def __init__(self, redis: Redis, *, max_retries: int = 1) -> None:
        self.redis = redis
        self.max_retries = max(0, max_retries)

    async def _recover_connection(self) -> None:
        pool = getattr(self.redis, "connection_pool", None)
        disconnect = getattr(pool, "disconnect", None)
        if not callable(disconnect):
            return
        result = disconnect()
        if inspect.isawaitable(result):
            await result

    async def _call(self, method_name: str, *args: Any, **kwargs: Any) -> Any:
        operation = getattr(self.redis, method_name)
        attempts = self.max_retries + 1
        for attempt in range(attempts):
            try:
                return await operation(*args, **kwargs)
            except Exception:
                if attempt == attempts - 1:
                    raise
                await self._recover_connection()
        raise RuntimeError(f"Redis call failed: {method_name}")

    async def get(self, key: str) -> str | None:
        try:
            value = await self._call("get", key)
        except Exception as exc:
            logger.warning("cache_get_failed", key=key, error=str(exc))
            return None
        if value is None:
            return None
        if isinstance(value, bytes):
            return value.decode()
        return str(value)

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Store ``value`` under ``key``, expiring after ``ttl`` seconds if given."""
        try:
            if ttl:
                await self._call("set", key, value, ex=ttl)
            else:
                await self._call("set", key, value)
        except Exception as exc:
            logger.warning("cache_set_failed", key=key, error=str(exc))
            return False
        return True

    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns ``False`` only when the cache could not be reached."""
        try:
            await self._call("delete", key)
        except Exception as exc:
            logger.warning("cache_delete_failed", key=key, error=str(exc))
            return False
        return True

    async def flush_all(self) -> bool:
        try:
            await self._call("flushall")
        except Exception as exc:
            logger.error("cache_flush_failed", error=str(exc))
            return False
        logger.info("cache_flushed")
        return True

    async def health(self) -> bool:
        """Check if Redis is reachable."""
        try:
            await self._call("ping")
            return True
        except Exception:
            return False

    async def close(self) -> None:
        """Close the client and release pooled connections."""
        close = getattr(self.redis, "aclose", None) or getattr(self.redis, "close", None)
        if callable(close):
            result = close()
            if inspect.isawaitable(result):
                await result
        await self._recover_connection()
