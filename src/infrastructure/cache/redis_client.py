# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis client for conversation state and derived caches.

This module provides the async Redis wrapper behind the memory core's
Cache Store contract: ``set(key, value, ttl_seconds)``, ``get(key)``,
``delete(key)`` and ``keys_by_prefix(prefix)``. Values are JSON encoded.
Keys are namespaced by the callers (see src.core.memory.keys), always
starting with a user scope so tenants of the shared instance never collide.

Example:
    from src.infrastructure.cache import init_redis, get_redis

    await init_redis(settings)
    cache = get_redis()
    await cache.set("conv:u-1:home_intro_hello", state, ttl_seconds=86400)
    stale = await cache.keys_by_prefix("ctx:u-1:")
"""

import json
from typing import TYPE_CHECKING, Any, Awaitable, Optional, TypeVar

from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError as RedisLibraryError

from src.infrastructure.errors import BackendError

if TYPE_CHECKING:
    from src.core.config.settings import Settings

T = TypeVar("T")

_redis_client: Optional["RedisClient"] = None

# SCAN MATCH metacharacters
_GLOB_CHARS = "\\*?[]"


class RedisError(BackendError):
    """A Redis command failed or the client is not connected."""


def _escape_glob(value: str) -> str:
    """Escape SCAN pattern metacharacters in a literal key prefix."""
    return "".join(f"\\{ch}" if ch in _GLOB_CHARS else ch for ch in value)


def _encode(value: Any) -> str:
    return json.dumps(value, ensure_ascii=False, default=str)


def _decode(raw: Optional[str]) -> Any:
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return raw


class RedisClient:
    """Async Redis client implementing the Cache Store contract.

    Every command goes through one pooled connection and maps library
    failures to RedisError, which the memory core treats as transient.

    Example:
        cache = RedisClient(settings)
        await cache.connect()
        await cache.set("insights:u-1:product_owner", note, ttl_seconds=3600)
        note = await cache.get("insights:u-1:product_owner")
        await cache.close()
    """

    def __init__(self, settings: "Settings") -> None:
        self._redis_settings = settings.redis
        self._pool: Optional[ConnectionPool] = None
        self._redis: Optional[Redis] = None

    async def connect(self) -> None:
        """Open the connection pool and check the server answers.

        Raises:
            RedisError: If the server cannot be reached.
        """
        self._pool = ConnectionPool.from_url(
            self._redis_settings.url,
            max_connections=self._redis_settings.max_connections,
            decode_responses=True,
        )
        self._redis = Redis(connection_pool=self._pool)
        await self._run("connect to Redis", self._redis.ping())

    async def close(self) -> None:
        """Release the client and its pool."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

    @property
    def _conn(self) -> Redis:
        if self._redis is None:
            raise RedisError("Redis client not connected. Call connect() first.")
        return self._redis

    @staticmethod
    async def _run(action: str, command: Awaitable[T]) -> T:
        try:
            return await command
        except RedisLibraryError as e:
            raise RedisError(f"Failed to {action}", e) from e

    # ========== Cache Store contract ==========

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """Store a JSON-encoded value, expiring after ``ttl_seconds`` if given.

        Raises:
            RedisError: If the command fails.
        """
        await self._run(f"set key: {key}", self._conn.set(key, _encode(value), ex=ttl_seconds))

    async def get(self, key: str) -> Any:
        """Return the decoded value of a key, or None when absent.

        Raises:
            RedisError: If the command fails.
        """
        return _decode(await self._run(f"get key: {key}", self._conn.get(key)))

    async def delete(self, key: str) -> bool:
        """Delete a key.

        Returns:
            True if the key existed.

        Raises:
            RedisError: If the command fails.
        """
        return await self._run(f"delete key: {key}", self._conn.delete(key)) > 0

    async def keys_by_prefix(self, prefix: str) -> list[str]:
        """List all keys starting with a literal prefix.

        Uses SCAN, so it never blocks the server the way KEYS does.

        Args:
            prefix: Literal key prefix (pattern characters are escaped).

        Returns:
            Matching keys in scan order.

        Raises:
            RedisError: If the scan fails.
        """
        pattern = f"{_escape_glob(prefix)}*"

        async def scan() -> list[str]:
            return [key async for key in self._conn.scan_iter(match=pattern)]

        return await self._run(f"scan keys with prefix: {prefix}", scan())

    async def delete_by_prefix(self, prefix: str) -> int:
        """Delete all keys starting with a literal prefix.

        Returns:
            Number of keys deleted.

        Raises:
            RedisError: If the scan or delete fails.
        """
        keys = await self.keys_by_prefix(prefix)
        if not keys:
            return 0
        return await self._run(f"delete keys with prefix: {prefix}", self._conn.delete(*keys))

    async def ttl(self, key: str) -> int:
        """Seconds until a key expires: -1 without expiry, -2 when absent."""
        return await self._run(f"read TTL of key: {key}", self._conn.ttl(key))

    async def ping(self) -> bool:
        """Return whether the server answers a PING."""
        try:
            await self._run("ping Redis", self._conn.ping())
        except RedisError:
            return False
        return True


# ========== Process-wide client ==========


async def init_redis(settings: "Settings") -> None:
    """Connect the process-wide cache client.

    Raises:
        RedisError: If the server cannot be reached.
    """
    global _redis_client

    client = RedisClient(settings)
    await client.connect()
    _redis_client = client


async def close_redis() -> None:
    """Close the process-wide cache client if one is open."""
    global _redis_client

    if _redis_client is not None:
        await _redis_client.close()
        _redis_client = None


def get_redis() -> RedisClient:
    """Return the process-wide cache client.

    Raises:
        RedisError: If init_redis() has not run.
    """
    if _redis_client is None:
        raise RedisError("Redis not initialized. Call init_redis() first.")
    return _redis_client
