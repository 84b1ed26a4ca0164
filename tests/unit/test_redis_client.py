# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the Redis cache client."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from src.infrastructure.cache import redis_client
from src.infrastructure.cache.redis_client import RedisClient, RedisError, _escape_glob


@pytest.fixture
def connection() -> MagicMock:
    """A stand-in for redis.asyncio.Redis with recorded commands."""
    conn = MagicMock()
    conn.set = AsyncMock(return_value=True)
    conn.get = AsyncMock(return_value=None)
    conn.delete = AsyncMock(return_value=1)
    conn.ttl = AsyncMock(return_value=300)
    conn.ping = AsyncMock(return_value=True)
    conn.scanned = []

    async def scan_iter(match: str):
        conn.scanned.append(match)
        for key in ("ctx:u-1:qa_lead:t", "ctx:u-1:product_owner:t"):
            yield key

    conn.scan_iter = scan_iter
    return conn


@pytest.fixture
def cache(settings, connection: MagicMock) -> RedisClient:
    """A client wired to the fake connection."""
    client = RedisClient(settings)
    client._redis = connection
    return client


@pytest.mark.unit
class TestRedisClient:
    """Test cases for the Cache Store commands."""

    @pytest.mark.asyncio
    async def test_set_encodes_json_with_ttl(self, cache: RedisClient, connection: MagicMock) -> None:
        """Test that values are JSON encoded and expire."""
        await cache.set("insights:u-1:qa_lead", {"note": "Zoë asked"}, ttl_seconds=3600)

        connection.set.assert_awaited_once_with("insights:u-1:qa_lead", '{"note": "Zoë asked"}', ex=3600)

    @pytest.mark.asyncio
    async def test_get_decodes(self, cache: RedisClient, connection: MagicMock) -> None:
        """Test JSON decoding, plain text passthrough and absence."""
        connection.get.side_effect = ['{"turns": 2}', "plain text", None]

        assert await cache.get("a") == {"turns": 2}
        assert await cache.get("b") == "plain text"
        assert await cache.get("c") is None

    @pytest.mark.asyncio
    async def test_delete_reports_existence(self, cache: RedisClient, connection: MagicMock) -> None:
        """Test that delete returns whether the key existed."""
        connection.delete.side_effect = [1, 0]

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False

    @pytest.mark.asyncio
    async def test_delete_by_prefix(self, cache: RedisClient, connection: MagicMock) -> None:
        """Test that prefix deletion scans an escaped pattern."""
        connection.delete.return_value = 2

        removed = await cache.delete_by_prefix("ctx:u-1:")

        assert removed == 2
        assert connection.scanned == ["ctx:u-1:*"]
        connection.delete.assert_awaited_once_with("ctx:u-1:qa_lead:t", "ctx:u-1:product_owner:t")

    def test_escape_glob(self) -> None:
        """Test that pattern characters in user ids are literal."""
        assert _escape_glob("ctx:u*[1]?:") == "ctx:u\\*\\[1\\]\\?:"

    @pytest.mark.asyncio
    async def test_library_error_is_wrapped(self, cache: RedisClient, connection: MagicMock) -> None:
        """Test that redis-py failures become RedisError."""
        connection.get.side_effect = RedisConnectionError("connection reset")

        with pytest.raises(RedisError, match="Failed to get key: conv:u-1:x") as exc_info:
            await cache.get("conv:u-1:x")

        assert isinstance(exc_info.value.original_error, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_ping(self, cache: RedisClient, connection: MagicMock, settings) -> None:
        """Test ping for a healthy, failing and unconnected client."""
        assert await cache.ping() is True

        connection.ping.side_effect = RedisConnectionError("down")
        assert await cache.ping() is False

        assert await RedisClient(settings).ping() is False


@pytest.mark.unit
class TestProcessClient:
    """Test cases for the process-wide client accessors."""

    def test_get_before_init(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Test that using the cache before init_redis is a hard error."""
        monkeypatch.setattr(redis_client, "_redis_client", None)

        with pytest.raises(RedisError, match="not initialized"):
            redis_client.get_redis()
