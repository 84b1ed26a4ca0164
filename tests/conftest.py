# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Pytest configuration and shared fixtures.

This module provides in-memory stand-ins for the backends the memory core
talks to, so unit tests run without Redis, Qdrant or a model provider:
- FakeCache: dict-backed cache with JSON round-tripping like RedisClient
- FakeQdrant: brute-force cosine search over stored points
- FakeEmbedder: deterministic bag-of-words vectors
- A mocked completion provider
- A real SQLDocumentStore over in-memory SQLite
"""

import json
import math
import re
import zlib
from collections.abc import AsyncGenerator
from pathlib import Path
from typing import Any, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from src.core.config.settings import MemorySettings, PersonaSettings, Settings
from src.core.intelligence.embeddings.service import EmbeddingError
from src.core.intelligence.llm.client import LLMResponse
from src.core.memory.resilience import RetryPolicy
from src.infrastructure.cache.redis_client import RedisError
from src.infrastructure.database.connection import create_schema, create_sessionmaker
from src.infrastructure.documents.store import SQLDocumentStore
from src.infrastructure.vectors.qdrant_client import QdrantError, SearchResult

PROJECT_ROOT = Path(__file__).resolve().parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"

EMBEDDING_DIMENSION = 8


# =============================================================================
# Marker Configuration
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Configure custom pytest markers."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


# =============================================================================
# Backend Fakes
# =============================================================================


class FakeCache:
    """In-memory cache with the RedisClient interface.

    Values are JSON round-tripped so tests see what Redis would return.
    Setting ``fail`` makes every call raise RedisError.
    """

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.ttls: dict[str, Optional[int]] = {}
        self.fail = False

    def _check(self) -> None:
        if self.fail:
            raise RedisError("Cache unavailable")

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        self._check()
        self.data[key] = json.dumps(value, ensure_ascii=False, default=str)
        self.ttls[key] = ttl_seconds

    async def get(self, key: str) -> Any:
        self._check()
        raw = self.data.get(key)
        return json.loads(raw) if raw is not None else None

    async def delete(self, key: str) -> bool:
        self._check()
        self.ttls.pop(key, None)
        return self.data.pop(key, None) is not None

    async def keys_by_prefix(self, prefix: str) -> list[str]:
        self._check()
        return sorted(k for k in self.data if k.startswith(prefix))

    async def delete_by_prefix(self, prefix: str) -> int:
        keys = await self.keys_by_prefix(prefix)
        for key in keys:
            await self.delete(key)
        return len(keys)

    async def ttl(self, key: str) -> int:
        self._check()
        if key not in self.data:
            return -2
        ttl = self.ttls.get(key)
        return -1 if ttl is None else ttl

    async def ping(self) -> bool:
        return not self.fail

    def expire(self, key: str) -> None:
        """Drop a key as if its TTL had elapsed."""
        self.data.pop(key, None)
        self.ttls.pop(key, None)


def _cosine(a: list[float], b: list[float]) -> float:
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


def _matches(payload: dict[str, Any], conditions: Optional[dict[str, Any]]) -> bool:
    return all(payload.get(k) == v for k, v in (conditions or {}).items())


class FakeQdrant:
    """In-memory vector store with the QdrantVectorClient interface.

    Attributes:
        collections: Points per collection, keyed by point id.
        upsert_calls: Number of upsert calls made.
        fail_upsert: Make upsert raise QdrantError.
        fail_search: Make search raise QdrantError.
    """

    def __init__(self) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.upsert_calls = 0
        self.fail_upsert = False
        self.fail_search = False

    async def ensure_collection(
        self,
        collection_name: str,
        vector_size: int,
        keyword_fields: Optional[list[str]] = None,
    ) -> bool:
        if collection_name in self.collections:
            return False
        self.collections[collection_name] = {}
        return True

    async def upsert(self, collection_name: str, points: list[dict[str, Any]]) -> None:
        if self.fail_upsert:
            raise QdrantError(f"Failed to upsert points to: {collection_name}")
        self.upsert_calls += 1
        store = self.collections.setdefault(collection_name, {})
        for point in points:
            store[str(point["id"])] = {
                "vector": list(point["vector"]),
                "payload": dict(point.get("payload", {})),
            }

    async def delete_by_filter(
        self,
        collection_name: str,
        filter_conditions: dict[str, Any],
        exclude_conditions: Optional[dict[str, Any]] = None,
    ) -> None:
        if not filter_conditions:
            raise ValueError("Refusing to delete without filter conditions")
        store = self.collections.get(collection_name, {})
        doomed = [
            point_id
            for point_id, point in store.items()
            if _matches(point["payload"], filter_conditions)
            and not (exclude_conditions and _matches(point["payload"], exclude_conditions))
        ]
        for point_id in doomed:
            del store[point_id]

    async def search(
        self,
        collection_name: str,
        query_vector: list[float],
        limit: int = 5,
        score_threshold: Optional[float] = None,
        filter_conditions: Optional[dict[str, Any]] = None,
    ) -> list[SearchResult]:
        if self.fail_search:
            raise QdrantError(f"Failed to search in: {collection_name}")
        results = []
        for point_id, point in self.collections.get(collection_name, {}).items():
            if not _matches(point["payload"], filter_conditions):
                continue
            score = _cosine(query_vector, point["vector"])
            if score_threshold is not None and score < score_threshold:
                continue
            results.append(SearchResult(id=point_id, score=score, payload=dict(point["payload"])))
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit]

    async def ping(self) -> bool:
        return True

    def points(self, collection_name: str, **conditions: Any) -> list[dict[str, Any]]:
        """Return stored payloads matching exact conditions."""
        return [
            p["payload"]
            for p in self.collections.get(collection_name, {}).values()
            if _matches(p["payload"], conditions)
        ]


class FakeEmbedder:
    """Deterministic bag-of-words embedder.

    Each lowercase word is hashed into one of ``dimension`` buckets, so
    texts sharing words are similar and identical texts score 1.0.
    """

    def __init__(self, dimension: int = EMBEDDING_DIMENSION) -> None:
        self._dimension = dimension
        self.fail = False
        self.calls = 0

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed_text(self, text: str) -> list[float]:
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")
        if self.fail:
            raise EmbeddingError("Embedding provider unavailable", model="fake")
        self.calls += 1
        vector = [0.0] * self._dimension
        for word in re.findall(r"[a-z0-9]+", text.lower()):
            vector[zlib.crc32(word.encode()) % self._dimension] += 1.0
        if not any(vector):
            vector[0] = 1.0
        return vector

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        return [await self.embed_text(text) for text in texts]


# =============================================================================
# Settings Fixtures
# =============================================================================


@pytest.fixture
def memory_settings() -> MemorySettings:
    """Memory settings with fast retries for tests."""
    return MemorySettings(
        retry_attempts=2,
        retry_backoff_seconds=0.0,
        external_timeout_seconds=5.0,
    )


@pytest.fixture
def settings(memory_settings: MemorySettings) -> Settings:
    """Application settings pointing at the repository config directory."""
    return Settings(
        memory=memory_settings,
        persona=PersonaSettings(
            personas_dir=CONFIG_DIR / "personas",
            curriculum_file=CONFIG_DIR / "curriculum" / "tasks.yaml",
        ),
    )


@pytest.fixture
def policy() -> RetryPolicy:
    """Retry policy without backoff delay."""
    return RetryPolicy(attempts=2, backoff_seconds=0.0, timeout_seconds=5.0)


@pytest.fixture
def personas_dir() -> Path:
    """The shipped persona roster."""
    return CONFIG_DIR / "personas"


@pytest.fixture
def curriculum_file() -> Path:
    """The shipped curriculum catalog."""
    return CONFIG_DIR / "curriculum" / "tasks.yaml"


# =============================================================================
# Backend Fixtures
# =============================================================================


@pytest.fixture
def fake_cache() -> FakeCache:
    """Provide an empty in-memory cache."""
    return FakeCache()


@pytest.fixture
def fake_qdrant() -> FakeQdrant:
    """Provide an empty in-memory vector store."""
    return FakeQdrant()


@pytest.fixture
def fake_embedder() -> FakeEmbedder:
    """Provide a deterministic embedder."""
    return FakeEmbedder()


@pytest.fixture
def mock_llm() -> MagicMock:
    """Create a mocked completion provider.

    ``complete`` returns a fixed reply; token counts are four characters
    per token.
    """
    llm = MagicMock()
    llm.complete = AsyncMock(return_value=LLMResponse(content="A helpful reply.", model="test-model"))
    llm.count_tokens = MagicMock(side_effect=lambda text, model=None: len(text) // 4)
    return llm


@pytest_asyncio.fixture(scope="function")
async def document_store() -> AsyncGenerator[SQLDocumentStore, None]:
    """Create a document store over a fresh in-memory SQLite database."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await create_schema(engine)

    yield SQLDocumentStore(create_sessionmaker(engine))

    await engine.dispose()


# =============================================================================
# Helper Fixtures
# =============================================================================


@pytest.fixture
def sample_user_id() -> str:
    """Provide a sample user ID for testing."""
    return "550e8400-e29b-41d4-a716-446655440001"
