# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Qdrant vector database client for similarity search.

This module provides an async Qdrant client wrapper. Per-user isolation is
achieved with payload filtering rather than collection naming: every memory
point carries a ``user_id`` payload field (indexed as a keyword) and all
searches and deletions are filtered on it.

Collections:
- user_memory_chunks: Per-user embedded progress, conversation and insights
- project_documents: Shared project knowledge for retrieval

Example:
    from src.infrastructure.vectors import init_qdrant, get_qdrant

    await init_qdrant(settings)
    qdrant = get_qdrant()

    results = await qdrant.search(
        "user_memory_chunks",
        query_vector=embedding,
        limit=20,
        score_threshold=0.3,
        filter_conditions={"user_id": "u-1"},
    )
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Optional, TypeVar

from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models
from qdrant_client.http.exceptions import ResponseHandlingException, UnexpectedResponse

from src.infrastructure.errors import BackendError

if TYPE_CHECKING:
    from src.core.config.settings import Settings

T = TypeVar("T")

_qdrant_client: Optional["QdrantVectorClient"] = None

# Server rejections and transport failures (REST client wraps httpx errors)
QDRANT_FAILURES = (UnexpectedResponse, ResponseHandlingException)


class QdrantError(BackendError):
    """A Qdrant request failed or the client is not connected."""


@dataclass
class SearchResult:
    """Result from a vector similarity search.

    Attributes:
        id: Point ID in Qdrant.
        score: Similarity score.
        payload: Associated metadata.
    """

    id: str
    score: float
    payload: dict[str, Any]


def build_filter(
    filter_conditions: Optional[dict[str, Any]],
    exclude_conditions: Optional[dict[str, Any]] = None,
) -> Optional[models.Filter]:
    """Build an exact-match Qdrant filter from field/value mappings.

    Args:
        filter_conditions: Payload field to required value.
        exclude_conditions: Payload field to value that must not match.

    Returns:
        A Filter with one condition per entry, or None when both are empty.
    """
    if not filter_conditions and not exclude_conditions:
        return None

    def conditions(mapping: Optional[dict[str, Any]]) -> Optional[list]:
        if not mapping:
            return None
        return [
            models.FieldCondition(key=key, match=models.MatchValue(value=value))
            for key, value in mapping.items()
        ]

    return models.Filter(
        must=conditions(filter_conditions),
        must_not=conditions(exclude_conditions),
    )


class QdrantVectorClient:
    """Async Qdrant client with payload-filtered operations.

    Collections are cosine-distance with keyword indexes on the payload
    fields used for filtering. Deletes always require a filter so a bug in
    a caller can never empty a shared collection.

    Example:
        client = QdrantVectorClient(settings)
        await client.connect()
        await client.ensure_collection("user_memory_chunks", 768, ["user_id"])
        await client.delete_by_filter("user_memory_chunks", {"user_id": "u-1"})
        await client.close()
    """

    def __init__(self, settings: "Settings") -> None:
        self._qdrant_settings = settings.qdrant
        self._client: Optional[AsyncQdrantClient] = None

    async def connect(self) -> None:
        """Create the client and check the server answers.

        Raises:
            QdrantError: If the server cannot be reached.
        """
        cfg = self._qdrant_settings
        try:
            self._client = AsyncQdrantClient(
                host=cfg.host,
                port=cfg.http_port,
                grpc_port=cfg.grpc_port,
                api_key=cfg.api_key.get_secret_value() if cfg.api_key else None,
                prefer_grpc=cfg.prefer_grpc,
                timeout=cfg.timeout,
            )
            await self._client.get_collections()
        except Exception as e:
            raise QdrantError("Failed to connect to Qdrant", e) from e

    async def close(self) -> None:
        """Release the client."""
        if self._client is not None:
            await self._client.close()
            self._client = None

    @property
    def _conn(self) -> AsyncQdrantClient:
        if self._client is None:
            raise QdrantError("Qdrant client not connected. Call connect() first.")
        return self._client

    @staticmethod
    async def _run(action: str, request: Awaitable[T]) -> T:
        try:
            return await request
        except QDRANT_FAILURES as e:
            raise QdrantError(f"Failed to {action}", e) from e

    async def ensure_collection(
        self,
        collection_name: str,
        vector_size: int,
        keyword_fields: Optional[list[str]] = None,
    ) -> bool:
        """Create a cosine collection and its payload indexes if missing.

        Args:
            collection_name: Name of the collection.
            vector_size: Dimension of the vectors.
            keyword_fields: Payload fields to index for exact-match filtering.

        Returns:
            True if the collection was created, False if it already existed.

        Raises:
            QdrantError: If the check or creation fails.
        """
        action = f"create collection: {collection_name}"
        if await self._run(action, self._conn.collection_exists(collection_name)):
            return False

        await self._run(
            action,
            self._conn.create_collection(
                collection_name=collection_name,
                vectors_config=models.VectorParams(size=vector_size, distance=models.Distance.COSINE),
            ),
        )
        for field_name in keyword_fields or []:
            await self._run(
                f"index {field_name} in: {collection_name}",
                self._conn.create_payload_index(
                    collection_name=collection_name,
                    field_name=field_name,
                    field_schema=models.PayloadSchemaType.KEYWORD,
                ),
            )
        return True

    async def upsert(self, collection_name: str, points: list[dict[str, Any]]) -> None:
        """Write points, each given as ``{"id", "vector", "payload"}``.

        Raises:
            QdrantError: If the write fails.
        """
        if not points:
            return

        structs = [
            models.PointStruct(id=p["id"], vector=p["vector"], payload=p.get("payload", {}))
            for p in points
        ]
        await self._run(
            f"upsert points to: {collection_name}",
            self._conn.upsert(collection_name=collection_name, points=structs, wait=True),
        )

    async def delete_by_filter(
        self,
        collection_name: str,
        filter_conditions: dict[str, Any],
        exclude_conditions: Optional[dict[str, Any]] = None,
    ) -> None:
        """Delete every point matching exact payload conditions.

        Args:
            collection_name: Name of the collection.
            filter_conditions: Payload field to required value, at least one.
            exclude_conditions: Payload field to value that spares a point.

        Raises:
            QdrantError: If deletion fails.
            ValueError: If no condition is given.
        """
        if not filter_conditions:
            raise ValueError("Refusing to delete without filter conditions")

        selector = models.FilterSelector(filter=build_filter(filter_conditions, exclude_conditions))
        await self._run(
            f"delete points from: {collection_name}",
            self._conn.delete(collection_name=collection_name, points_selector=selector, wait=True),
        )

    async def search(
        self,
        collection_name: str,
        query_vector: list[float],
        limit: int = 5,
        score_threshold: Optional[float] = None,
        filter_conditions: Optional[dict[str, Any]] = None,
    ) -> list[SearchResult]:
        """Return the points closest to a vector, best match first.

        Args:
            collection_name: Name of the collection.
            query_vector: The query embedding.
            limit: Maximum number of results.
            score_threshold: Minimum cosine similarity.
            filter_conditions: Exact-match payload conditions.

        Raises:
            QdrantError: If the query fails.
        """
        response = await self._run(
            f"search in: {collection_name}",
            self._conn.query_points(
                collection_name=collection_name,
                query=query_vector,
                limit=limit,
                score_threshold=score_threshold,
                query_filter=build_filter(filter_conditions),
                with_payload=True,
            ),
        )
        return [
            SearchResult(id=str(point.id), score=point.score, payload=point.payload or {})
            for point in response.points
        ]

    async def ping(self) -> bool:
        """Return whether the server lists its collections."""
        try:
            await self._run("reach Qdrant", self._conn.get_collections())
        except QdrantError:
            return False
        return True


# ========== Process-wide client ==========


async def init_qdrant(settings: "Settings") -> None:
    """Connect the process-wide vector client.

    Raises:
        QdrantError: If the server cannot be reached.
    """
    global _qdrant_client

    client = QdrantVectorClient(settings)
    await client.connect()
    _qdrant_client = client


async def close_qdrant() -> None:
    """Close the process-wide vector client if one is open."""
    global _qdrant_client

    if _qdrant_client is not None:
        await _qdrant_client.close()
        _qdrant_client = None


def get_qdrant() -> QdrantVectorClient:
    """Return the process-wide vector client.

    Raises:
        QdrantError: If init_qdrant() has not run.
    """
    if _qdrant_client is None:
        raise QdrantError("Qdrant not initialized. Call init_qdrant() first.")
    return _qdrant_client
