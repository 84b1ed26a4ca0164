# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""User-scoped vector index for semantic memory chunks.

Adapts the Qdrant client to the three operations the semantic memory
needs. Every chunk is stored as one point whose payload carries the
chunk fields; all reads and deletes are filtered by ``user_id`` so the
shared collection never mixes users.
"""

from typing import Any

from pydantic import ValidationError

from src.core.memory.models import MemoryChunk, ScoredChunk
from src.infrastructure.vectors.qdrant_client import QdrantVectorClient, SearchResult
from src.utils.logging import get_logger

logger = get_logger(__name__)

# Payload fields indexed for exact-match filtering
INDEXED_FIELDS = ["user_id", "content_type", "generation"]


class MemoryVectorIndex:
    """Vector index of memory chunks in one Qdrant collection.

    Attributes:
        collection: Qdrant collection name.
        dimension: Embedding dimension of the collection.
    """

    def __init__(
        self,
        qdrant_client: QdrantVectorClient,
        collection: str,
        dimension: int,
    ) -> None:
        """Initialize the index.

        Args:
            qdrant_client: Connected Qdrant client.
            collection: Collection holding memory chunks.
            dimension: Embedding dimension.
        """
        self._qdrant = qdrant_client
        self.collection = collection
        self.dimension = dimension

    async def ensure_collection(self) -> None:
        """Create the collection and payload indexes if missing.

        Raises:
            QdrantError: If the collection cannot be created.
        """
        created = await self._qdrant.ensure_collection(
            self.collection,
            self.dimension,
            INDEXED_FIELDS,
        )
        if created:
            logger.info(
                "memory_collection_created",
                collection=self.collection,
                dimension=self.dimension,
            )

    async def insert_many(self, chunks: list[MemoryChunk]) -> int:
        """Insert chunks with their embeddings.

        Args:
            chunks: Chunks carrying an embedding each.

        Returns:
            Number of points written.

        Raises:
            ValueError: If a chunk has no embedding or a wrong dimension.
            QdrantError: If the write fails.
        """
        if not chunks:
            return 0

        points = []
        for chunk in chunks:
            if len(chunk.embedding) != self.dimension:
                raise ValueError(
                    f"Chunk {chunk.id} has dimension {len(chunk.embedding)}, "
                    f"expected {self.dimension}"
                )
            points.append(
                {
                    "id": chunk.id,
                    "vector": chunk.embedding,
                    "payload": self._to_payload(chunk),
                }
            )

        await self._qdrant.upsert(self.collection, points)
        return len(points)

    async def delete_where(self, user_id: str, keep_generation: str | None = None) -> None:
        """Delete every chunk of a user.

        Args:
            user_id: Owning user.
            keep_generation: Spare the chunks written by this refresh.

        Raises:
            QdrantError: If the delete fails.
        """
        exclude = {"generation": keep_generation} if keep_generation else None
        await self._qdrant.delete_by_filter(
            self.collection,
            {"user_id": user_id},
            exclude_conditions=exclude,
        )

    async def similarity_search(
        self,
        user_id: str,
        vector: list[float],
        threshold: float,
        limit: int,
    ) -> list[ScoredChunk]:
        """Find a user's chunks most similar to a vector.

        Args:
            user_id: Owning user.
            vector: Query embedding.
            threshold: Minimum similarity.
            limit: Maximum number of results.

        Returns:
            Chunks above the threshold, most similar first.

        Raises:
            QdrantError: If the search fails.
        """
        results = await self._qdrant.search(
            self.collection,
            query_vector=vector,
            limit=limit,
            score_threshold=threshold,
            filter_conditions={"user_id": user_id},
        )

        scored = []
        for result in results:
            chunk = self._from_result(result)
            if chunk is None or result.score < threshold:
                continue
            scored.append(ScoredChunk(chunk=chunk, similarity=result.score))

        scored.sort(key=lambda s: s.similarity, reverse=True)
        return scored[:limit]

    @staticmethod
    def _to_payload(chunk: MemoryChunk) -> dict[str, Any]:
        return {
            "user_id": chunk.user_id,
            "content": chunk.content,
            "content_type": chunk.content_type.value,
            "persona_id": chunk.persona_id,
            "step_id": chunk.step_id,
            "generation": chunk.generation,
            "metadata": chunk.metadata,
        }

    @staticmethod
    def _from_result(result: SearchResult) -> MemoryChunk | None:
        try:
            return MemoryChunk(id=result.id, **result.payload)
        except (ValidationError, TypeError) as e:
            logger.warning("memory_chunk_malformed", point_id=result.id, error=str(e))
            return None
