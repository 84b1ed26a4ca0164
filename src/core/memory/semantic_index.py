# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Semantic memory index (Tier 2).

Embeds a user's whole learning history (progress submissions, chat
messages and persona insight notes) into the vector index and answers
similarity queries over it.

Freshness is tracked by a marker under ``memory:{user}:freshness``. A
refresh is required when the marker is missing, when the user has moved
to another step since the last refresh, or when the learner records
report a write after the marker's ``last_embedded_at``.

A refresh is a full replace. All chunks are built and embedded before
anything in the vector index changes; the new chunks are then written
under a fresh generation id and only afterwards are older generations
deleted, so a failure at any point leaves the user with the previous
memory and the previous marker, and the next request retries.

Example:
    index = SemanticMemoryIndex(cache, records, vector_index, embedder, settings.memory)
    await index.ensure_fresh("u-1", "comprehensive_stakeholder_list")
    results = await index.search("u-1", "who are the stakeholders?")
"""

import asyncio
import uuid
from typing import Optional

from pydantic import ValidationError

from src.core.config.settings import MemorySettings
from src.core.intelligence.embeddings.service import EmbeddingService
from src.core.memory.chunking import RecursiveTextSplitter
from src.core.memory.keys import (
    TTLClass,
    context_prefix,
    freshness_key,
    ttl_seconds,
    user_data_key,
)
from src.core.memory.models import (
    ContentType,
    FreshnessMarker,
    MemoryChunk,
    ScoredChunk,
    TurnRole,
    UserMemoryData,
)
from src.core.memory.records import LearnerRecords
from src.core.memory.resilience import (
    TRANSIENT_ERRORS,
    KeyedLocks,
    RetryPolicy,
    call_external,
)
from src.core.memory.vector_index import MemoryVectorIndex
from src.infrastructure.cache.redis_client import RedisClient
from src.utils.datetime import utc_now
from src.utils.logging import get_logger

logger = get_logger(__name__)


class RefreshReason:
    """Why a refresh was triggered."""

    MISSING_MARKER = "missing_marker"
    STEP_CHANGED = "step_changed"
    NEW_DATA = "new_data"


def progress_document(step: str, response: str) -> str:
    """Text embedded for a progress submission."""
    return f"Step: {step}. Student response: {response}"


def conversation_document(role: TurnRole, content: str, persona: Optional[str]) -> str:
    """Text embedded for a chat message."""
    if role is TurnRole.USER:
        return f"Student: {content}"
    return f"{persona or 'Assistant'}: {content}"


def insight_document(agent_role: str, notes: str) -> str:
    """Text embedded for a persona insight note."""
    return f"Agent {agent_role} insights: {notes}"


class SemanticMemoryIndex:
    """Long-lived semantic memory of a user's learning history.

    Attributes:
        similarity_threshold: Minimum similarity of search results.
        search_limit: Default maximum number of search results.
    """

    def __init__(
        self,
        cache: RedisClient,
        records: LearnerRecords,
        vector_index: MemoryVectorIndex,
        embedding_service: EmbeddingService,
        settings: MemorySettings,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        """Initialize the index.

        Args:
            cache: Cache store for the freshness marker and user-data cache.
            records: Learner records, the source of truth that gets embedded.
            vector_index: User-scoped vector index.
            embedding_service: Embedding provider.
            settings: Memory settings.
            policy: Timeout and retry policy for backend calls.
        """
        self._cache = cache
        self._records = records
        self._vectors = vector_index
        self._embedder = embedding_service
        self._policy = policy or RetryPolicy.from_settings(settings)
        self._splitter = RecursiveTextSplitter(settings.chunk_size, settings.chunk_overlap)
        self._concurrency = max(1, settings.embedding_concurrency)
        self._user_data_ttl = ttl_seconds(TTLClass.USER_DATA, settings)
        self._refresh_locks = KeyedLocks()
        self.similarity_threshold = settings.similarity_threshold
        self.search_limit = settings.search_limit

    # ========== Freshness ==========

    async def get_marker(self, user_id: str) -> Optional[FreshnessMarker]:
        """Read the freshness marker.

        Returns:
            The marker, or None when absent or malformed.

        Raises:
            RedisError: If the cache cannot be read.
        """
        key = freshness_key(user_id)
        raw = await call_external("freshness_get", lambda: self._cache.get(key), self._policy)
        if raw is None:
            return None
        try:
            return FreshnessMarker.model_validate(raw)
        except ValidationError as e:
            logger.warning("freshness_marker_malformed", user_id=user_id, error=str(e))
            return None

    async def refresh_reason(self, user_id: str, current_step_id: str) -> Optional[str]:
        """Decide whether the user's semantic memory needs a refresh.

        Returns:
            The reason for a refresh, or None when memory is fresh.
        """
        marker = await self.get_marker(user_id)
        if marker is None:
            return RefreshReason.MISSING_MARKER
        if marker.last_seen_step_id != current_step_id:
            return RefreshReason.STEP_CHANGED
        changed = await call_external(
            "records_changed",
            lambda: self._records.has_changes_since(user_id, marker.last_embedded_at),
            self._policy,
        )
        return RefreshReason.NEW_DATA if changed else None

    async def ensure_fresh(self, user_id: str, current_step_id: str) -> bool:
        """Refresh the user's semantic memory if it is stale.

        Refreshes of one user are serialized; a caller that waited for an
        in-flight refresh re-checks freshness and does nothing if that
        refresh already covered it.

        Args:
            user_id: User whose memory to check.
            current_step_id: Step the user is on now.

        Returns:
            True if a refresh ran and completed, False otherwise.
        """
        async with self._refresh_locks.hold(user_id):
            try:
                reason = await self.refresh_reason(user_id, current_step_id)
            except TRANSIENT_ERRORS as e:
                logger.warning("freshness_check_failed", user_id=user_id, error=str(e))
                return False

            if reason is None:
                logger.debug("semantic_memory_fresh", user_id=user_id, step_id=current_step_id)
                return False

            return await self._refresh(user_id, current_step_id, reason)

    async def _refresh(self, user_id: str, step_id: str, reason: str) -> bool:
        generation = uuid.uuid4().hex
        logger.info("semantic_refresh_started", user_id=user_id, step_id=step_id, reason=reason)

        try:
            data = await self._load_user_data(user_id)
            chunks = self.build_chunks(user_id, data, generation)
            chunks = await self._embed_chunks(chunks)
        except (*TRANSIENT_ERRORS, ValueError) as e:
            logger.warning(
                "semantic_refresh_failed",
                user_id=user_id,
                stage="prepare",
                error=str(e),
            )
            return False

        try:
            if chunks:
                await call_external(
                    "vector_insert",
                    lambda: self._vectors.insert_many(chunks),
                    self._policy,
                )
            await call_external(
                "vector_delete",
                lambda: self._vectors.delete_where(user_id, keep_generation=generation),
                self._policy,
            )
        except (*TRANSIENT_ERRORS, ValueError) as e:
            logger.warning(
                "semantic_refresh_failed",
                user_id=user_id,
                stage="replace",
                error=str(e),
            )
            return False

        marker = FreshnessMarker(
            user_id=user_id,
            last_embedded_at=data.loaded_at,
            last_seen_step_id=step_id,
            generation=generation,
            chunk_count=len(chunks),
        )
        try:
            await call_external(
                "freshness_set",
                lambda: self._cache.set(freshness_key(user_id), marker.model_dump(mode="json")),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning(
                "semantic_refresh_failed",
                user_id=user_id,
                stage="marker",
                error=str(e),
            )
            return False

        logger.info(
            "semantic_refresh_completed",
            user_id=user_id,
            step_id=step_id,
            reason=reason,
            chunks=len(chunks),
            progress=len(data.progress),
            conversations=len(data.conversations),
            insights=len(data.insights),
        )
        return True

    async def _load_user_data(self, user_id: str) -> UserMemoryData:
        """Load learner data, reusing the aggregated cache when still valid.

        The cached copy is used only if no record changed after it was loaded.
        """
        key = user_data_key(user_id)
        try:
            cached = await call_external("user_data_get", lambda: self._cache.get(key), self._policy)
        except TRANSIENT_ERRORS as e:
            logger.warning("user_data_cache_read_failed", user_id=user_id, error=str(e))
            cached = None

        if cached is not None:
            try:
                data = UserMemoryData.model_validate(cached)
            except ValidationError as e:
                logger.warning("user_data_cache_malformed", user_id=user_id, error=str(e))
            else:
                changed = await call_external(
                    "records_changed",
                    lambda: self._records.has_changes_since(user_id, data.loaded_at),
                    self._policy,
                )
                if not changed:
                    logger.debug("user_data_cache_hit", user_id=user_id)
                    return data

        data = await call_external(
            "user_data_load",
            lambda: self._records.load_user_data(user_id),
            self._policy,
        )
        try:
            await call_external(
                "user_data_set",
                lambda: self._cache.set(key, data.model_dump(mode="json"), ttl_seconds=self._user_data_ttl),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("user_data_cache_write_failed", user_id=user_id, error=str(e))
        return data

    # ========== Chunk building ==========

    def build_chunks(
        self,
        user_id: str,
        data: UserMemoryData,
        generation: str,
    ) -> list[MemoryChunk]:
        """Turn learner data into unembedded chunks."""
        chunks: list[MemoryChunk] = []

        for progress in data.progress:
            chunks.extend(
                self._split(
                    progress_document(progress.step or progress.step_id, progress.student_response),
                    user_id=user_id,
                    content_type=ContentType.PROGRESS,
                    step_id=progress.step_id,
                    generation=generation,
                    metadata={
                        "task_id": progress.task_id,
                        "subtask_id": progress.subtask_id,
                        "is_completed": progress.is_completed,
                    },
                )
            )

        for message in data.conversations:
            if not message.content.strip():
                continue
            chunks.extend(
                self._split(
                    conversation_document(
                        message.role,
                        message.content,
                        message.persona_name or message.persona_id,
                    ),
                    user_id=user_id,
                    content_type=ContentType.CONVERSATION,
                    persona_id=message.persona_id,
                    step_id=message.context_id or None,
                    generation=generation,
                    metadata={"message_id": message.id, "role": message.role.value},
                )
            )

        for note in data.insights:
            chunks.extend(
                self._split(
                    insight_document(note.agent_role, note.insights),
                    user_id=user_id,
                    content_type=ContentType.INSIGHT,
                    persona_id=note.persona_id,
                    generation=generation,
                    metadata={"agent_role": note.agent_role},
                )
            )

        return chunks

    def _split(self, text: str, **fields) -> list[MemoryChunk]:
        pieces = self._splitter.split_text(text)
        metadata = fields.pop("metadata", {})
        return [
            MemoryChunk(
                content=piece,
                metadata={**metadata, "chunk_index": i, "chunk_total": len(pieces)},
                **fields,
            )
            for i, piece in enumerate(pieces)
        ]

    async def _embed_chunks(self, chunks: list[MemoryChunk]) -> list[MemoryChunk]:
        """Embed every chunk with bounded concurrency.

        All embeddings complete before this returns; on the first failure
        the remaining calls are cancelled and the error is raised.
        """
        if not chunks:
            return []

        semaphore = asyncio.Semaphore(self._concurrency)

        async def embed(chunk: MemoryChunk) -> list[float]:
            async with semaphore:
                return await call_external(
                    "embed_chunk",
                    lambda: self._embedder.embed_text(chunk.content),
                    self._policy,
                )

        tasks = [asyncio.ensure_future(embed(chunk)) for chunk in chunks]
        try:
            vectors = await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        return [
            chunk.model_copy(update={"embedding": vector})
            for chunk, vector in zip(chunks, vectors)
        ]

    # ========== Retrieval ==========

    async def search(
        self,
        user_id: str,
        query_text: str,
        k: Optional[int] = None,
    ) -> list[ScoredChunk]:
        """Find the user's memory chunks most similar to a query.

        Args:
            user_id: User whose memory to search.
            query_text: Natural-language query.
            k: Maximum number of results, defaults to the configured limit.

        Returns:
            Chunks above the similarity floor, most similar first.

        Raises:
            EmbeddingError, QdrantError: If the search cannot be performed.
        """
        if not query_text or not query_text.strip():
            return []

        vector = await call_external(
            "embed_query",
            lambda: self._embedder.embed_text(query_text),
            self._policy,
        )
        results = await call_external(
            "vector_search",
            lambda: self._vectors.similarity_search(
                user_id,
                vector,
                threshold=self.similarity_threshold,
                limit=k or self.search_limit,
            ),
            self._policy,
        )
        logger.debug("semantic_search_completed", user_id=user_id, results=len(results))
        return results

    async def record_interaction(
        self,
        user_id: str,
        persona_id: Optional[str],
        user_msg: str,
        agent_msg: str,
        step_id: Optional[str],
        persona_name: Optional[str] = None,
    ) -> int:
        """Embed and insert one exchange right away.

        The chunks are superseded by the next full refresh. Failures are
        logged and never raised.

        Returns:
            Number of chunks inserted.
        """
        chunks: list[MemoryChunk] = []
        for role, content in ((TurnRole.USER, user_msg), (TurnRole.AGENT, agent_msg)):
            if not content or not content.strip():
                continue
            chunks.extend(
                self._split(
                    conversation_document(role, content, persona_name or persona_id),
                    user_id=user_id,
                    content_type=ContentType.CONVERSATION,
                    persona_id=persona_id,
                    step_id=step_id,
                    metadata={"role": role.value, "recorded_at": utc_now().isoformat()},
                )
            )

        try:
            chunks = await self._embed_chunks(chunks)
            inserted = await call_external(
                "vector_insert",
                lambda: self._vectors.insert_many(chunks),
                self._policy,
            )
        except (*TRANSIENT_ERRORS, ValueError) as e:
            logger.warning("record_interaction_failed", user_id=user_id, error=str(e))
            return 0

        logger.debug("interaction_recorded", user_id=user_id, chunks=inserted)
        return inserted

    # ========== Invalidation ==========

    async def on_step_change(self, user_id: str) -> int:
        """Invalidate the user's short-lived persona context entries.

        The next ``ensure_fresh`` call sees the new step and refreshes.

        Returns:
            Number of cache entries removed.
        """
        prefix = context_prefix(user_id)
        try:
            removed = await call_external(
                "context_invalidate",
                lambda: self._cache.delete_by_prefix(prefix),
                self._policy,
            )
        except TRANSIENT_ERRORS as e:
            logger.warning("step_change_invalidation_failed", user_id=user_id, error=str(e))
            return 0
        logger.info("step_change_invalidated", user_id=user_id, removed=removed)
        return removed

    async def clear_user_memory(self, user_id: str) -> None:
        """Delete the user's chunks, freshness marker and user-data cache.

        Raises:
            QdrantError, RedisError: If a backend call fails.
        """
        async with self._refresh_locks.hold(user_id):
            await call_external("vector_delete", lambda: self._vectors.delete_where(user_id), self._policy)
            await call_external("freshness_delete", lambda: self._cache.delete(freshness_key(user_id)), self._policy)
            await call_external("user_data_delete", lambda: self._cache.delete(user_data_key(user_id)), self._policy)
        logger.info("semantic_memory_cleared", user_id=user_id)
