# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Memory manager wiring the memory tiers together.

This module provides the MemoryManager class, which owns one instance of
every memory component and shares the backend clients between them:

- records: Durable learner records (document database)
- step_buffer: Tier 1 rolling window per step conversation (cache)
- semantic: Tier 2 semantic memory index (vector index + cache)
- insights: Persona insight notes (document database + cache)
- knowledge: Shared project knowledge retriever (vector index)
- assembler: Context assembler over semantic memory and knowledge

Components receive their collaborators through their constructors, so
tests build a manager from fakes the same way production builds one from
the connected clients.

Example:
    from src.core.memory import MemoryManager

    manager = MemoryManager(
        settings=settings,
        cache=get_redis(),
        qdrant_client=get_qdrant(),
        document_store=SQLDocumentStore(get_document_sessionmaker()),
        llm_client=LLMClient(settings.llm),
        embedding_service=EmbeddingService(settings),
    )
    await manager.ensure_collections()

    context = await manager.assembler.assemble(
        user_id="u-1",
        persona_id="product_owner",
        query_text="Who are the key stakeholders?",
        step_id="comprehensive_stakeholder_list",
    )
"""

from typing import TYPE_CHECKING, Optional

from src.core.intelligence.embeddings import EmbeddingService
from src.core.intelligence.llm import LLMClient
from src.core.memory.assembler import ContextAssembler
from src.core.memory.insights import InsightNotes
from src.core.memory.keys import user_prefixes
from src.core.memory.knowledge import ProjectKnowledgeRetriever
from src.core.memory.records import LearnerRecords
from src.core.memory.resilience import RetryPolicy, call_external
from src.core.memory.semantic_index import SemanticMemoryIndex
from src.core.memory.step_buffer import StepBufferMemory
from src.core.memory.vector_index import MemoryVectorIndex
from src.infrastructure.cache import RedisClient
from src.infrastructure.documents import SQLDocumentStore
from src.infrastructure.vectors import QdrantVectorClient
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from src.core.config.settings import Settings

logger = get_logger(__name__)


class MemoryManager:
    """Owns and wires every memory component.

    Attributes:
        records: Learner records.
        step_buffer: Tier 1 step buffer memory.
        vector_index: User-scoped vector index of memory chunks.
        semantic: Tier 2 semantic memory index.
        insights: Persona insight notes.
        knowledge: Project knowledge retriever.
        assembler: Context assembler.
    """

    def __init__(
        self,
        settings: "Settings",
        cache: RedisClient,
        qdrant_client: QdrantVectorClient,
        document_store: SQLDocumentStore,
        llm_client: LLMClient,
        embedding_service: EmbeddingService,
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        """Initialize the manager and all components.

        Args:
            settings: Application settings.
            cache: Connected cache client.
            qdrant_client: Connected Qdrant client.
            document_store: Document store over the learner records table.
            llm_client: Completion provider.
            embedding_service: Embedding provider.
            policy: Timeout and retry policy shared by all components.
        """
        self._cache = cache
        self._policy = policy or RetryPolicy.from_settings(settings.memory)

        self.records = LearnerRecords(document_store)
        self.step_buffer = StepBufferMemory(
            cache=cache,
            llm_client=llm_client,
            records=self.records,
            settings=settings.memory,
            policy=self._policy,
        )
        self.vector_index = MemoryVectorIndex(
            qdrant_client,
            collection=settings.qdrant.memory_collection,
            dimension=embedding_service.dimension,
        )
        self.semantic = SemanticMemoryIndex(
            cache=cache,
            records=self.records,
            vector_index=self.vector_index,
            embedding_service=embedding_service,
            settings=settings.memory,
            policy=self._policy,
        )
        self.insights = InsightNotes(cache, self.records, settings.memory, policy=self._policy)
        self.knowledge = ProjectKnowledgeRetriever(
            qdrant_client,
            embedding_service,
            settings,
            policy=self._policy,
        )
        self.assembler = ContextAssembler(self.semantic, self.knowledge, settings.memory)

        logger.info(
            "memory_manager_initialized",
            memory_collection=self.vector_index.collection,
            knowledge_collection=self.knowledge.collection,
        )

    async def ensure_collections(self) -> None:
        """Create the memory and knowledge collections if missing.

        Should be called once at startup.

        Raises:
            QdrantError: If a collection cannot be created.
        """
        await self.vector_index.ensure_collection()
        await self.knowledge.ensure_collection()

    async def forget_user(self, user_id: str) -> int:
        """Drop every derived memory entry of a user.

        Learner records are kept; semantic memory is rebuilt from them on
        the next message.

        Returns:
            Number of cache entries removed by prefix.

        Raises:
            QdrantError, RedisError: If a backend call fails.
        """
        await self.semantic.clear_user_memory(user_id)
        removed = 0
        for prefix in user_prefixes(user_id):
            removed += await call_external(
                "cache_delete_prefix",
                lambda p=prefix: self._cache.delete_by_prefix(p),
                self._policy,
            )
        logger.info("user_memory_forgotten", user_id=user_id, cache_entries=removed)
        return removed
