# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for MemoryManager.

Tests the MemoryManager which wires the memory tiers together over shared
backend clients.
"""

import pytest

from src.core.memory.keys import context_key, conversation_key, insights_key
from src.core.memory.manager import MemoryManager
from src.core.memory.models import ConversationTurn, StepKey, TurnRole


@pytest.fixture
def manager(settings, fake_cache, fake_qdrant, document_store, mock_llm, fake_embedder, policy):
    """Create a MemoryManager over in-memory backends."""
    return MemoryManager(
        settings=settings,
        cache=fake_cache,
        qdrant_client=fake_qdrant,
        document_store=document_store,
        llm_client=mock_llm,
        embedding_service=fake_embedder,
        policy=policy,
    )


@pytest.mark.unit
class TestMemoryManagerWiring:
    """Test cases for component wiring."""

    def test_components_share_records(self, manager: MemoryManager) -> None:
        """Test that every tier reads the same learner records."""
        assert manager.step_buffer._records is manager.records
        assert manager.semantic._records is manager.records
        assert manager.insights._records is manager.records

    def test_collections_from_settings(self, manager: MemoryManager, fake_embedder) -> None:
        """Test collection names and dimension."""
        assert manager.vector_index.collection == "user_memory_chunks"
        assert manager.vector_index.dimension == fake_embedder.dimension
        assert manager.knowledge.collection == "project_documents"

    @pytest.mark.asyncio
    async def test_ensure_collections(self, manager: MemoryManager, fake_qdrant) -> None:
        """Test that both collections are created."""
        await manager.ensure_collections()

        assert set(fake_qdrant.collections) == {"user_memory_chunks", "project_documents"}


@pytest.mark.unit
class TestForgetUser:
    """Test cases for dropping derived memory."""

    @pytest.mark.asyncio
    async def test_forget_user(self, manager: MemoryManager, fake_cache, fake_qdrant) -> None:
        """Test that caches and chunks go while other users stay."""
        key = StepKey(user_id="u-1", task_id="t", subtask_id="s", step_id="x")
        await manager.step_buffer.append_turn(key, ConversationTurn(role=TurnRole.USER, content="hi"))
        await manager.semantic.record_interaction("u-1", "qa_lead", "question", "answer", "x")
        await fake_cache.set(insights_key("u-1", "qa_lead"), "note")
        await fake_cache.set(context_key("u-1", "qa_lead", "t"), "ctx")
        await fake_cache.set(context_key("u-2", "qa_lead", "t"), "ctx")

        removed = await manager.forget_user("u-1")

        assert removed == 3
        assert await fake_cache.get(conversation_key(key)) is None
        assert await fake_cache.get(context_key("u-2", "qa_lead", "t")) == "ctx"
        assert fake_qdrant.points("user_memory_chunks", user_id="u-1") == []

    @pytest.mark.asyncio
    async def test_learner_records_survive(self, manager: MemoryManager) -> None:
        """Test that durable records are not deleted."""
        await manager.records.save_insight_note("u-1", "qa_lead", "QA Lead", "note")

        await manager.forget_user("u-1")

        assert (await manager.records.get_insight_note("u-1", "QA Lead")).insights == "note"
