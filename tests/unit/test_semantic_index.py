# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the semantic memory index (Tier 2).

Covers the freshness rules, all-or-nothing refreshes, retrieval and the
incremental recording of exchanges.
"""

import asyncio

import pytest

from src.core.memory.keys import context_key, freshness_key, insights_key, user_data_key
from src.core.memory.models import ChatRecord, ContentType, StepKey, TurnRole
from src.core.memory.records import LearnerRecords
from src.core.memory.semantic_index import (
    RefreshReason,
    SemanticMemoryIndex,
    progress_document,
)
from src.core.memory.vector_index import MemoryVectorIndex
from src.infrastructure.vectors.qdrant_client import QdrantError
from src.utils.datetime import utc_now

COLLECTION = "user_memory_chunks"
STEP = "comprehensive_stakeholder_list"
NEXT_STEP = "stakeholder_categorization"


@pytest.fixture
def records(document_store) -> LearnerRecords:
    """Create learner records over the SQLite document store."""
    return LearnerRecords(document_store)


@pytest.fixture
def semantic_index(fake_cache, records, fake_qdrant, fake_embedder, memory_settings, policy):
    """Create a semantic memory index over in-memory backends."""
    vector_index = MemoryVectorIndex(fake_qdrant, COLLECTION, fake_embedder.dimension)
    return SemanticMemoryIndex(
        fake_cache,
        records,
        vector_index,
        fake_embedder,
        memory_settings,
        policy,
    )


def step_key(user_id: str = "u-1", step_id: str = STEP) -> StepKey:
    return StepKey(
        user_id=user_id,
        task_id="stakeholder_identification_analysis",
        subtask_id="stakeholder_identification",
        step_id=step_id,
    )


async def add_message(records: LearnerRecords, user_id: str, content: str, role=TurnRole.USER) -> None:
    await records.add_chat_message(
        step_key(user_id),
        ChatRecord(
            id=f"m-{content[:10]}",
            role=role,
            content=content,
            persona_id=None if role is TurnRole.USER else "product_owner",
            persona_name=None if role is TurnRole.USER else "Sarah Chen",
            timestamp=utc_now(),
        ),
    )


async def seed_history(records: LearnerRecords, user_id: str = "u-1") -> None:
    """Give a user one record of each kind."""
    await records.save_step_progress(
        user_id,
        "stakeholder_identification_analysis",
        "stakeholder_identification",
        STEP,
        step="Create a comprehensive stakeholder list",
        student_response="Students, kitchen staff, the dean.",
    )
    await add_message(records, user_id, "Who pays for the campus meals?")
    await add_message(records, user_id, "The university funds the dining hall.", TurnRole.AGENT)
    await records.save_insight_note(
        user_id,
        "product_owner",
        "Product Owner",
        "Q: Who pays for the campus meals? | A: The university funds the dining hall.",
    )


@pytest.mark.unit
class TestFreshness:
    """Test cases for staleness detection."""

    @pytest.mark.asyncio
    async def test_missing_marker_triggers_refresh(self, semantic_index) -> None:
        """Test that a user without a marker is stale."""
        assert await semantic_index.refresh_reason("u-1", STEP) == RefreshReason.MISSING_MARKER

    @pytest.mark.asyncio
    async def test_first_refresh_embeds_all_history(
        self, semantic_index, records, fake_qdrant, fake_cache
    ) -> None:
        """Test that a new user's history is embedded and a marker written."""
        await seed_history(records)

        refreshed = await semantic_index.ensure_fresh("u-1", STEP)

        marker = await semantic_index.get_marker("u-1")
        points = fake_qdrant.points(COLLECTION, user_id="u-1")
        assert refreshed is True
        assert marker.last_seen_step_id == STEP
        assert marker.chunk_count == len(points) == 4
        assert {p["content_type"] for p in points} == {"progress", "conversation", "insight"}
        assert await fake_cache.ttl(freshness_key("u-1")) == -1

    @pytest.mark.asyncio
    async def test_refresh_is_idempotent(self, semantic_index, records, fake_qdrant) -> None:
        """Test that a fresh user is not re-embedded."""
        await seed_history(records)
        await semantic_index.ensure_fresh("u-1", STEP)
        inserts = fake_qdrant.upsert_calls

        refreshed = await semantic_index.ensure_fresh("u-1", STEP)

        assert refreshed is False
        assert fake_qdrant.upsert_calls == inserts
        assert await semantic_index.refresh_reason("u-1", STEP) is None

    @pytest.mark.asyncio
    async def test_step_navigation_triggers_refresh(
        self, semantic_index, records, fake_qdrant
    ) -> None:
        """Test that moving to another step refreshes and replaces chunks."""
        await seed_history(records)
        await semantic_index.ensure_fresh("u-1", STEP)
        first = await semantic_index.get_marker("u-1")

        assert await semantic_index.refresh_reason("u-1", NEXT_STEP) == RefreshReason.STEP_CHANGED
        refreshed = await semantic_index.ensure_fresh("u-1", NEXT_STEP)

        second = await semantic_index.get_marker("u-1")
        points = fake_qdrant.points(COLLECTION, user_id="u-1")
        assert refreshed is True
        assert second.last_seen_step_id == NEXT_STEP
        assert second.generation != first.generation
        assert {p["generation"] for p in points} == {second.generation}
        assert len(points) == second.chunk_count

    @pytest.mark.asyncio
    async def test_new_records_trigger_refresh(self, semantic_index, records) -> None:
        """Test that a record written after the refresh makes memory stale."""
        await seed_history(records)
        await semantic_index.ensure_fresh("u-1", STEP)

        await add_message(records, "u-1", "What about the suppliers?")

        assert await semantic_index.refresh_reason("u-1", STEP) == RefreshReason.NEW_DATA
        assert await semantic_index.ensure_fresh("u-1", STEP) is True
        assert (await semantic_index.get_marker("u-1")).chunk_count == 5

    @pytest.mark.asyncio
    async def test_user_without_history_gets_empty_marker(self, semantic_index, fake_qdrant) -> None:
        """Test that an empty history still completes a refresh."""
        assert await semantic_index.ensure_fresh("u-1", STEP) is True

        assert (await semantic_index.get_marker("u-1")).chunk_count == 0
        assert fake_qdrant.upsert_calls == 0

    @pytest.mark.asyncio
    async def test_user_data_is_cached(self, semantic_index, records, fake_cache) -> None:
        """Test that the aggregated learner data is cached for four hours."""
        await seed_history(records)

        await semantic_index.ensure_fresh("u-1", STEP)

        assert await fake_cache.ttl(user_data_key("u-1")) == 14400

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_run_once(self, semantic_index, records, fake_qdrant) -> None:
        """Test that a waiting caller re-checks and skips a covered refresh."""
        await seed_history(records)

        results = await asyncio.gather(
            semantic_index.ensure_fresh("u-1", STEP),
            semantic_index.ensure_fresh("u-1", STEP),
        )

        assert sorted(results) == [False, True]
        assert fake_qdrant.upsert_calls == 1

    @pytest.mark.asyncio
    async def test_cache_outage_skips_refresh(self, semantic_index, fake_cache) -> None:
        """Test that an unreadable marker degrades without raising."""
        fake_cache.fail = True

        assert await semantic_index.ensure_fresh("u-1", STEP) is False


@pytest.mark.unit
class TestRefreshAtomicity:
    """Test cases for all-or-nothing refreshes."""

    @pytest.mark.asyncio
    async def test_embedding_failure_keeps_previous_memory(
        self, semantic_index, records, fake_qdrant, fake_embedder
    ) -> None:
        """Test that a failed refresh leaves marker and chunks untouched."""
        await seed_history(records)
        await semantic_index.ensure_fresh("u-1", STEP)
        marker = await semantic_index.get_marker("u-1")
        points = fake_qdrant.points(COLLECTION, user_id="u-1")

        await add_message(records, "u-1", "What about the suppliers?")
        fake_embedder.fail = True
        refreshed = await semantic_index.ensure_fresh("u-1", STEP)

        assert refreshed is False
        assert await semantic_index.get_marker("u-1") == marker
        assert fake_qdrant.points(COLLECTION, user_id="u-1") == points

    @pytest.mark.asyncio
    async def test_insert_failure_keeps_previous_memory(
        self, semantic_index, records, fake_qdrant
    ) -> None:
        """Test that a failed vector write leaves the old generation in place."""
        await seed_history(records)
        await semantic_index.ensure_fresh("u-1", STEP)
        marker = await semantic_index.get_marker("u-1")

        fake_qdrant.fail_upsert = True
        refreshed = await semantic_index.ensure_fresh("u-1", NEXT_STEP)

        assert refreshed is False
        assert await semantic_index.get_marker("u-1") == marker
        assert {p["generation"] for p in fake_qdrant.points(COLLECTION, user_id="u-1")} == {
            marker.generation
        }

    @pytest.mark.asyncio
    async def test_failed_refresh_is_retried_next_time(
        self, semantic_index, records, fake_embedder
    ) -> None:
        """Test that memory stays stale after a failure and recovers."""
        await seed_history(records)
        fake_embedder.fail = True
        assert await semantic_index.ensure_fresh("u-1", STEP) is False

        fake_embedder.fail = False

        assert await semantic_index.refresh_reason("u-1", STEP) == RefreshReason.MISSING_MARKER
        assert await semantic_index.ensure_fresh("u-1", STEP) is True


@pytest.mark.unit
class TestSearch:
    """Test cases for similarity search."""

    @pytest.mark.asyncio
    async def test_exact_match_ranks_first(self, semantic_index, records) -> None:
        """Test that results are ordered by similarity."""
        await seed_history(records)
        await semantic_index.ensure_fresh("u-1", STEP)
        query = progress_document(
            "Create a comprehensive stakeholder list",
            "Students, kitchen staff, the dean.",
        )

        results = await semantic_index.search("u-1", query)

        assert results[0].chunk.content_type is ContentType.PROGRESS
        assert results[0].similarity == pytest.approx(1.0)
        similarities = [r.similarity for r in results]
        assert similarities == sorted(similarities, reverse=True)
        assert all(s >= semantic_index.similarity_threshold for s in similarities)

    @pytest.mark.asyncio
    async def test_search_is_scoped_to_user(self, semantic_index, records) -> None:
        """Test that another user's memory is never returned."""
        await seed_history(records, "u-1")
        await seed_history(records, "u-2")
        await semantic_index.ensure_fresh("u-1", STEP)
        await semantic_index.ensure_fresh("u-2", STEP)

        results = await semantic_index.search("u-1", "Who pays for the campus meals?")

        assert results
        assert {r.chunk.user_id for r in results} == {"u-1"}

    @pytest.mark.asyncio
    async def test_search_respects_limit(self, semantic_index, records) -> None:
        """Test that k bounds the number of results."""
        await seed_history(records)
        await semantic_index.ensure_fresh("u-1", STEP)

        assert len(await semantic_index.search("u-1", "campus meals dining hall", k=2)) <= 2

    @pytest.mark.asyncio
    async def test_blank_query_returns_nothing(self, semantic_index) -> None:
        """Test that a blank query does not call the embedder."""
        assert await semantic_index.search("u-1", "   ") == []

    @pytest.mark.asyncio
    async def test_search_failure_raises(self, semantic_index, fake_qdrant) -> None:
        """Test that a vector index failure reaches the caller."""
        fake_qdrant.fail_search = True

        with pytest.raises(QdrantError):
            await semantic_index.search("u-1", "stakeholders")


@pytest.mark.unit
class TestRecordInteraction:
    """Test cases for incremental exchange recording."""

    @pytest.mark.asyncio
    async def test_exchange_is_searchable_immediately(self, semantic_index, fake_qdrant) -> None:
        """Test that a recorded exchange is inserted without a refresh."""
        inserted = await semantic_index.record_interaction(
            "u-1",
            "product_owner",
            "Who approves the budget?",
            "The dean approves the dining budget.",
            STEP,
            persona_name="Sarah Chen",
        )

        points = fake_qdrant.points(COLLECTION, user_id="u-1")
        assert inserted == 2
        assert {p["generation"] for p in points} == {"incremental"}
        assert "Sarah Chen: The dean approves the dining budget." in {p["content"] for p in points}

    @pytest.mark.asyncio
    async def test_failure_is_swallowed(self, semantic_index, fake_embedder) -> None:
        """Test that a failed recording returns zero instead of raising."""
        fake_embedder.fail = True

        assert await semantic_index.record_interaction("u-1", "qa_lead", "q", "a", STEP) == 0

    @pytest.mark.asyncio
    async def test_blank_messages_are_skipped(self, semantic_index) -> None:
        """Test that empty sides of an exchange are not embedded."""
        assert await semantic_index.record_interaction("u-1", "qa_lead", "question", "  ", STEP) == 1

    @pytest.mark.asyncio
    async def test_refresh_supersedes_incremental_chunks(
        self, semantic_index, records, fake_qdrant
    ) -> None:
        """Test that the next full refresh removes incremental chunks."""
        await semantic_index.record_interaction("u-1", "qa_lead", "question", "answer", STEP)
        await seed_history(records)

        await semantic_index.ensure_fresh("u-1", STEP)

        marker = await semantic_index.get_marker("u-1")
        assert {p["generation"] for p in fake_qdrant.points(COLLECTION, user_id="u-1")} == {
            marker.generation
        }


@pytest.mark.unit
class TestInvalidation:
    """Test cases for step change and user memory removal."""

    @pytest.mark.asyncio
    async def test_step_change_drops_persona_contexts_only(self, semantic_index, fake_cache) -> None:
        """Test that only the user's persona context entries are removed."""
        await fake_cache.set(context_key("u-1", "product_owner", "home"), "ctx")
        await fake_cache.set(context_key("u-2", "product_owner", "home"), "ctx")
        await fake_cache.set(insights_key("u-1", "product_owner"), "notes")

        removed = await semantic_index.on_step_change("u-1")

        assert removed == 1
        assert await fake_cache.get(context_key("u-2", "product_owner", "home")) == "ctx"
        assert await fake_cache.get(insights_key("u-1", "product_owner")) == "notes"

    @pytest.mark.asyncio
    async def test_clear_user_memory(self, semantic_index, records, fake_qdrant, fake_cache) -> None:
        """Test that chunks, marker and data cache are removed."""
        await seed_history(records)
        await semantic_index.ensure_fresh("u-1", STEP)

        await semantic_index.clear_user_memory("u-1")

        assert fake_qdrant.points(COLLECTION, user_id="u-1") == []
        assert await fake_cache.get(freshness_key("u-1")) is None
        assert await fake_cache.get(user_data_key("u-1")) is None
