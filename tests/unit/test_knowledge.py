# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the project knowledge retriever."""

from pathlib import Path

import pytest

from src.core.memory.knowledge import (
    NO_KNOWLEDGE_TEXT,
    KnowledgeDocument,
    ProjectKnowledgeRetriever,
    combine_documents,
)
from src.infrastructure.vectors.qdrant_client import QdrantError

CASE_STUDY = (
    "The campus dining project replaces paper meal cards with a mobile app. "
    "The university funds the project and the dean approves the budget."
)


@pytest.fixture
def knowledge(fake_qdrant, fake_embedder, settings, policy) -> ProjectKnowledgeRetriever:
    """Create a knowledge retriever over in-memory backends."""
    return ProjectKnowledgeRetriever(fake_qdrant, fake_embedder, settings, policy)


@pytest.mark.unit
class TestCombineDocuments:
    """Test cases for prompt formatting of documents."""

    def test_numbered_sections_with_sources(self) -> None:
        """Test that each document gets a header and its metadata."""
        text = combine_documents(
            [
                KnowledgeDocument("First chunk.", {"source": "docs/brief.md", "filename": "brief.md"}),
                KnowledgeDocument("  Second chunk.  "),
            ]
        )

        assert text.startswith("--- Document 1 ---\nSource: docs/brief.md\nFile: brief.md\n\nFirst chunk.")
        assert "--- Document 2 ---\n\nSecond chunk.\n" in text

    def test_no_documents(self) -> None:
        """Test that nothing formats to an empty string."""
        assert combine_documents([]) == ""


@pytest.mark.unit
class TestProjectKnowledgeRetriever:
    """Test cases for ingestion and retrieval."""

    @pytest.mark.asyncio
    async def test_ensure_collection(self, knowledge, fake_qdrant) -> None:
        """Test that the knowledge collection is created once."""
        await knowledge.ensure_collection()
        await knowledge.ensure_collection()

        assert "project_documents" in fake_qdrant.collections

    @pytest.mark.asyncio
    async def test_add_texts_chunks_long_documents(self, knowledge, fake_qdrant) -> None:
        """Test that documents over the chunk size are split."""
        stored = await knowledge.add_texts(["word " * 500], [{"source": "long.md"}])

        points = fake_qdrant.points("project_documents", source="long.md")
        assert stored == len(points) > 1
        assert all(len(p["content"]) <= 1000 for p in points)

    @pytest.mark.asyncio
    async def test_reingesting_is_idempotent(self, knowledge, fake_qdrant) -> None:
        """Test that the same document maps to the same point ids."""
        await knowledge.add_texts([CASE_STUDY], [{"source": "case.md"}])
        await knowledge.add_texts([CASE_STUDY], [{"source": "case.md"}])

        assert len(fake_qdrant.points("project_documents")) == 1

    @pytest.mark.asyncio
    async def test_retrieve_returns_best_match(self, knowledge) -> None:
        """Test that the most similar document ranks first."""
        await knowledge.add_texts(
            [CASE_STUDY, "Sprint reviews happen every second Friday."],
            [{"source": "case.md"}, {"source": "process.md"}],
        )

        documents = await knowledge.retrieve(CASE_STUDY)

        assert documents[0].content == CASE_STUDY
        assert documents[0].metadata["source"] == "case.md"
        assert "content" not in documents[0].metadata
        assert len(documents) <= knowledge.top_k

    @pytest.mark.asyncio
    async def test_blank_query(self, knowledge) -> None:
        """Test that a blank query retrieves nothing."""
        assert await knowledge.retrieve("  ") == []

    @pytest.mark.asyncio
    async def test_knowledge_for_without_documents(self, knowledge) -> None:
        """Test the notice returned when nothing matches."""
        assert await knowledge.knowledge_for("Who funds the project?") == NO_KNOWLEDGE_TEXT

    @pytest.mark.asyncio
    async def test_knowledge_for_formats_documents(self, knowledge) -> None:
        """Test that matches are formatted for the prompt."""
        await knowledge.add_texts([CASE_STUDY], [{"source": "case.md"}])

        text = await knowledge.knowledge_for(CASE_STUDY)

        assert text.startswith("--- Document 1 ---\nSource: case.md")

    @pytest.mark.asyncio
    async def test_search_failure_raises(self, knowledge, fake_qdrant) -> None:
        """Test that a vector store failure reaches the caller."""
        fake_qdrant.fail_search = True

        with pytest.raises(QdrantError):
            await knowledge.knowledge_for("Who funds the project?")

    @pytest.mark.asyncio
    async def test_add_files_skips_missing_and_unsupported(
        self, knowledge, fake_qdrant, tmp_path: Path
    ) -> None:
        """Test that only readable text files are ingested."""
        brief = tmp_path / "brief.md"
        brief.write_text(CASE_STUDY, encoding="utf-8")
        image = tmp_path / "diagram.png"
        image.write_bytes(b"\x89PNG")

        stored = await knowledge.add_files([brief, image, tmp_path / "missing.txt"])

        points = fake_qdrant.points("project_documents")
        assert stored == 1
        assert points[0]["filename"] == "brief.md"
        assert points[0]["file_type"] == ".md"

    @pytest.mark.asyncio
    async def test_add_files_with_nothing_readable(self, knowledge, tmp_path: Path) -> None:
        """Test that no readable files store nothing."""
        assert await knowledge.add_files([tmp_path / "missing.txt"]) == 0
