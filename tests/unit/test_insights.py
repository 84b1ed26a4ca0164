# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for persona insight notes."""

import pytest

from src.core.memory.insights import (
    NOTE_HISTORY_CHARS,
    InsightNotes,
    append_to_note,
    format_exchange,
)
from src.core.memory.keys import context_key, insights_key
from src.core.memory.records import LearnerRecords
from src.infrastructure.database.connection import DatabaseError


@pytest.fixture
def records(document_store) -> LearnerRecords:
    """Create learner records over the SQLite document store."""
    return LearnerRecords(document_store)


@pytest.fixture
def notes(fake_cache, records, memory_settings, policy) -> InsightNotes:
    """Create insight notes over in-memory backends."""
    return InsightNotes(fake_cache, records, memory_settings, policy)


@pytest.mark.unit
class TestNoteFormatting:
    """Test cases for note text helpers."""

    def test_exchange_is_truncated(self) -> None:
        """Test that long questions and answers are cut."""
        line = format_exchange("q" * 300, "a" * 300)

        assert line == f"Q: {'q' * 100} | A: {'a' * 150}"

    def test_first_entry_has_no_history(self) -> None:
        """Test appending to an empty note."""
        assert append_to_note("", "Who?", "The dean.") == "Q: Who? | A: The dean."

    def test_history_keeps_only_the_tail(self) -> None:
        """Test that older note text is trimmed to its last characters."""
        existing = "h" * 2000

        note = append_to_note(existing, "Who?", "The dean.")

        history, entry = note.rsplit("\n", 1)
        assert len(history) == NOTE_HISTORY_CHARS
        assert entry == "Q: Who? | A: The dean."


@pytest.mark.unit
class TestInsightNotes:
    """Test cases for reading and recording notes."""

    @pytest.mark.asyncio
    async def test_missing_note_is_none(self, notes) -> None:
        """Test that a persona without a note returns None."""
        assert await notes.get_note("u-1", "product_owner", "Product Owner") is None

    @pytest.mark.asyncio
    async def test_record_exchange_appends_and_caches(self, notes, fake_cache) -> None:
        """Test that exchanges accumulate and refresh the insights cache."""
        await notes.record_exchange("u-1", "product_owner", "Product Owner", "Who?", "The dean.")
        note = await notes.record_exchange(
            "u-1", "product_owner", "Product Owner", "Budget?", "Fixed."
        )

        assert note.insights == "Q: Who? | A: The dean.\nQ: Budget? | A: Fixed."
        assert await fake_cache.get(insights_key("u-1", "product_owner")) == note.insights
        assert await fake_cache.ttl(insights_key("u-1", "product_owner")) == 3600

    @pytest.mark.asyncio
    async def test_get_note_reads_through_cache(self, notes, fake_cache) -> None:
        """Test that a cached note is served without reading records."""
        await fake_cache.set(insights_key("u-1", "qa_lead"), "cached note")

        assert await notes.get_note("u-1", "qa_lead", "QA Lead") == "cached note"

    @pytest.mark.asyncio
    async def test_record_failure_returns_none(self, notes, monkeypatch) -> None:
        """Test that a failed save never raises."""
        async def broken(*args, **kwargs):
            raise DatabaseError("database down")

        monkeypatch.setattr(notes._records, "get_insight_note", broken)

        assert await notes.record_exchange("u-1", "qa_lead", "QA Lead", "q", "a") is None


@pytest.mark.unit
class TestCrossAgentNotes:
    """Test cases for notes shared between personas."""

    @pytest.mark.asyncio
    async def test_own_and_short_notes_are_excluded(self, notes, records) -> None:
        """Test the length filter and the exclusion of the asking persona."""
        await records.save_insight_note("u-1", "product_owner", "Product Owner", "p" * 80)
        await records.save_insight_note("u-1", "qa_lead", "QA Lead", "too short")

        previews = await notes.cross_agent_notes("u-1", "Product Owner")

        assert previews == []

    @pytest.mark.asyncio
    async def test_at_most_two_previews(self, notes, records) -> None:
        """Test that previews are limited and cut to 120 characters."""
        for persona_id, role in [
            ("qa_lead", "QA Lead"),
            ("scrum_master", "Scrum Master"),
            ("developer", "Developer"),
        ]:
            await records.save_insight_note("u-1", persona_id, role, "n" * 300)

        previews = await notes.cross_agent_notes("u-1", "Product Owner")

        assert len(previews) == 2
        for preview in previews:
            role, text = preview.split(": ", 1)
            assert text == "n" * 120 + "..."


@pytest.mark.unit
class TestPersonaContext:
    """Test cases for the cached persona context."""

    @pytest.mark.asyncio
    async def test_context_combines_notes(self, notes, records, fake_cache) -> None:
        """Test own and cross-agent sections and the five minute cache."""
        await records.save_insight_note("u-1", "product_owner", "Product Owner", "Asked about funding.")
        await records.save_insight_note("u-1", "qa_lead", "QA Lead", "q" * 60)

        text = await notes.persona_context("u-1", "product_owner", "Product Owner", "home")

        assert text.startswith("YOUR PREVIOUS INSIGHTS WITH THIS STUDENT:\nAsked about funding.")
        assert "INSIGHTS FROM OTHER TEAM MEMBERS:\n- QA Lead: " in text
        assert await fake_cache.ttl(context_key("u-1", "product_owner", "home")) == 300

    @pytest.mark.asyncio
    async def test_cached_context_is_reused(self, notes, fake_cache) -> None:
        """Test that a cached context is returned as is."""
        await fake_cache.set(context_key("u-1", "product_owner", "home"), "cached context")

        assert await notes.persona_context("u-1", "product_owner", "Product Owner", "home") == (
            "cached context"
        )

    @pytest.mark.asyncio
    async def test_recording_invalidates_contexts(self, notes, fake_cache) -> None:
        """Test that a new note line drops the user's persona contexts."""
        await fake_cache.set(context_key("u-1", "product_owner", "home"), "stale")
        await fake_cache.set(context_key("u-2", "product_owner", "home"), "other user")

        await notes.record_exchange("u-1", "qa_lead", "QA Lead", "q", "a")

        assert await fake_cache.get(context_key("u-1", "product_owner", "home")) is None
        assert await fake_cache.get(context_key("u-2", "product_owner", "home")) == "other user"

    @pytest.mark.asyncio
    async def test_empty_context_for_new_user(self, notes) -> None:
        """Test that a user without notes gets an empty context."""
        assert await notes.persona_context("u-1", "qa_lead", "QA Lead", "home") == ""
