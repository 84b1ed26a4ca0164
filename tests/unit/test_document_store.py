# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Unit tests for the SQL document store.

Runs against an in-memory SQLite database through aiosqlite.
"""

import importlib
from datetime import timedelta
from typing import Optional, get_type_hints

import pytest

from src.infrastructure.documents.store import SQLDocumentStore
from src.utils.datetime import utc_now


@pytest.mark.unit
class TestDocumentReadWrite:
    """Test cases for point reads and writes."""

    @pytest.mark.asyncio
    async def test_get_missing_returns_none(self, document_store: SQLDocumentStore) -> None:
        """Test that an absent document reads as None."""
        assert await document_store.get("chat_messages", "u-1", "missing") is None

    @pytest.mark.asyncio
    async def test_set_then_get(self, document_store: SQLDocumentStore) -> None:
        """Test that a written document can be read back."""
        await document_store.set("user_progress", "u-1", "home", {"name": "Introduction"})

        document = await document_store.get("user_progress", "u-1", "home")

        assert document is not None
        assert document.data == {"name": "Introduction"}
        assert document.updated_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_set_replaces_unless_merging(self, document_store: SQLDocumentStore) -> None:
        """Test replace and merge write semantics."""
        await document_store.set("agent_insights", "u-1", "qa_lead", {"a": 1, "b": 2})
        await document_store.set("agent_insights", "u-1", "qa_lead", {"b": 3}, merge=True)
        merged = await document_store.get("agent_insights", "u-1", "qa_lead")

        await document_store.set("agent_insights", "u-1", "qa_lead", {"c": 4})
        replaced = await document_store.get("agent_insights", "u-1", "qa_lead")

        assert merged.data == {"a": 1, "b": 3}
        assert replaced.data == {"c": 4}

    @pytest.mark.asyncio
    async def test_append_to_array_creates_and_counts(
        self, document_store: SQLDocumentStore
    ) -> None:
        """Test that appends create the document and bump the counter."""
        for text in ("hello", "world"):
            await document_store.append_to_array(
                "chat_messages",
                "u-1",
                "ctx",
                field="messages",
                item={"content": text},
                counter_field="message_count",
            )

        document = await document_store.get("chat_messages", "u-1", "ctx")

        assert [m["content"] for m in document.data["messages"]] == ["hello", "world"]
        assert document.data["message_count"] == 2

    @pytest.mark.asyncio
    async def test_append_to_array_unique_by(self, document_store: SQLDocumentStore) -> None:
        """Test that an item already in the array is not appended or counted again."""
        for item in ({"id": "m1"}, {"id": "m2"}, {"id": "m1"}):
            await document_store.append_to_array(
                "chat_messages",
                "u-1",
                "ctx",
                field="messages",
                item=item,
                counter_field="message_count",
                unique_by="id",
            )

        document = await document_store.get("chat_messages", "u-1", "ctx")

        assert [m["id"] for m in document.data["messages"]] == ["m1", "m2"]
        assert document.data["message_count"] == 2

    @pytest.mark.asyncio
    async def test_delete(self, document_store: SQLDocumentStore) -> None:
        """Test that delete reports whether a document was removed."""
        await document_store.set("user_progress", "u-1", "home", {})

        assert await document_store.delete("user_progress", "u-1", "home") is True
        assert await document_store.delete("user_progress", "u-1", "home") is False


@pytest.mark.unit
class TestDocumentQueries:
    """Test cases for listing and modification queries."""

    @pytest.mark.asyncio
    async def test_list_is_scoped_to_user_and_collection(
        self, document_store: SQLDocumentStore
    ) -> None:
        """Test that listing never mixes users or collections."""
        await document_store.set("chat_messages", "u-1", "b", {})
        await document_store.set("chat_messages", "u-1", "a", {})
        await document_store.set("chat_messages", "u-2", "c", {})
        await document_store.set("user_progress", "u-1", "d", {})

        documents = await document_store.list("chat_messages", "u-1")

        assert [d.doc_id for d in documents] == ["a", "b"]

    @pytest.mark.asyncio
    async def test_list_modified_since(self, document_store: SQLDocumentStore) -> None:
        """Test filtering by write time."""
        await document_store.set("chat_messages", "u-1", "old", {})
        checkpoint = utc_now()
        await document_store.set("chat_messages", "u-1", "new", {})

        documents = await document_store.list("chat_messages", "u-1", modified_since=checkpoint)

        assert [d.doc_id for d in documents] == ["new"]

    @pytest.mark.asyncio
    async def test_exists_modified_since(self, document_store: SQLDocumentStore) -> None:
        """Test the change check used by semantic memory freshness."""
        await document_store.set("chat_messages", "u-1", "ctx", {})
        checkpoint = utc_now()

        assert await document_store.exists_modified_since("u-1", checkpoint) is False

        await document_store.set("user_progress", "u-1", "home", {})

        assert await document_store.exists_modified_since("u-1", checkpoint) is True
        assert await document_store.exists_modified_since(
            "u-1", checkpoint, collections=["chat_messages"]
        ) is False
        assert await document_store.exists_modified_since("u-2", checkpoint) is False

    @pytest.mark.asyncio
    async def test_exists_modified_since_past_time(
        self, document_store: SQLDocumentStore
    ) -> None:
        """Test that documents written after an older time are found."""
        await document_store.set("chat_messages", "u-1", "ctx", {})

        assert await document_store.exists_modified_since(
            "u-1", utc_now() - timedelta(hours=1)
        ) is True


@pytest.mark.unit
class TestStoreModule:
    """Test cases for the store module itself."""

    def test_module_reloads(self) -> None:
        """Test that the class body builds with a method named ``list``."""
        module = importlib.import_module("src.infrastructure.documents.store")

        reloaded = importlib.reload(module)

        assert callable(reloaded.SQLDocumentStore.list)

    def test_annotations_resolve_to_builtins(self) -> None:
        """Test that ``list[...]`` in signatures means the builtin, not the method."""
        hints = get_type_hints(SQLDocumentStore.exists_modified_since)

        assert hints["collections"] == Optional[list[str]]
        assert hints["return"] is bool
