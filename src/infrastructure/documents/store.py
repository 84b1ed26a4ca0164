# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Hierarchical JSON document store on SQLAlchemy.

Documents are addressed by ``collection/user_id/doc_id`` and carry a
server-side ``updated_at`` write timestamp. The store supports point reads,
whole-document and merge writes, append-to-array writes and range queries
filtered by modification time, which is what the freshness checks of the
semantic memory rely on.

Example:
    store = SQLDocumentStore(get_document_sessionmaker())

    await store.append_to_array(
        "chat_messages", "u-1", "home_intro_hello",
        field="messages", item=message, counter_field="message_count",
    )
    changed = await store.exists_modified_since("u-1", since=marker_time)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.infrastructure.database.connection import DatabaseError, session_scope
from src.infrastructure.database.models import DocumentRecord
from src.utils.datetime import ensure_utc, utc_now
from src.utils.logging import get_logger

logger = get_logger(__name__)


@dataclass
class Document:
    """A document read from the store.

    Attributes:
        collection: Top-level collection name.
        user_id: Owning user.
        doc_id: Document id within the user's collection.
        data: JSON payload.
        updated_at: Last write time (UTC).
    """

    collection: str
    user_id: str
    doc_id: str
    data: dict[str, Any]
    updated_at: datetime

    @classmethod
    def from_record(cls, record: DocumentRecord) -> "Document":
        """Build a detached Document from an ORM row."""
        return cls(
            collection=record.collection,
            user_id=record.user_id,
            doc_id=record.doc_id,
            data=dict(record.data or {}),
            updated_at=ensure_utc(record.updated_at),
        )


class SQLDocumentStore:
    """Document Store backed by the ``memory_documents`` table.

    Attributes:
        sessionmaker: Async sessionmaker bound to the document database.
    """

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        """Initialize the store.

        Args:
            sessionmaker: Async sessionmaker bound to the document database.
        """
        self._sessionmaker = sessionmaker

    @staticmethod
    def _path_query(collection: str, user_id: str, doc_id: str):
        return select(DocumentRecord).where(
            DocumentRecord.collection == collection,
            DocumentRecord.user_id == user_id,
            DocumentRecord.doc_id == doc_id,
        )

    async def get(self, collection: str, user_id: str, doc_id: str) -> Optional[Document]:
        """Read a single document.

        Args:
            collection: Collection name.
            user_id: Owning user.
            doc_id: Document id.

        Returns:
            The document or None when absent.

        Raises:
            DatabaseError: If the query fails.
        """
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(self._path_query(collection, user_id, doc_id))
            record = result.scalar_one_or_none()
            return Document.from_record(record) if record else None

    async def set(
        self,
        collection: str,
        user_id: str,
        doc_id: str,
        data: dict[str, Any],
        merge: bool = False,
    ) -> Document:
        """Create or replace a document.

        Args:
            collection: Collection name.
            user_id: Owning user.
            doc_id: Document id.
            data: JSON payload.
            merge: Shallow-merge into the existing payload instead of replacing.

        Returns:
            The stored document.

        Raises:
            DatabaseError: If the write fails.
        """

        def apply(existing: dict[str, Any]) -> dict[str, Any]:
            return {**existing, **data} if merge else dict(data)

        return await self._write(collection, user_id, doc_id, apply)

    async def append_to_array(
        self,
        collection: str,
        user_id: str,
        doc_id: str,
        field: str,
        item: Any,
        counter_field: Optional[str] = None,
        unique_by: Optional[str] = None,
    ) -> Document:
        """Append an item to an array field, creating the document if needed.

        With ``unique_by`` set, an item whose value for that key is already
        in the array is not appended again, so a retried write stores it once.

        Args:
            collection: Collection name.
            user_id: Owning user.
            doc_id: Document id.
            field: Name of the array field.
            item: JSON-serializable item to append.
            counter_field: Optional integer field incremented alongside.
            unique_by: Item key that identifies duplicates.

        Returns:
            The stored document.

        Raises:
            DatabaseError: If the write fails.
        """

        def apply(existing: dict[str, Any]) -> dict[str, Any]:
            updated = dict(existing)
            items = list(updated.get(field) or [])
            if unique_by is not None and any(
                isinstance(existing_item, dict) and existing_item.get(unique_by) == item[unique_by]
                for existing_item in items
            ):
                return updated
            items.append(item)
            updated[field] = items
            if counter_field:
                updated[counter_field] = int(updated.get(counter_field) or 0) + 1
            return updated

        return await self._write(collection, user_id, doc_id, apply)

    async def _write(self, collection: str, user_id: str, doc_id: str, apply) -> Document:
        """Read-modify-write a document under a row lock.

        A concurrent first insert of the same path surfaces as an
        IntegrityError; the write is then retried once against the row the
        other writer created.
        """
        for attempt in range(2):
            try:
                async with session_scope(self._sessionmaker) as session:
                    result = await session.execute(
                        self._path_query(collection, user_id, doc_id).with_for_update()
                    )
                    record = result.scalar_one_or_none()
                    now = utc_now()
                    if record is None:
                        record = DocumentRecord(
                            collection=collection,
                            user_id=user_id,
                            doc_id=doc_id,
                            data=apply({}),
                            created_at=now,
                            updated_at=now,
                        )
                        session.add(record)
                    else:
                        record.data = apply(dict(record.data or {}))
                        record.updated_at = now
                    await session.flush()
                    return Document.from_record(record)
            except DatabaseError as e:
                if attempt == 0 and isinstance(e.original_error, IntegrityError):
                    logger.debug(
                        "document_insert_race_retry",
                        collection=collection,
                        user_id=user_id,
                        doc_id=doc_id,
                    )
                    continue
                raise
        raise DatabaseError(f"Failed to write document {collection}/{user_id}/{doc_id}")

    async def list(
        self,
        collection: str,
        user_id: str,
        modified_since: Optional[datetime] = None,
    ) -> list[Document]:
        """List a user's documents in a collection.

        Args:
            collection: Collection name.
            user_id: Owning user.
            modified_since: Only documents written strictly after this time.

        Returns:
            Documents ordered by doc_id.

        Raises:
            DatabaseError: If the query fails.
        """
        query = select(DocumentRecord).where(
            DocumentRecord.collection == collection,
            DocumentRecord.user_id == user_id,
        )
        if modified_since is not None:
            query = query.where(DocumentRecord.updated_at > ensure_utc(modified_since))
        query = query.order_by(DocumentRecord.doc_id)

        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(query)
            return [Document.from_record(r) for r in result.scalars().all()]

    async def exists_modified_since(
        self,
        user_id: str,
        since: datetime,
        collections: Optional[list[str]] = None,
    ) -> bool:
        """Check whether any of a user's documents changed after a time.

        Args:
            user_id: Owning user.
            since: Exclusive lower bound on updated_at.
            collections: Restrict the check to these collections.

        Returns:
            True if at least one document was written after ``since``.

        Raises:
            DatabaseError: If the query fails.
        """
        query = select(DocumentRecord.id).where(
            DocumentRecord.user_id == user_id,
            DocumentRecord.updated_at > ensure_utc(since),
        )
        if collections:
            query = query.where(DocumentRecord.collection.in_(collections))

        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(query.limit(1))
            return result.first() is not None

    async def delete(self, collection: str, user_id: str, doc_id: str) -> bool:
        """Delete a document.

        Returns:
            True if a document was removed.

        Raises:
            DatabaseError: If the delete fails.
        """
        async with session_scope(self._sessionmaker) as session:
            result = await session.execute(
                delete(DocumentRecord).where(
                    DocumentRecord.collection == collection,
                    DocumentRecord.user_id == user_id,
                    DocumentRecord.doc_id == doc_id,
                )
            )
            return (result.rowcount or 0) > 0
