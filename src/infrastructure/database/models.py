# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models for the document database.

A single table stores hierarchical JSON documents addressed by
(collection, user_id, doc_id), mirroring paths such as
``chat_messages/{user_id}/{task}_{subtask}_{step}``.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Index, String, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.utils.datetime import utc_now


class Base(DeclarativeBase):
    """Declarative base for document database models."""


class TimestampMixin:
    """Adds created_at and updated_at columns.

    updated_at is set explicitly by the store on every write; freshness
    checks compare against it.
    """

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utc_now,
        nullable=False,
    )


class DocumentRecord(TimestampMixin, Base):
    """A JSON document in a per-user collection."""

    __tablename__ = "memory_documents"
    __table_args__ = (
        UniqueConstraint("collection", "user_id", "doc_id", name="uq_memory_documents_path"),
        Index("ix_memory_documents_user_updated", "user_id", "updated_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    collection: Mapped[str] = mapped_column(String(64), nullable=False)
    user_id: Mapped[str] = mapped_column(String(128), nullable=False)
    doc_id: Mapped[str] = mapped_column(String(255), nullable=False)
    data: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )

    def __repr__(self) -> str:
        return f"<DocumentRecord {self.collection}/{self.user_id}/{self.doc_id}>"
