# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database infrastructure for the document database.

This package provides SQLAlchemy async connections and the JSON document
model used for durable learner records.

Example:
    from src.infrastructure.database import (
        init_document_database,
        get_document_sessionmaker,
    )

    await init_document_database(settings, create_tables=True)
    sessionmaker = get_document_sessionmaker()
"""

from src.infrastructure.database.connection import (
    DatabaseError,
    check_document_database_connection,
    close_document_database,
    create_schema,
    create_sessionmaker,
    get_document_sessionmaker,
    init_document_database,
    session_scope,
)
from src.infrastructure.database.models import Base, DocumentRecord, TimestampMixin

__all__ = [
    # Connection
    "DatabaseError",
    "check_document_database_connection",
    "close_document_database",
    "create_schema",
    "create_sessionmaker",
    "get_document_sessionmaker",
    "init_document_database",
    "session_scope",
    # Models
    "Base",
    "DocumentRecord",
    "TimestampMixin",
]
