# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Durable document storage for learner records."""

from src.infrastructure.documents.store import Document, SQLDocumentStore

__all__ = [
    "Document",
    "SQLDocumentStore",
]
