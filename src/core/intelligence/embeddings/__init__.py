# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Embedding generation for semantic memory and project knowledge.

Example:
    >>> from src.core.intelligence.embeddings import EmbeddingService
    >>> service = EmbeddingService(get_settings())
    >>> vector = await service.embed_text("Hello world")
"""

from src.core.intelligence.embeddings.service import EmbeddingError, EmbeddingService

__all__ = ["EmbeddingError", "EmbeddingService"]
