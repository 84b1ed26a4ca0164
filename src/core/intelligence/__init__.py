# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Intelligence module for AI-powered operations.

This module provides unified interfaces for:
- Embedding generation via LiteLLM and the Ollama embed API
- LLM completions via LiteLLM

Example:
    >>> from src.core.intelligence import EmbeddingService, LLMClient
    >>> embedder = EmbeddingService(settings)
    >>> vector = await embedder.embed_text("Hello world")
    >>> client = LLMClient(settings.llm)
    >>> response = await client.complete("What is a stakeholder?")
"""

from src.core.intelligence.embeddings import EmbeddingError, EmbeddingService
from src.core.intelligence.llm import LLMClient, LLMError

__all__ = [
    # Embeddings
    "EmbeddingError",
    "EmbeddingService",
    # LLM
    "LLMClient",
    "LLMError",
]
