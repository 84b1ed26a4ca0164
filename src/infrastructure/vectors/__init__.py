# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Vector storage infrastructure using Qdrant.

Used for the per-user semantic memory and the shared project knowledge
collection. Per-user isolation relies on the indexed ``user_id`` payload.

Example:
    from src.infrastructure.vectors import init_qdrant, get_qdrant

    await init_qdrant(settings)
    qdrant = get_qdrant()
    await qdrant.ensure_collection("user_memory_chunks", 768, ["user_id"])
    await close_qdrant()
"""

from src.infrastructure.vectors.qdrant_client import (
    QdrantError,
    QdrantVectorClient,
    SearchResult,
    build_filter,
    close_qdrant,
    get_qdrant,
    init_qdrant,
)

__all__ = [
    "QdrantError",
    "QdrantVectorClient",
    "SearchResult",
    "build_filter",
    "close_qdrant",
    "get_qdrant",
    "init_qdrant",
]
