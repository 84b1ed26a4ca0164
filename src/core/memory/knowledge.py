# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Project knowledge retriever.

Semantic search over the shared project documents (case study, brief,
curriculum notes) that every persona may quote. Documents are split into
1000-character chunks with 200 characters of overlap, embedded and stored
in the ``project_documents`` Qdrant collection; queries return the top
three chunks, formatted for the prompt by ``combine_documents``.

Example:
    knowledge = ProjectKnowledgeRetriever(qdrant, embedder, settings)
    await knowledge.add_files([Path("docs/case_study.md")])
    text = await knowledge.knowledge_for("Who funds the project?")
"""

import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING, Any, Optional

from src.core.intelligence.embeddings.service import EmbeddingService
from src.core.memory.chunking import RecursiveTextSplitter
from src.core.memory.resilience import RetryPolicy, call_external
from src.infrastructure.vectors.qdrant_client import QdrantVectorClient
from src.utils.logging import get_logger

if TYPE_CHECKING:
    from src.core.config.settings import Settings

logger = get_logger(__name__)

KNOWLEDGE_CHUNK_SIZE = 1000
KNOWLEDGE_CHUNK_OVERLAP = 200
SUPPORTED_SUFFIXES = {".txt", ".md", ""}

NO_KNOWLEDGE_TEXT = "No specific project context found for this question."


@dataclass
class KnowledgeDocument:
    """A retrieved project document chunk.

    Attributes:
        content: Chunk text.
        metadata: Source metadata (source, filename, ...).
        score: Similarity score, 0 for documents not from a search.
    """

    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    score: float = 0.0


def combine_documents(documents: list[KnowledgeDocument]) -> str:
    """Format retrieved documents as numbered sections.

    Args:
        documents: Documents in rank order.

    Returns:
        The formatted text, or an empty string when there are no documents.
    """
    sections = []
    for index, document in enumerate(documents, start=1):
        section = f"--- Document {index} ---\n"
        if document.metadata.get("source"):
            section += f"Source: {document.metadata['source']}\n"
        if document.metadata.get("filename"):
            section += f"File: {document.metadata['filename']}\n"
        section += f"\n{document.content.strip()}\n"
        sections.append(section)
    return "\n".join(sections)


class ProjectKnowledgeRetriever:
    """Retrieves project documents relevant to a question.

    Attributes:
        collection: Qdrant collection holding project documents.
        top_k: Documents returned per query.
    """

    def __init__(
        self,
        qdrant_client: QdrantVectorClient,
        embedding_service: EmbeddingService,
        settings: "Settings",
        policy: Optional[RetryPolicy] = None,
    ) -> None:
        self._qdrant = qdrant_client
        self._embedder = embedding_service
        self._policy = policy or RetryPolicy.from_settings(settings.memory)
        self._splitter = RecursiveTextSplitter(KNOWLEDGE_CHUNK_SIZE, KNOWLEDGE_CHUNK_OVERLAP)
        self.collection = settings.qdrant.knowledge_collection
        self.top_k = settings.memory.knowledge_top_k

    async def ensure_collection(self) -> None:
        """Create the knowledge collection if missing."""
        if await self._qdrant.ensure_collection(self.collection, self._embedder.dimension, ["source"]):
            logger.info("knowledge_collection_created", collection=self.collection)

    async def add_texts(
        self,
        texts: list[str],
        metadata: Optional[list[dict[str, Any]]] = None,
    ) -> int:
        """Split, embed and store texts.

        Args:
            texts: Raw document texts.
            metadata: Optional metadata per text, by position.

        Returns:
            Number of chunks stored.

        Raises:
            EmbeddingError, QdrantError: If embedding or storage fails.
        """
        points = []
        for i, text in enumerate(texts):
            meta = dict(metadata[i]) if metadata and i < len(metadata) else {}
            pieces = self._splitter.split_text(text)
            if not pieces:
                continue
            vectors = await call_external(
                "embed_knowledge",
                lambda: self._embedder.embed_batch(pieces),
                self._policy,
            )
            for j, (piece, vector) in enumerate(zip(pieces, vectors)):
                # Deterministic ids make re-ingesting a document idempotent
                point_id = uuid.uuid5(uuid.NAMESPACE_URL, f"{meta.get('source', i)}:{j}:{piece[:100]}")
                points.append(
                    {
                        "id": str(point_id),
                        "vector": vector,
                        "payload": {**meta, "content": piece, "chunk_index": j},
                    }
                )

        if points:
            await call_external(
                "knowledge_upsert",
                lambda: self._qdrant.upsert(self.collection, points),
                self._policy,
            )
        logger.info("knowledge_documents_added", texts=len(texts), chunks=len(points))
        return len(points)

    async def add_files(self, paths: list[Path]) -> int:
        """Ingest plain-text and markdown files.

        Missing and unsupported files are skipped with a warning.

        Returns:
            Number of chunks stored.
        """
        texts: list[str] = []
        metadata: list[dict[str, Any]] = []
        for path in paths:
            if not path.exists():
                logger.warning("knowledge_file_missing", path=str(path))
                continue
            if path.suffix.lower() not in SUPPORTED_SUFFIXES:
                logger.warning("knowledge_file_unsupported", path=str(path), suffix=path.suffix)
                continue
            texts.append(path.read_text(encoding="utf-8"))
            metadata.append(
                {
                    "source": str(path),
                    "filename": path.name,
                    "file_type": path.suffix.lower(),
                }
            )
        if not texts:
            return 0
        return await self.add_texts(texts, metadata)

    async def retrieve(self, query: str, k: Optional[int] = None) -> list[KnowledgeDocument]:
        """Return the project documents most similar to a query.

        Raises:
            EmbeddingError, QdrantError: If the search cannot be performed.
        """
        if not query or not query.strip():
            return []

        vector = await call_external(
            "embed_knowledge_query",
            lambda: self._embedder.embed_text(query),
            self._policy,
        )
        results = await call_external(
            "knowledge_search",
            lambda: self._qdrant.search(self.collection, query_vector=vector, limit=k or self.top_k),
            self._policy,
        )

        documents = []
        for result in results:
            payload = dict(result.payload)
            content = payload.pop("content", None)
            if not isinstance(content, str) or not content.strip():
                logger.warning("knowledge_chunk_malformed", point_id=result.id)
                continue
            documents.append(KnowledgeDocument(content=content, metadata=payload, score=result.score))
        return documents

    async def knowledge_for(self, query: str) -> str:
        """Retrieve and format project knowledge for a prompt.

        Returns:
            Formatted documents, or a fixed notice when nothing matched.

        Raises:
            EmbeddingError, QdrantError: If the search cannot be performed.
        """
        documents = await self.retrieve(query)
        return combine_documents(documents) if documents else NO_KNOWLEDGE_TEXT
