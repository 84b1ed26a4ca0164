# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Embedding provider for memory chunks, search queries and project documents.

Ollama models (the default, ``ollama/nomic-embed-text``) are called on the
server's ``/api/embed`` endpoint with httpx so a bearer token reaches
authenticated remote instances. Every other model goes through LiteLLM.

Vectors are checked against the configured dimension before they are
returned: a model swapped without a matching ``EMBEDDING_DIMENSION`` would
otherwise write vectors the memory collection cannot hold.

Example:
    >>> from src.core.intelligence.embeddings import EmbeddingService
    >>> service = EmbeddingService(get_settings())
    >>> vector = await service.embed_text("Who are the stakeholders?")
    >>> vectors = await service.embed_batch(["Student: hi", "Sarah Chen: hello"])
"""

import logging
from typing import TYPE_CHECKING, Any, Optional

import httpx
import litellm
from litellm import aembedding

if TYPE_CHECKING:
    from src.core.config.settings import Settings

logger = logging.getLogger(__name__)

OLLAMA_PREFIX = "ollama/"
DEFAULT_OLLAMA_BASE = "http://localhost:11434"

# Vector sizes of models a deployment is likely to pick
MODEL_DIMENSIONS: dict[str, int] = {
    "ollama/nomic-embed-text": 768,
    "ollama/mxbai-embed-large": 1024,
    "ollama/all-minilm": 384,
    "text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
}


class EmbeddingError(Exception):
    """The embedding provider failed or returned unusable vectors.

    Attributes:
        message: What went wrong.
        model: Model the request was made with.
        original_error: Provider or transport exception, if any.
    """

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        original_error: Optional[Exception] = None,
    ):
        super().__init__(message)
        self.message = message
        self.model = model
        self.original_error = original_error


class EmbeddingService:
    """Embeds text in batches with one configured model.

    Attributes:
        model: Model identifier in LiteLLM format.
        dimension: Length of every returned vector.
        batch_size: Most texts sent in one request.
    """

    def __init__(
        self,
        settings: "Settings",
        model: Optional[str] = None,
        dimension: Optional[int] = None,
        batch_size: Optional[int] = None,
    ):
        """Resolve the model, its dimension and provider parameters.

        A known model given as an override brings its own dimension; the
        configured dimension applies otherwise.
        """
        configured = settings.embedding
        self._model = model or configured.model
        self._batch_size = batch_size or configured.batch_size
        self._timeout = configured.request_timeout
        self._dimension = dimension or MODEL_DIMENSIONS.get(model or "", configured.dimension)
        self._provider_params: dict[str, Any] = settings.llm.get_provider_params(self._model)

        litellm.set_verbose = False
        logger.info(
            "Embedding provider ready: model=%s, dimension=%d, batch_size=%d",
            self._model,
            self._dimension,
            self._batch_size,
        )

    @property
    def model(self) -> str:
        return self._model

    @property
    def dimension(self) -> int:
        return self._dimension

    @property
    def batch_size(self) -> int:
        return self._batch_size

    def _error(self, message: str, cause: Optional[Exception] = None) -> EmbeddingError:
        return EmbeddingError(message=message, model=self._model, original_error=cause)

    async def _post_ollama(self, texts: list[str]) -> list[list[float]]:
        base = self._provider_params.get("api_base", DEFAULT_OLLAMA_BASE).rstrip("/")
        headers = {"Content-Type": "application/json"}
        if self._provider_params.get("api_key"):
            headers["Authorization"] = f"Bearer {self._provider_params['api_key']}"
        payload = {"model": self._model.removeprefix(OLLAMA_PREFIX), "input": texts}

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(f"{base}/api/embed", headers=headers, json=payload)
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise self._error(f"Ollama returned {status}: {e.response.text}", e) from e
        except httpx.HTTPError as e:
            raise self._error(f"Ollama embedding request failed: {e}", e) from e
        return response.json().get("embeddings", [])

    async def _request(self, texts: list[str]) -> list[list[float]]:
        """Embed one request worth of texts and check what came back."""
        if self._model.startswith(OLLAMA_PREFIX):
            vectors = await self._post_ollama(texts)
        else:
            try:
                response = await aembedding(
                    model=self._model,
                    input=texts,
                    timeout=self._timeout,
                    **self._provider_params,
                )
            except Exception as e:
                logger.error(
                    "Embedding request failed: model=%s, texts=%d, error=%s",
                    self._model,
                    len(texts),
                    e,
                )
                raise self._error(f"Embedding request failed: {e}", e) from e
            vectors = [item["embedding"] for item in response.data]

        if len(vectors) != len(texts):
            raise self._error(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        wrong = next((len(v) for v in vectors if len(v) != self._dimension), None)
        if wrong is not None:
            raise self._error(
                f"Embedding dimension {wrong} does not match configured dimension {self._dimension}"
            )
        return vectors

    async def embed_text(self, text: str) -> list[float]:
        """Embed a single text.

        Raises:
            EmbeddingError: If the provider fails or the vector is unusable.
            ValueError: If the text is blank.
        """
        if not text or not text.strip():
            raise ValueError("Text cannot be empty")
        return (await self._request([text]))[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed texts in requests of at most ``batch_size``, keeping order.

        Raises:
            EmbeddingError: If any request fails or returns unusable vectors.
            ValueError: If the list is empty or holds a blank text.
        """
        if not texts:
            raise ValueError("Texts list cannot be empty")
        if any(not text or not text.strip() for text in texts):
            raise ValueError("Texts cannot be empty")

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self._batch_size):
            vectors.extend(await self._request(texts[start : start + self._batch_size]))
        logger.debug("Embedded %d texts with %s", len(texts), self._model)
        return vectors

    def __repr__(self) -> str:
        return (
            f"EmbeddingService(model={self._model!r}, "
            f"dimension={self._dimension}, batch_size={self._batch_size})"
        )
