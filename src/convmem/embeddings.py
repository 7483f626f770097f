"""Embedding generation for semantic search."""

import logging

from convmem.errors import EmbeddingFailure
from convmem.llm.base import LLMProvider
from convmem.llm.retry import RetryConfig, with_retry

logger = logging.getLogger(__name__)

# Inputs beyond this are truncated before embedding
MAX_EMBED_CHARS = 8000


def _describe_provider_error(error: Exception) -> str:
    text = str(error)
    status = getattr(error, "status_code", None)
    if status == 401 or "401" in text:
        return f"embedder rejected the API key: {text}"
    if status == 429 or "429" in text:
        return f"embedder rate limit exceeded: {text}"
    if "connect" in text.lower() or "ECONNREFUSED" in text:
        return f"embedder endpoint unreachable: {text}"
    return f"embedder request failed: {text}"


class EmbeddingGenerator:
    """Generate embeddings for text using an LLM provider.

    Every returned vector has exactly `dimension` floats; anything else
    raises EmbeddingFailure.
    """

    def __init__(
        self,
        provider: LLMProvider,
        model: str | None = None,
        dimension: int = 1536,
        retry: RetryConfig | None = None,
    ):
        """Initialize embedding generator.

        Args:
            provider: Provider whose embed() is used.
            model: Embedding model to use.
            dimension: Expected vector length (text-embedding-3-small: 1536).
            retry: Retry behaviour for transient provider errors.
        """
        self._provider = provider
        self._model = model
        self._dimension = dimension
        self._retry = retry or RetryConfig()

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        """Generate embedding for a single text."""
        embeddings = await self.embed_batch([text])
        return embeddings[0]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Generate embeddings for multiple texts (1:1 with input).

        Raises:
            ValueError: If any text is empty or whitespace-only.
            EmbeddingFailure: If the provider fails or returns bad vectors.
        """
        if not texts:
            return []

        for i, t in enumerate(texts):
            if not t or not t.strip():
                raise ValueError(f"Empty or whitespace-only text at index {i}")

        inputs = [t[:MAX_EMBED_CHARS] for t in texts]

        try:
            vectors = await with_retry(
                lambda: self._provider.embed(inputs, model=self._model),
                self._retry,
                operation_name="embed",
            )
        except Exception as e:
            raise EmbeddingFailure(_describe_provider_error(e)) from e

        if len(vectors) != len(texts):
            raise EmbeddingFailure(
                f"embedder returned {len(vectors)} vectors for {len(texts)} texts"
            )
        for vector in vectors:
            if not vector:
                raise EmbeddingFailure("embedder returned an empty vector")
            if len(vector) != self._dimension:
                raise EmbeddingFailure(
                    f"embedder returned {len(vector)} dimensions, "
                    f"expected {self._dimension}"
                )
        return [list(v) for v in vectors]
