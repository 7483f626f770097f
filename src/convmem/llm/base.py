"""Abstract LLM provider interface."""

from abc import ABC, abstractmethod

from convmem.llm.types import CompletionResponse, Message


class LLMProvider(ABC):
    """Abstract interface for text completion and embedding providers."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider identifier (e.g., 'openai')."""
        ...

    @property
    @abstractmethod
    def default_model(self) -> str:
        """Default completion model for this provider."""
        ...

    @abstractmethod
    async def complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int = 1500,
        temperature: float | None = None,
    ) -> CompletionResponse:
        """Generate a completion.

        Args:
            messages: Prompt messages.
            model: Model to use (defaults to provider's default).
            system: System prompt.
            max_tokens: Maximum tokens to generate.
            temperature: Sampling temperature. None = use API default.

        Returns:
            Complete response with text and metadata.
        """
        ...

    @abstractmethod
    async def embed(
        self,
        texts: list[str],
        *,
        model: str | None = None,
    ) -> list[list[float]]:
        """Generate embeddings for texts.

        Args:
            texts: Texts to embed.
            model: Embedding model to use.

        Returns:
            List of embedding vectors, one per input text.
        """
        ...
