"""Error types for the conversation memory engine.

Ingestion recovers from every failure locally; the query path propagates
EmbeddingFailure and StorageFailure to the caller. Messages carry the
substrings "embedder", "vector store" and "timeout" so hosts can map them
to user guidance with describe_failure().
"""

from dataclasses import dataclass


class ConversationMemoryError(Exception):
    """Base error for conversation memory."""


class ExtractionFailure(ConversationMemoryError):
    """LLM call or response parsing failed during fact extraction."""


class EmbeddingFailure(ConversationMemoryError):
    """The embedder failed or returned a malformed vector."""

    def __init__(self, message: str) -> None:
        if "embedder" not in message.lower():
            message = f"embedder: {message}"
        super().__init__(message)


class StorageFailure(ConversationMemoryError):
    """A vector store operation failed."""

    def __init__(self, message: str) -> None:
        if "vector store" not in message.lower():
            message = f"vector store: {message}"
        super().__init__(message)


class TimeoutFailure(ConversationMemoryError):
    """An operation exceeded its time budget."""

    def __init__(self, operation: str, seconds: float) -> None:
        self.operation = operation
        self.seconds = seconds
        super().__init__(f"{operation} timeout after {seconds:g}s")


class ReconciliationFailure(ConversationMemoryError):
    """Updating facts for a changed file failed."""

    def __init__(self, path: str, cause: BaseException) -> None:
        self.path = path
        super().__init__(f"Failed to reconcile facts for {path}: {cause}")


class InitializationError(ConversationMemoryError):
    """Orchestrator start-up failed; the instance is unusable until retried."""


class SearchError(ConversationMemoryError):
    """A manager-level search failed."""


@dataclass(frozen=True)
class ParseError:
    """Structured output could not be recovered from LLM text."""

    message: str
    raw: str = ""


def describe_failure(exc: BaseException) -> str:
    """Map an error to a short user-facing explanation."""
    text = str(exc).lower()
    if "api key" in text or "401" in text or "unauthorized" in text:
        return "Embedding provider rejected the API key. Check your credentials."
    if "embedder" in text:
        return "Embedding provider is unavailable. Check the embedding configuration."
    if "vector store" in text or "qdrant" in text:
        return "Vector store is unreachable. Check that Qdrant is running."
    if "timeout" in text or "timed out" in text:
        return "Conversation memory timed out. It will retry on the next turn."
    return f"Conversation memory failed: {exc}"
