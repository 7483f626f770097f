"""LLM provider abstraction layer."""

from convmem.llm.base import LLMProvider
from convmem.llm.json_adapter import CompletionJsonProvider
from convmem.llm.openai import OpenAIProvider
from convmem.llm.parsing import ParseResult, parse_structured
from convmem.llm.retry import RetryConfig, is_retryable_error, with_retry
from convmem.llm.types import CompletionResponse, Message, Role, Usage

__all__ = [
    # Base
    "LLMProvider",
    # Providers
    "CompletionJsonProvider",
    "OpenAIProvider",
    # Parsing
    "ParseResult",
    "parse_structured",
    # Retry
    "RetryConfig",
    "is_retryable_error",
    "with_retry",
    # Types
    "CompletionResponse",
    "Message",
    "Role",
    "Usage",
]
