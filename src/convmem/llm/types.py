"""LLM message types used by provider adapters."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class Role(str, Enum):
    """Message role."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


@dataclass
class Message:
    """A prompt message sent to a provider."""

    role: Role
    content: str


@dataclass
class Usage:
    """Token usage information."""

    input_tokens: int
    output_tokens: int


@dataclass
class CompletionResponse:
    """Full completion response."""

    text: str
    usage: Usage | None = None
    model: str | None = None
    raw: dict[str, Any] = field(default_factory=dict)
