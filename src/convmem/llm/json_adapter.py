"""Adapts a completion provider to the JSON generation interface."""

import asyncio
import logging
from typing import Any

from convmem.llm.base import LLMProvider
from convmem.llm.parsing import parse_structured
from convmem.llm.retry import RetryConfig, with_retry
from convmem.llm.types import Message, Role

logger = logging.getLogger(__name__)

JSON_SYSTEM_PROMPT = (
    "You are a JSON-only function. Return a single JSON object. "
    "No prose, no markdown fences, no extra text. "
    "If you cannot produce JSON, return {}."
)

DEFAULT_REQUEST_TIMEOUT = 30.0


class CompletionJsonProvider:
    """Wraps an LLMProvider so it satisfies JsonLLMProvider.

    Unrecoverable text yields {} so callers see "no facts" rather than an
    exception; transport errors and timeouts propagate.
    """

    def __init__(
        self,
        provider: LLMProvider,
        *,
        model: str | None = None,
        default_max_tokens: int = 1500,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        retry: RetryConfig | None = None,
    ):
        self._provider = provider
        self._model = model
        self._default_max_tokens = default_max_tokens
        self._request_timeout = request_timeout
        self._retry = retry or RetryConfig()

    @property
    def model_id(self) -> str:
        return f"{self._provider.name}/{self._model or self._provider.default_model}"

    async def generate_json(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Any:
        async def call() -> str:
            response = await asyncio.wait_for(
                self._provider.complete(
                    [Message(role=Role.USER, content=prompt)],
                    model=self._model,
                    system=JSON_SYSTEM_PROMPT,
                    max_tokens=max_tokens or self._default_max_tokens,
                    temperature=temperature,
                ),
                timeout=self._request_timeout,
            )
            return response.text

        text = await with_retry(call, self._retry, operation_name="generate_json")

        result = parse_structured(text)
        if not result.ok:
            assert result.error is not None
            logger.debug(
                "json_parse_failed",
                extra={
                    "error.message": result.error.message,
                    "response.length": len(text),
                },
            )
            return {}
        return result.value
