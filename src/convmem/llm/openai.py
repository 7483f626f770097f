"""OpenAI provider implementation."""

import logging
import time
from typing import Any

import openai

from convmem.llm.base import LLMProvider
from convmem.llm.types import CompletionResponse, Message, Role, Usage

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-5-mini"
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-small"


class OpenAIProvider(LLMProvider):
    """OpenAI provider using the Responses API."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        base_url: str | None = None,
        model: str | None = None,
        timeout: float | None = None,
    ):
        self._client = openai.AsyncOpenAI(
            api_key=api_key, base_url=base_url, timeout=timeout
        )
        self._model = model or DEFAULT_MODEL

    @property
    def name(self) -> str:
        return "openai"

    @property
    def default_model(self) -> str:
        return self._model

    def _convert_input(
        self, messages: list[Message]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Split system messages into instructions; the rest become input items."""
        instructions: list[str] = []
        items: list[dict[str, Any]] = []
        for msg in messages:
            if msg.role == Role.SYSTEM:
                instructions.append(msg.content)
                continue
            items.append({"role": msg.role.value, "content": msg.content})
        return ("\n\n".join(instructions) or None), items

    def _build_request_kwargs(
        self,
        messages: list[Message],
        model: str | None,
        system: str | None,
        max_tokens: int,
        temperature: float | None,
    ) -> dict[str, Any]:
        msg_instructions, input_items = self._convert_input(messages)
        instructions = system or msg_instructions

        kwargs: dict[str, Any] = {
            "model": model or self.default_model,
            "input": input_items,
            "max_output_tokens": max_tokens,
        }
        if instructions:
            kwargs["instructions"] = instructions
        if temperature is not None:
            kwargs["temperature"] = temperature
        return kwargs

    async def complete(
        self,
        messages: list[Message],
        *,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int = 1500,
        temperature: float | None = None,
    ) -> CompletionResponse:
        kwargs = self._build_request_kwargs(
            messages, model, system, max_tokens, temperature
        )

        start_time = time.monotonic()
        response = await self._client.responses.create(**kwargs)
        duration_ms = int((time.monotonic() - start_time) * 1000)

        usage = None
        extra: dict[str, object] = {
            "provider": "openai",
            "model": kwargs["model"],
            "duration_ms": duration_ms,
        }
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.input_tokens,
                output_tokens=response.usage.output_tokens,
            )
            extra["tokens_in"] = usage.input_tokens
            extra["tokens_out"] = usage.output_tokens
        logger.debug("llm_complete", extra=extra)

        return CompletionResponse(
            text=response.output_text or "",
            usage=usage,
            model=response.model,
            raw=response.model_dump(),
        )

    async def embed(
        self,
        texts: list[str],
        *,
        model: str | None = None,
    ) -> list[list[float]]:
        embed_model = model or DEFAULT_EMBEDDING_MODEL
        logger.debug("Embedding %d texts with model %s", len(texts), embed_model)
        response = await self._client.embeddings.create(
            model=embed_model,
            input=texts,
        )
        return [item.embedding for item in response.data]
