"""Tests for CompletionJsonProvider."""

import asyncio

import pytest

from convmem.llm.json_adapter import JSON_SYSTEM_PROMPT, CompletionJsonProvider
from convmem.llm.retry import RetryConfig
from convmem.llm.types import Role
from tests.conftest import MockLLMProvider


class TestGenerateJson:
    """Tests for generate_json."""

    async def test_parses_json(self):
        provider = MockLLMProvider(responses=['{"facts": []}'])
        llm = CompletionJsonProvider(provider, model="gpt-test")
        assert await llm.generate_json("extract", temperature=0.1, max_tokens=200) == {
            "facts": []
        }
        call = provider.complete_calls[0]
        assert call["model"] == "gpt-test"
        assert call["system"] == JSON_SYSTEM_PROMPT
        assert call["max_tokens"] == 200
        assert call["temperature"] == 0.1
        assert call["messages"][0].role == Role.USER
        assert call["messages"][0].content == "extract"

    async def test_default_max_tokens(self):
        provider = MockLLMProvider(responses=["{}"])
        llm = CompletionJsonProvider(provider, default_max_tokens=777)
        await llm.generate_json("x")
        assert provider.complete_calls[0]["max_tokens"] == 777

    async def test_recovers_fenced_output(self):
        provider = MockLLMProvider(responses=['Sure:\n```json\n{"description": "Fix auth"}\n```'])
        llm = CompletionJsonProvider(provider)
        assert await llm.generate_json("x") == {"description": "Fix auth"}

    async def test_unparseable_returns_empty_object(self):
        provider = MockLLMProvider(responses=["no idea"])
        llm = CompletionJsonProvider(provider)
        assert await llm.generate_json("x") == {}

    async def test_provider_errors_propagate(self):
        provider = MockLLMProvider(error=RuntimeError("Invalid request"))
        llm = CompletionJsonProvider(provider)
        with pytest.raises(RuntimeError, match="Invalid request"):
            await llm.generate_json("x")

    async def test_request_timeout(self):
        class SlowProvider(MockLLMProvider):
            async def complete(self, messages, **kwargs):
                await asyncio.sleep(1)
                return await super().complete(messages, **kwargs)

        llm = CompletionJsonProvider(
            SlowProvider(),
            request_timeout=0.01,
            retry=RetryConfig(enabled=False),
        )
        with pytest.raises(TimeoutError):
            await llm.generate_json("x")

    def test_model_id(self):
        provider = MockLLMProvider()
        assert CompletionJsonProvider(provider).model_id == "mock/mock-model"
        assert CompletionJsonProvider(provider, model="gpt-x").model_id == "mock/gpt-x"
