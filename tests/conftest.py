"""Shared test fixtures and fakes."""

import hashlib
from pathlib import Path
from typing import Any

import pytest

from convmem.config.models import MemoryConfig, RetentionConfig
from convmem.errors import StorageFailure
from convmem.llm.base import LLMProvider
from convmem.llm.types import CompletionResponse
from convmem.llm.types import Message as LLMMessage
from convmem.orchestrator import ConversationMemoryOrchestrator
from convmem.state import ConversationMemoryStateManager
from convmem.storage import NumpyVectorStore, collection_name
from convmem.types import FilterPage, VectorRecord

DIMENSION = 8

# =============================================================================
# Provider Fakes
# =============================================================================


def fake_vector(text: str, dimension: int = DIMENSION) -> list[float]:
    """Deterministic vector derived from the text's hash."""
    digest = hashlib.sha256(text.encode()).digest()
    return [(digest[i] / 255.0) - 0.5 for i in range(dimension)]


class FakeEmbedder:
    """Embedder returning hash-derived vectors, with optional failure."""

    def __init__(self, dimension: int = DIMENSION, error: Exception | None = None):
        self._dimension = dimension
        self.error = error
        self.embed_calls: list[str] = []
        self.batch_calls: list[list[str]] = []

    @property
    def dimension(self) -> int:
        return self._dimension

    async def embed(self, text: str) -> list[float]:
        self.embed_calls.append(text)
        if self.error is not None:
            raise self.error
        return fake_vector(text, self._dimension)

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        self.batch_calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [fake_vector(t, self._dimension) for t in texts]


class FakeJsonLLM:
    """JSON LLM returning queued responses (the last one repeats)."""

    def __init__(self, *responses: Any, error: Exception | None = None):
        self.responses = list(responses) or [{"facts": []}]
        self.error = error
        self.calls: list[dict[str, Any]] = []

    async def generate_json(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Any:
        self.calls.append(
            {"prompt": prompt, "temperature": temperature, "max_tokens": max_tokens}
        )
        if self.error is not None:
            raise self.error
        index = min(len(self.calls) - 1, len(self.responses) - 1)
        return self.responses[index]


# =============================================================================
# Store Fakes
# =============================================================================


class RecordingVectorStore(NumpyVectorStore):
    """In-memory store that records writes and can inject failures.

    Set `fail_on` to a set of operation names ("insert", "search", ...) to
    make those operations raise.
    """

    def __init__(self, name: str = "ws-test-memory", fail_on: set[str] | None = None):
        super().__init__(name)
        self.fail_on = set(fail_on or ())
        self.insert_calls: list[tuple[list[list[float]], list[str], list[dict]]] = []
        self.update_calls: list[tuple[str, list[float] | None, dict]] = []
        self.search_calls = 0

    def _check(self, operation: str) -> None:
        if operation in self.fail_on:
            raise StorageFailure(f"{operation} unavailable")

    async def ensure_collection(self, name: str, dimension: int) -> None:
        self._check("ensure_collection")
        await super().ensure_collection(name, dimension)

    async def insert(
        self,
        vectors: list[list[float]],
        ids: list[str],
        payloads: list[dict[str, Any]],
    ) -> None:
        self._check("insert")
        self.insert_calls.append((vectors, ids, payloads))
        await super().insert(vectors, ids, payloads)

    async def update(
        self, id: str, vector: list[float] | None, payload: dict[str, Any]
    ) -> None:
        self._check("update")
        self.update_calls.append((id, vector, payload))
        await super().update(id, vector, payload)

    async def search(
        self,
        query_text: str,
        embedding: list[float],
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorRecord]:
        self.search_calls += 1
        self._check("search")
        return await super().search(query_text, embedding, limit, filters)

    async def filter(
        self,
        limit: int,
        filters: dict[str, Any] | None = None,
        cursor: str | None = None,
    ) -> FilterPage:
        self._check("filter")
        return await super().filter(limit, filters, cursor)


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """A workspace directory with a small Python project."""
    ws = tmp_path / "workspace"
    ws.mkdir()
    (ws / "pyproject.toml").write_text(
        '[project]\nname = "demo"\ndependencies = ["fastapi>=0.110", "httpx"]\n'
    )
    (ws / "src").mkdir()
    return ws


@pytest.fixture
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture
def store() -> RecordingVectorStore:
    return RecordingVectorStore()


@pytest.fixture
async def ready_store(store: RecordingVectorStore) -> RecordingVectorStore:
    """Store with its collection created."""
    await store.ensure_collection(store.collection_name, DIMENSION)
    return store


@pytest.fixture
def memory_config() -> MemoryConfig:
    """Config with background retention disabled."""
    return MemoryConfig(retention=RetentionConfig(enabled=False))


@pytest.fixture
def state_manager() -> ConversationMemoryStateManager:
    return ConversationMemoryStateManager()


@pytest.fixture
def make_orchestrator(
    workspace: Path,
    embedder: FakeEmbedder,
    state_manager: ConversationMemoryStateManager,
    memory_config: MemoryConfig,
):
    """Factory building an orchestrator over the test workspace."""

    def factory(
        store: Any = None,
        llm: Any = None,
        emb: Any = None,
        episode_store: Any = None,
        config: MemoryConfig | None = None,
    ) -> ConversationMemoryOrchestrator:
        return ConversationMemoryOrchestrator(
            str(workspace),
            store or RecordingVectorStore(collection_name(str(workspace))),
            emb or embedder,
            state_manager,
            llm=llm,
            episode_store=episode_store,
            config=config or memory_config,
        )

    return factory


# =============================================================================
# Adapter Mocks
# =============================================================================


class MockLLMProvider(LLMProvider):
    """Mock completion/embedding provider for adapter tests."""

    def __init__(
        self,
        responses: list[str] | None = None,
        embeddings: list[list[float]] | None = None,
        error: Exception | None = None,
    ):
        self.responses = responses or []
        self.embeddings = embeddings
        self.error = error
        self.complete_calls: list[dict[str, Any]] = []
        self.embed_calls: list[list[str]] = []
        self._response_index = 0

    @property
    def name(self) -> str:
        return "mock"

    @property
    def default_model(self) -> str:
        return "mock-model"

    async def complete(
        self,
        messages: list[LLMMessage],
        *,
        model: str | None = None,
        system: str | None = None,
        max_tokens: int = 1500,
        temperature: float | None = None,
    ) -> CompletionResponse:
        self.complete_calls.append(
            {
                "messages": messages,
                "model": model,
                "system": system,
                "max_tokens": max_tokens,
                "temperature": temperature,
            }
        )
        if self.error is not None:
            raise self.error
        if self._response_index < len(self.responses):
            text = self.responses[self._response_index]
            self._response_index += 1
        else:
            text = "{}"
        return CompletionResponse(text=text, model=model or self.default_model)

    async def embed(
        self,
        texts: list[str],
        *,
        model: str | None = None,
    ) -> list[list[float]]:
        self.embed_calls.append(list(texts))
        if self.error is not None:
            raise self.error
        if self.embeddings is not None:
            return self.embeddings
        return [fake_vector(t) for t in texts]


@pytest.fixture
def mock_provider() -> MockLLMProvider:
    return MockLLMProvider()


@pytest.fixture
def cli_runner():
    """Typer CLI test runner."""
    from typer.testing import CliRunner

    return CliRunner(env={"NO_COLOR": "1"})
