"""Tests for ConversationMemoryManager and MemoryRegistry."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from convmem.config.models import MemoryConfig, RetentionConfig
from convmem.errors import SearchError
from convmem.manager import ConversationMemoryManager, MemoryRegistry
from convmem.orchestrator import ConversationMemoryOrchestrator
from convmem.types import FileRefUpdate, Message, SystemState
from tests.conftest import FakeEmbedder, FakeJsonLLM, RecordingVectorStore

TURN = [
    Message(role="user", content="Which database do we use?"),
    Message(role="assistant", content="PostgreSQL 15 on RDS."),
]
FACTS = {"facts": [{"content": "Uses PostgreSQL 15 on RDS", "category": "infrastructure"}]}


@pytest.fixture
def config() -> MemoryConfig:
    return MemoryConfig(retention=RetentionConfig(enabled=False), ingest_timeout_seconds=2)


def _factory(workspace, store=None, embedder=None, llm=None, config=None):
    def build(state):
        return ConversationMemoryOrchestrator(
            str(workspace),
            store or RecordingVectorStore(),
            embedder or FakeEmbedder(),
            state,
            llm=llm,
            config=config,
        )

    return build


@pytest.fixture
async def manager(workspace, config, store):
    manager = ConversationMemoryManager(str(workspace), config)
    assert await manager.initialize(_factory(workspace, store, llm=FakeJsonLLM(FACTS), config=config))
    yield manager
    await manager.dispose()


class TestInitialize:
    """Tests for initialize()."""

    async def test_success(self, workspace, config):
        manager = ConversationMemoryManager(str(workspace), config)
        assert await manager.initialize(_factory(workspace, config=config))
        assert manager.is_enabled()
        assert manager.get_status().state == SystemState.INDEXED

    async def test_disabled(self, workspace):
        manager = ConversationMemoryManager(str(workspace), MemoryConfig(enabled=False))
        factory = MagicMock()
        assert not await manager.initialize(factory)
        factory.assert_not_called()
        assert manager.get_status().state == SystemState.STANDBY
        assert manager.get_status().message == "Conversation memory disabled"

    async def test_embedder_failure(self, workspace, config):
        manager = ConversationMemoryManager(str(workspace), config)
        embedder = FakeEmbedder(error=RuntimeError("Error code: 401 - invalid api key"))
        assert not await manager.initialize(_factory(workspace, embedder=embedder, config=config))
        status = manager.get_status()
        assert status.state == SystemState.ERROR
        assert status.message == "Embedding provider rejected the API key. Check your credentials."
        assert not manager.is_enabled()

    async def test_store_failure(self, workspace, config):
        manager = ConversationMemoryManager(str(workspace), config)
        store = RecordingVectorStore(fail_on={"ensure_collection"})
        assert not await manager.initialize(_factory(workspace, store=store, config=config))
        assert manager.get_status().state == SystemState.ERROR
        assert "Vector store" in manager.get_status().message

    async def test_factory_failure(self, workspace, config):
        manager = ConversationMemoryManager(str(workspace), config)
        assert not await manager.initialize(MagicMock(side_effect=RuntimeError("bad wiring")))
        assert manager.get_status().message == "Conversation memory failed: bad wiring"


class TestIngest:
    """Tests for ingest_turn and collect_message."""

    async def test_ingest_turn(self, manager, store):
        await manager.ingest_turn(TURN, model_id="openai/gpt-test")
        assert store.insert_calls[0][2][0]["source_model"] == "openai/gpt-test"

    async def test_timeout_does_not_raise(self, workspace, store):
        class SlowLLM(FakeJsonLLM):
            async def generate_json(self, prompt, **kwargs):
                await asyncio.sleep(5)
                return FACTS

        config = MemoryConfig(retention=RetentionConfig(enabled=False), ingest_timeout_seconds=0.05)
        manager = ConversationMemoryManager(str(workspace), config)
        await manager.initialize(_factory(workspace, store, llm=SlowLLM(), config=config))

        await manager.ingest_turn(TURN)

        assert store.insert_calls == []
        await manager.dispose()

    async def test_uninitialized_noop(self, workspace):
        manager = ConversationMemoryManager(str(workspace))
        await manager.ingest_turn(TURN)
        await manager.collect_message(TURN[0])
        assert await manager.search_memory("x") == []
        assert await manager.search_episodes("x") == []
        assert await manager.get_episode_details("ep_1") is None

    async def test_invalid_message_swallowed(self, manager):
        await manager.collect_message(Message(role="user", content=""))

    async def test_invalid_turn_swallowed(self, manager):
        await manager.ingest_turn("not a list")


class TestSearch:
    """Tests for manager search methods."""

    async def test_search_memory(self, manager):
        await manager.ingest_turn(TURN)
        facts = await manager.search_memory("Uses PostgreSQL 15 on RDS")
        assert facts[0].content == "Uses PostgreSQL 15 on RDS"

    async def test_search_failure_wrapped(self, manager, store):
        store.fail_on.add("search")
        with pytest.raises(SearchError, match="^Memory search failed: "):
            await manager.search_memory("x")
        with pytest.raises(SearchError, match="^Episode search failed: "):
            await manager.search_episodes("x")
        with pytest.raises(SearchError, match="^Memory search failed: "):
            await manager.search_memories_with_filters("x")

    async def test_filtered_search(self, manager):
        await manager.ingest_turn(TURN)
        items = await manager.search_memories_with_filters("postgres", limit=5)
        assert items[0].episode_type == "conversation"
        assert items[0].content == "Uses PostgreSQL 15 on RDS"


class TestMaintenance:
    """Tests for clear, file events and disposal."""

    async def test_clear(self, manager, store):
        await manager.ingest_turn(TURN)
        await manager.clear_memory_data()
        assert store.count == 0
        assert manager.get_status().message == "Conversation memory cleared successfully."

    async def test_files_indexed_errors_swallowed(self, manager):
        manager.orchestrator.handle_files_indexed = AsyncMock(side_effect=RuntimeError("boom"))
        await manager.handle_files_indexed([FileRefUpdate(path="a.py", new_hash="h")])

    async def test_dispose(self, workspace, config):
        manager = ConversationMemoryManager(str(workspace), config)
        await manager.initialize(_factory(workspace, config=config))
        listener = MagicMock()
        manager.state_manager.on_progress(listener)

        await manager.dispose()

        assert not manager.is_enabled()
        assert manager.get_status().state == SystemState.STANDBY
        listener.reset_mock()
        manager.state_manager.set_progress(1, 1)
        listener.assert_not_called()


class TestMemoryRegistry:
    """Tests for MemoryRegistry."""

    def test_get_or_create(self):
        registry = MemoryRegistry()
        first = registry.get_or_create("/ws/a")
        assert registry.get_or_create("/ws/a") is first
        assert registry.get_or_create("/ws/b") is not first
        assert len(registry) == 2
        assert "/ws/a" in registry
        assert registry.get("/ws/c") is None

    async def test_remove_disposes(self):
        manager = MagicMock(dispose=AsyncMock())
        registry = MemoryRegistry(lambda ws: manager)
        registry.get_or_create("/ws/a")
        await registry.remove("/ws/a")
        manager.dispose.assert_awaited_once()
        assert "/ws/a" not in registry
        await registry.remove("/ws/a")

    async def test_close_all_continues_after_failure(self):
        failing = MagicMock(dispose=AsyncMock(side_effect=RuntimeError("x")), workspace_path="/a")
        healthy = MagicMock(dispose=AsyncMock(), workspace_path="/b")
        managers = iter([failing, healthy])
        registry = MemoryRegistry(lambda ws: next(managers))
        registry.get_or_create("/a")
        registry.get_or_create("/b")

        await registry.close_all()

        healthy.dispose.assert_awaited_once()
        assert len(registry) == 0
