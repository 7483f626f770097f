"""Runtime bootstrap: providers, stores and managers wired from config."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from convmem.config.models import MemoryConfig
from convmem.embeddings import EmbeddingGenerator
from convmem.llm.json_adapter import CompletionJsonProvider
from convmem.llm.openai import OpenAIProvider
from convmem.manager import ConversationMemoryManager, MemoryRegistry
from convmem.orchestrator import ConversationMemoryOrchestrator
from convmem.protocols import Embedder, JsonLLMProvider, VectorStore
from convmem.state import ConversationMemoryStateManager
from convmem.storage import (
    NumpyVectorStore,
    QdrantClientPool,
    QdrantMemoryStore,
    collection_name,
)

logger = logging.getLogger(__name__)


def create_openai_provider(config: MemoryConfig) -> OpenAIProvider:
    api_key = config.resolve_openai_key()
    return OpenAIProvider(
        api_key=api_key.get_secret_value() if api_key else None,
        base_url=config.openai.base_url,
        model=config.model.model,
        timeout=config.extraction.request_timeout_seconds,
    )


def create_llm(config: MemoryConfig, provider: OpenAIProvider) -> CompletionJsonProvider:
    return CompletionJsonProvider(
        provider,
        model=config.model.model,
        default_max_tokens=config.model.max_tokens,
        request_timeout=config.extraction.request_timeout_seconds,
    )


def create_embedder(config: MemoryConfig, provider: OpenAIProvider) -> EmbeddingGenerator:
    return EmbeddingGenerator(
        provider,
        model=config.embeddings.model,
        dimension=config.embeddings.dimension,
    )


@dataclass(slots=True)
class MemoryRuntime:
    """Composed dependencies shared by every workspace of a host process."""

    config: MemoryConfig
    llm: JsonLLMProvider
    embedder: Embedder
    qdrant_pool: QdrantClientPool = field(default_factory=QdrantClientPool)
    registry: MemoryRegistry = field(init=False)

    def __post_init__(self) -> None:
        self.registry = MemoryRegistry(
            lambda ws: ConversationMemoryManager(ws, self.config)
        )

    def create_store(self, workspace_path: str, suffix: str = "memory") -> VectorStore:
        name = collection_name(workspace_path, suffix)
        if self.config.store == "qdrant":
            qdrant = self.config.qdrant
            client = self.qdrant_pool.get(
                qdrant.url,
                qdrant.api_key.get_secret_value() if qdrant.api_key else None,
                qdrant.timeout_seconds,
            )
            return QdrantMemoryStore(client, name)
        return NumpyVectorStore(name, self.config.vectors_path)

    def orchestrator_factory(self, workspace_path: str):
        """Factory handed to ConversationMemoryManager.initialize()."""

        def factory(state: ConversationMemoryStateManager) -> ConversationMemoryOrchestrator:
            episode_store = None
            if self.config.episodes.enabled and self.config.episodes.store_episodes:
                episode_store = self.create_store(workspace_path, "episodes")
            return ConversationMemoryOrchestrator(
                workspace_path,
                self.create_store(workspace_path),
                self.embedder,
                state,
                llm=self.llm,
                episode_store=episode_store,
                config=self.config,
            )

        return factory

    async def open_workspace(self, workspace_path: str) -> ConversationMemoryManager:
        """Get the workspace's manager, initializing it on first use."""
        manager = self.registry.get_or_create(workspace_path)
        if not manager.is_enabled():
            await manager.initialize(self.orchestrator_factory(workspace_path))
        return manager

    async def close(self) -> None:
        await self.registry.close_all()
        await self.qdrant_pool.close()


def create_runtime(config: MemoryConfig) -> MemoryRuntime:
    provider = create_openai_provider(config)
    logger.debug(
        "runtime_created",
        extra={"store": config.store, "embedding.model": config.embeddings.model},
    )
    return MemoryRuntime(
        config=config,
        llm=create_llm(config, provider),
        embedder=create_embedder(config, provider),
    )
