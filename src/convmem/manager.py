"""Host-facing entry points for conversation memory.

A ConversationMemoryManager owns the state manager and orchestrator of one
workspace and turns every failure into state plus logs, so hosts can call
it from hot paths. MemoryRegistry maps workspaces to managers and is owned
by the host's composition root.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from convmem.config.models import MemoryConfig
from convmem.errors import SearchError, TimeoutFailure, describe_failure
from convmem.orchestrator import ConversationMemoryOrchestrator
from convmem.protocols import JsonLLMProvider
from convmem.search import EpisodeType
from convmem.state import ConversationMemoryStateManager
from convmem.types import (
    ConversationFact,
    EpisodeSearchResult,
    FileRef,
    FileRefUpdate,
    MemorySearchItem,
    MemoryStatus,
    Message,
    SystemState,
    ToolMeta,
    TurnOptions,
)

logger = logging.getLogger(__name__)

OrchestratorFactory = Callable[
    [ConversationMemoryStateManager], ConversationMemoryOrchestrator
]

EMBEDDING_CHECK_TEXT = "conversation memory health check"


class ConversationMemoryManager:
    """Conversation memory for one workspace.

    Example:
        manager = ConversationMemoryManager("/path/to/workspace", config)
        if await manager.initialize(factory):
            await manager.ingest_turn(messages, llm, model_id="gpt-5-mini")
            results = await manager.search_memory("auth tokens")
    """

    def __init__(self, workspace_path: str, config: MemoryConfig | None = None):
        self._workspace_path = workspace_path
        self._config = config or MemoryConfig()
        self._state = ConversationMemoryStateManager()
        self._orchestrator: ConversationMemoryOrchestrator | None = None

    @property
    def workspace_path(self) -> str:
        return self._workspace_path

    @property
    def state_manager(self) -> ConversationMemoryStateManager:
        return self._state

    @property
    def orchestrator(self) -> ConversationMemoryOrchestrator | None:
        return self._orchestrator

    def is_enabled(self) -> bool:
        return self._orchestrator is not None

    def get_status(self) -> MemoryStatus:
        return self._state.get_current_status()

    async def initialize(self, orchestrator_factory: OrchestratorFactory) -> bool:
        """Verify the embedder and start the orchestrator.

        Failures put the state into Error with a user-facing message and
        leave the feature disabled.

        Returns:
            True when memory is ready.
        """
        if not self._config.enabled:
            self._state.set_system_state(SystemState.STANDBY, "Conversation memory disabled")
            return False

        self._state.set_system_state(
            SystemState.INITIALIZING, "Initializing conversation memory"
        )
        orchestrator: ConversationMemoryOrchestrator | None = None
        try:
            orchestrator = orchestrator_factory(self._state)
            sample = await orchestrator.embedder.embed(EMBEDDING_CHECK_TEXT)
            if not sample:
                raise ValueError("embedder returned an empty test vector")
            await orchestrator.start()
        except Exception as e:
            logger.error(
                "memory_initialize_failed",
                extra={"workspace": self._workspace_path, "error.message": str(e)},
                exc_info=True,
            )
            if orchestrator is not None:
                try:
                    await orchestrator.stop()
                except Exception:
                    logger.debug("orchestrator_stop_failed", exc_info=True)
            self._orchestrator = None
            self._state.set_system_state(SystemState.ERROR, describe_failure(e))
            return False

        self._orchestrator = orchestrator
        return True

    async def ingest_turn(
        self,
        messages: list[Message],
        llm: JsonLLMProvider | None = None,
        model_id: str | None = None,
        tool_meta: ToolMeta | None = None,
        full_history: list[Message] | None = None,
        file_refs: list[FileRef] | None = None,
    ) -> None:
        """Process a turn, bounded by the ingest timeout. Never raises."""
        if self._orchestrator is None:
            return
        options = TurnOptions(
            model_id=model_id,
            tool_meta=tool_meta,
            full_history=full_history,
            file_refs=file_refs,
        )
        timeout = self._config.ingest_timeout_seconds
        try:
            await asyncio.wait_for(
                self._orchestrator.process_turn(messages, llm, options), timeout=timeout
            )
        except TimeoutError:
            logger.warning(
                "ingest_turn_failed",
                extra={"error.message": str(TimeoutFailure("process_turn", timeout))},
            )
        except Exception as e:
            logger.warning(
                "ingest_turn_failed",
                extra={"error.message": str(e), "error.type": type(e).__name__},
            )

    async def search_memory(
        self, query: str, limit: int | None = None
    ) -> list[ConversationFact]:
        if self._orchestrator is None:
            return []
        try:
            return await self._orchestrator.search(query, limit or self._config.search_limit)
        except Exception as e:
            raise SearchError(f"Memory search failed: {e}") from e

    async def search_episodes(
        self, query: str, limit: int | None = None
    ) -> list[EpisodeSearchResult]:
        if self._orchestrator is None:
            return []
        try:
            return await self._orchestrator.search_episodes(
                query, limit or self._config.episode_limit
            )
        except Exception as e:
            raise SearchError(f"Episode search failed: {e}") from e

    async def search_memories_with_filters(
        self,
        query: str,
        *,
        start: datetime | None = None,
        end: datetime | None = None,
        episode_type: EpisodeType = "all",
        relevance_threshold: float | None = None,
        limit: int = 10,
    ) -> list[MemorySearchItem]:
        if self._orchestrator is None:
            return []
        try:
            return await self._orchestrator.search_service.search_with_filters(
                query,
                limit=limit,
                start=start,
                end=end,
                episode_type=episode_type,
                relevance_threshold=relevance_threshold,
            )
        except Exception as e:
            logger.error("filtered_search_failed", extra={"error.message": str(e)})
            raise SearchError(f"Memory search failed: {e}") from e

    async def get_episode_details(
        self, episode_id: str, limit: int = 5
    ) -> dict[str, Any] | None:
        if self._orchestrator is None:
            return None
        return await self._orchestrator.get_episode_details(episode_id, limit)

    async def collect_message(self, message: Message) -> None:
        if self._orchestrator is None:
            logger.debug("collect_message_skipped", extra={"workspace": self._workspace_path})
            return
        try:
            await self._orchestrator.collect_message(message)
        except Exception as e:
            logger.warning("collect_message_failed", extra={"error.message": str(e)})

    async def clear_memory_data(self) -> None:
        if self._orchestrator is None:
            return
        try:
            await self._orchestrator.clear_memory_data()
        except Exception:
            logger.error("clear_memory_failed", exc_info=True)

    async def handle_files_indexed(self, updates: list[FileRefUpdate]) -> None:
        if self._orchestrator is None or not updates:
            return
        try:
            await self._orchestrator.handle_files_indexed(updates)
        except Exception as e:
            logger.warning("files_indexed_failed", extra={"error.message": str(e)})

    async def dispose(self) -> None:
        if self._orchestrator is not None:
            await self._orchestrator.stop()
            self._orchestrator = None
        self._state.dispose()


class MemoryRegistry:
    """Workspace path -> manager map owned by the host."""

    def __init__(
        self,
        manager_factory: Callable[[str], ConversationMemoryManager] | None = None,
    ):
        self._factory = manager_factory or ConversationMemoryManager
        self._managers: dict[str, ConversationMemoryManager] = {}

    def __len__(self) -> int:
        return len(self._managers)

    def __contains__(self, workspace_path: object) -> bool:
        return workspace_path in self._managers

    def get(self, workspace_path: str) -> ConversationMemoryManager | None:
        return self._managers.get(workspace_path)

    def get_or_create(self, workspace_path: str) -> ConversationMemoryManager:
        manager = self._managers.get(workspace_path)
        if manager is None:
            manager = self._factory(workspace_path)
            self._managers[workspace_path] = manager
        return manager

    async def remove(self, workspace_path: str) -> None:
        manager = self._managers.pop(workspace_path, None)
        if manager is not None:
            await manager.dispose()

    async def close_all(self) -> None:
        managers, self._managers = list(self._managers.values()), {}
        for manager in managers:
            try:
                await manager.dispose()
            except Exception:
                logger.warning(
                    "manager_dispose_failed",
                    extra={"workspace": manager.workspace_path},
                    exc_info=True,
                )
