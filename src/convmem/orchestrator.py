"""Conversation memory orchestration for one workspace.

The orchestrator coordinates fact extraction, embedding and storage for
chat turns, background episode processing for collected messages, and
the query path. Ingestion never raises for provider or store failures:
they are logged and reflected in the state message. Search failures
propagate to the caller.
"""

import asyncio
import logging
import shutil
import uuid
from datetime import UTC, datetime
from typing import Any

from convmem.artifacts import (
    build_digest,
    digest_metadata,
    minify_params,
    persist_artifact,
    should_persist,
)
from convmem.config.models import MemoryConfig
from convmem.config.paths import get_workspace_data_dir
from convmem.conflicts import ConflictResolver
from convmem.episodes import (
    EpisodeContextGenerator,
    EpisodeDetector,
    create_hints_provider,
)
from convmem.errors import (
    EmbeddingFailure,
    InitializationError,
    TimeoutFailure,
    describe_failure,
)
from convmem.extractor import ConversationFactExtractor
from convmem.lifecycle import RetentionService, TemporalScorer
from convmem.project import detect_project_context
from convmem.protocols import Embedder, JsonLLMProvider, VectorStore
from convmem.reconcile import (
    ReconcileReport,
    handle_files_indexed,
    resolve_file_ref_updates,
)
from convmem.search import ConversationMemorySearchService
from convmem.state import ConversationMemoryStateManager
from convmem.types import (
    ConversationEpisode,
    ConversationFact,
    EpisodeSearchResult,
    FactCandidate,
    FactCategory,
    FileRefUpdate,
    MemoryAction,
    Message,
    ProjectContext,
    SystemState,
    ToolMeta,
    TurnOptions,
)

logger = logging.getLogger(__name__)

DIGEST_CONFIDENCE = 0.6


def tool_message(tool: ToolMeta) -> Message:
    """Synthetic assistant message describing a tool call and its output."""
    content = f"TOOL: {tool.name}({minify_params(tool.params)})"
    if tool.result_text:
        content += f"\nTOOL_OUT: {tool.result_text}"
    return Message(role="assistant", content=content)


class ConversationMemoryOrchestrator:
    """Turns chat into stored facts and queries back into ranked results."""

    def __init__(
        self,
        workspace_path: str,
        vector_store: VectorStore,
        embedder: Embedder,
        state_manager: ConversationMemoryStateManager,
        llm: JsonLLMProvider | None = None,
        episode_store: VectorStore | None = None,
        config: MemoryConfig | None = None,
    ):
        self._workspace_path = workspace_path
        self._store = vector_store
        self._embedder = embedder
        self._state = state_manager
        self._llm = llm
        self._episode_store = episode_store
        self._config = config or MemoryConfig()

        self._temporal = TemporalScorer(self._config.temporal)
        self._extractor = ConversationFactExtractor(self._config.extraction)
        self._resolver = ConflictResolver(vector_store, workspace_path)
        self._search = ConversationMemorySearchService(
            embedder,
            vector_store,
            workspace_path,
            temporal=self._temporal,
            alpha=self._config.search_alpha,
            episode_store=episode_store,
        )
        self._retention = RetentionService(
            vector_store, workspace_path, self._config.retention
        )
        episodes = self._config.episodes
        self._detector = EpisodeDetector(
            EpisodeContextGenerator(
                llm, create_hints_provider(episodes.hints, workspace_path, vector_store)
            ),
            episodes.segmentation,
            embedder=embedder,
            llm=llm,
        )

        self._init_task: asyncio.Task | None = None
        self._initialized = False
        self._init_error: BaseException | None = None
        self._turn_lock = asyncio.Lock()
        self._project: ProjectContext | None = None

        self._buffer: list[Message] = []
        self._processing_task: asyncio.Task | None = None

    @property
    def workspace_path(self) -> str:
        return self._workspace_path

    @property
    def collection_name(self) -> str:
        return self._store.collection_name

    @property
    def vector_store(self) -> VectorStore:
        return self._store

    @property
    def embedder(self) -> Embedder:
        return self._embedder

    @property
    def retention(self) -> RetentionService:
        return self._retention

    # -- lifecycle -------------------------------------------------------

    async def start(self) -> None:
        """Ensure collections exist and start retention.

        Concurrent callers share one initialization. On failure the state
        is left as it was and InitializationError is raised.
        """
        if self._initialized:
            return
        if self._init_task is None:
            self._init_task = asyncio.create_task(self._initialize())
        task = self._init_task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and (task.cancelled() or task.exception() is not None):
                self._init_task = None

    async def _ensure_collections(self) -> None:
        dimension = self._embedder.dimension
        await self._store.ensure_collection(self._store.collection_name, dimension)
        if self._episode_store is not None:
            await self._episode_store.ensure_collection(
                self._episode_store.collection_name, dimension
            )

    async def _initialize(self) -> None:
        timeout = self._config.init_timeout_seconds
        try:
            await asyncio.wait_for(self._ensure_collections(), timeout=timeout)
        except TimeoutError as e:
            failure = TimeoutFailure("vector store initialization", timeout)
            self._init_error = failure
            logger.error("memory_start_failed", extra={"error.message": str(failure)})
            raise InitializationError(str(failure)) from e
        except Exception as e:
            self._init_error = e
            logger.error(
                "memory_start_failed",
                extra={"error.message": str(e), "error.type": type(e).__name__},
            )
            raise InitializationError(f"conversation memory startup failed: {e}") from e

        self._init_error = None
        self._initialized = True
        self._state.set_system_state(SystemState.INDEXED, "Conversation memory ready")
        logger.info(
            "memory_started",
            extra={"workspace": self._workspace_path, "collection": self.collection_name},
        )

        if self._config.retention.enabled:
            try:
                await self._retention.start()
            except Exception:
                logger.warning("retention_start_failed", exc_info=True)

    def get_initialization_status(self) -> dict[str, Any]:
        return {
            "is_initialized": self._initialized,
            "is_initializing": self._init_task is not None and not self._initialized,
            "error": str(self._init_error) if self._init_error else None,
        }

    async def stop(self) -> None:
        if self._state.state != SystemState.ERROR:
            self._state.set_system_state(SystemState.STANDBY, "")
        await self._retention.stop()
        if self._processing_task is not None and not self._processing_task.done():
            self._processing_task.cancel()
            try:
                await self._processing_task
            except asyncio.CancelledError:
                pass
        self._processing_task = None

    # -- helpers ---------------------------------------------------------

    async def _project_context(self) -> ProjectContext:
        if self._project is None:
            self._project = await asyncio.to_thread(
                detect_project_context, self._workspace_path
            )
        return self._project

    async def _embed(self, text: str) -> list[float]:
        try:
            embedding = await self._embedder.embed(text)
        except EmbeddingFailure:
            raise
        except Exception as e:
            raise EmbeddingFailure(str(e)) from e
        if not embedding:
            raise EmbeddingFailure("embedder returned an empty vector")
        if len(embedding) != self._embedder.dimension:
            raise EmbeddingFailure(
                f"embedder returned {len(embedding)} dimensions, "
                f"expected {self._embedder.dimension}"
            )
        return embedding

    def _degrade(self, error: BaseException) -> None:
        self._state.set_system_state(self._state.state, describe_failure(error))

    async def _ingest(
        self,
        candidates: list[FactCandidate],
        *,
        source_model: str | None = None,
        episode_id: str | None = None,
        episode_context: str | None = None,
        context_description: str | None = None,
        reference_time: datetime | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> int:
        """Resolve conflicts, embed and store candidates in one insert.

        Every candidate is embedded before anything is written, so one
        embedding failure stores nothing.

        Returns:
            Number of facts inserted.
        """
        now = datetime.now(UTC)
        seen: set[str] = set()
        facts: list[ConversationFact] = []
        vectors: list[list[float]] = []
        supersedes: list[tuple[str, list[str]]] = []
        resolves: list[str] = []

        for candidate in candidates:
            key = candidate.content.strip().lower()
            if key in seen:
                continue
            seen.add(key)

            embedding = await self._embed(candidate.content)
            decision = await self._resolver.resolve(candidate, embedding)
            if decision.action == MemoryAction.IGNORE:
                continue
            if decision.action == MemoryAction.RESOLVE:
                resolves.extend(decision.target_ids)
                continue

            fact = ConversationFact(
                id=str(uuid.uuid4()),
                content=candidate.content,
                category=candidate.category,
                confidence=candidate.confidence,
                reference_time=reference_time or now,
                ingestion_time=now,
                workspace_path=self._workspace_path,
                source_model=source_model,
                episode_id=episode_id,
                episode_context=episode_context,
                context_description=context_description,
                metadata=dict(metadata or {}),
            )
            if decision.action == MemoryAction.SUPERSEDE:
                supersedes.append((fact.id, decision.target_ids))
            facts.append(fact)
            vectors.append(embedding)

        if facts:
            await self._store.insert(
                vectors, [f.id for f in facts], [f.to_payload() for f in facts]
            )

        stamp = now.isoformat()
        for new_id, targets in supersedes:
            for target in targets:
                await self._store.update(
                    target, None, {"superseded_by": new_id, "superseded_at": stamp}
                )
        for target in dict.fromkeys(resolves):
            await self._store.update(target, None, {"resolved": True, "resolved_at": stamp})

        logger.info(
            "facts_ingested",
            extra={
                "fact.candidates": len(candidates),
                "fact.inserted": len(facts),
                "fact.superseded": sum(len(t) for _, t in supersedes),
                "fact.resolved": len(resolves),
                "episode.id": episode_id,
            },
        )
        return len(facts)

    # -- ingestion -------------------------------------------------------

    async def process_turn(
        self,
        messages: list[Message],
        llm: JsonLLMProvider | None = None,
        options: TurnOptions | None = None,
    ) -> None:
        """Extract and store facts from the most recent messages of a turn.

        Turns of one workspace are processed one at a time. Provider and
        store failures are logged and never raised.

        Raises:
            ValueError: messages is not a list of Message.
        """
        if not isinstance(messages, list) or not all(
            isinstance(m, Message) for m in messages
        ):
            raise ValueError("messages must be a list of Message")
        if not messages:
            return

        llm = llm or self._llm
        if llm is None:
            logger.warning("turn_skipped_no_llm", extra={"workspace": self._workspace_path})
            return
        options = options or TurnOptions()

        async with self._turn_lock:
            try:
                await self.start()
                await self._process_turn(messages, llm, options)
            except Exception as e:
                logger.warning(
                    "turn_processing_failed",
                    extra={"error.message": str(e), "error.type": type(e).__name__},
                    exc_info=True,
                )
                self._degrade(e)

    async def _process_turn(
        self, messages: list[Message], llm: JsonLLMProvider, options: TurnOptions
    ) -> None:
        project = await self._project_context()

        episode: ConversationEpisode | None = None
        if options.full_history:
            try:
                episodes = await self._detector.detect(
                    options.full_history, self._workspace_path, project
                )
                episode = episodes[-1] if episodes else None
            except Exception as e:
                logger.warning("turn_episode_detection_failed", extra={"error.message": str(e)})

        window = messages[-self._config.extraction.turn_window :]
        if options.tool_meta is not None:
            window = [*window, tool_message(options.tool_meta)]

        metadata: dict[str, Any] = {}
        if options.file_refs and len(options.file_refs) == 1:
            ref = options.file_refs[0]
            metadata = {"file_path": ref.path, "file_hash": ref.hash, "ref_status": "pending"}

        candidates = await self._extractor.extract(window, project, llm)
        if candidates:
            await self._ingest(
                candidates,
                source_model=options.model_id,
                episode_id=episode.id if episode else None,
                episode_context=episode.context_description if episode else None,
                context_description="Turn-level extraction",
                metadata=metadata,
            )

        if options.tool_meta is not None and should_persist(options.tool_meta):
            await self._store_tool_digest(options.tool_meta, options.model_id)

        if options.file_refs:
            await resolve_file_ref_updates(
                self._store,
                self._workspace_path,
                [FileRefUpdate(path=ref.path, new_hash=ref.hash) for ref in options.file_refs],
            )

    async def _store_tool_digest(self, tool: ToolMeta, model_id: str | None) -> None:
        artifact = await persist_artifact(self._workspace_path, tool)
        content = build_digest(tool, artifact)
        embedding = await self._embed(content)
        now = datetime.now(UTC)
        fact = ConversationFact(
            id=str(uuid.uuid4()),
            content=content,
            category=FactCategory.PATTERN,
            confidence=DIGEST_CONFIDENCE,
            reference_time=now,
            ingestion_time=now,
            workspace_path=self._workspace_path,
            source_model=model_id,
            context_description="Tool output digest",
            metadata=digest_metadata(tool, artifact),
        )
        await self._store.insert([embedding], [fact.id], [fact.to_payload()])

    async def collect_message(self, message: Message) -> None:
        """Buffer a message; episodes are processed in the background.

        Raises:
            ValueError: the message has no content.
        """
        if not isinstance(message, Message) or not message.content.strip():
            raise ValueError("Invalid message: missing content")
        if self._llm is None:
            self._state.set_system_state(
                SystemState.ERROR,
                "Memory collection unavailable - no language model configured",
            )
            return

        self._buffer.append(message)
        if len(self._buffer) < self._config.episodes.min_buffer:
            return
        if self._processing_task is None or self._processing_task.done():
            self._processing_task = asyncio.create_task(self._process_buffer())

    async def flush(self) -> None:
        """Wait for background episode processing to finish."""
        if self._processing_task is not None:
            await self._processing_task

    async def _process_buffer(self) -> None:
        while len(self._buffer) >= self._config.episodes.min_buffer:
            batch, self._buffer = self._buffer, []
            try:
                await self.start()
                project = await self._project_context()
                episodes = await self._detector.detect(batch, self._workspace_path, project)
            except Exception as e:
                # Keep the batch for the next collect_message
                self._buffer = batch + self._buffer
                logger.warning(
                    "episode_processing_failed",
                    extra={"error.message": str(e)},
                    exc_info=True,
                )
                self._state.set_system_state(
                    SystemState.ERROR, f"Memory processing failed: {describe_failure(e)}"
                )
                return

            self._state.set_progress(0, len(episodes))
            for done, episode in enumerate(episodes, start=1):
                try:
                    await self.process_episode(episode)
                except Exception as e:
                    logger.warning(
                        "episode_ingest_failed",
                        extra={"episode.id": episode.id, "error.message": str(e)},
                    )
                    self._state.set_system_state(
                        SystemState.ERROR, "Some memory processing failed - check logs"
                    )
                self._state.set_progress(done, len(episodes))

    async def process_episode(
        self, episode: ConversationEpisode, llm: JsonLLMProvider | None = None
    ) -> int:
        """Extract facts from a closed episode and store them with its linkage.

        Embedding and store failures propagate.

        Returns:
            Number of facts inserted.
        """
        llm = llm or self._llm
        if llm is None:
            raise ValueError("process_episode requires a language model")

        await self._store_episode_record(episode)
        project = await self._project_context()
        candidates = await self._extractor.extract(list(episode.messages), project, llm)
        if not candidates:
            return 0
        return await self._ingest(
            candidates,
            episode_id=episode.id,
            episode_context=episode.context_description,
            context_description=episode.context_description,
            reference_time=episode.end_time or episode.start_time,
        )

    async def _store_episode_record(self, episode: ConversationEpisode) -> None:
        if self._episode_store is None or not self._config.episodes.store_episodes:
            return
        embedding = await self._embed(episode.context_description)
        await self._episode_store.insert([embedding], [episode.id], [episode.to_payload()])

    # -- query -----------------------------------------------------------

    async def search(
        self,
        query: str,
        limit: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[ConversationFact]:
        return await self._search.search(query, limit, filters)

    async def search_episodes(self, query: str, limit: int = 5) -> list[EpisodeSearchResult]:
        return await self._search.search_episodes(query, limit)

    @property
    def search_service(self) -> ConversationMemorySearchService:
        return self._search

    async def get_episode_details(
        self, episode_id: str, limit: int = 5
    ) -> dict[str, Any] | None:
        try:
            return await self._search.get_episode_details(episode_id, limit)
        except Exception as e:
            logger.warning(
                "episode_details_failed",
                extra={"episode.id": episode_id, "error.message": str(e)},
            )
            return None

    # -- maintenance -----------------------------------------------------

    async def clear_memory_data(self) -> None:
        """Drop the workspace collections and its on-disk data directory."""
        for store in (self._store, self._episode_store):
            if store is None:
                continue
            try:
                await store.delete_collection()
            except Exception:
                logger.warning(
                    "delete_collection_failed",
                    extra={"collection": store.collection_name},
                    exc_info=True,
                )
                try:
                    await store.clear_collection()
                except Exception:
                    logger.error(
                        "clear_collection_failed",
                        extra={"collection": store.collection_name},
                        exc_info=True,
                    )

        data_dir = get_workspace_data_dir(self._workspace_path)
        await asyncio.to_thread(shutil.rmtree, data_dir, ignore_errors=True)

        self._buffer.clear()
        self._initialized = False
        self._init_task = None
        self._state.set_system_state(
            SystemState.STANDBY, "Conversation memory cleared successfully."
        )

    async def handle_files_indexed(self, updates: list[FileRefUpdate]) -> ReconcileReport:
        """Apply indexer events: hash reconciliation, then deletions and renames."""
        report = await resolve_file_ref_updates(
            self._store,
            self._workspace_path,
            [u for u in updates if u.op != "delete"],
        )
        await handle_files_indexed(self._store, self._embedder, self._workspace_path, updates)
        return report
