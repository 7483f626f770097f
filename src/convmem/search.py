"""Query path: blended fact ranking and episode-level search.

Failures here propagate. Callers that need graceful degradation (the
manager) catch and re-raise with context.
"""

import logging
from collections import defaultdict
from datetime import UTC, datetime
from typing import Any, Literal

from convmem.errors import EmbeddingFailure, StorageFailure
from convmem.lifecycle.temporal import TemporalScorer
from convmem.protocols import Embedder, VectorStore
from convmem.types import (
    ConversationFact,
    EpisodeSearchResult,
    MemorySearchItem,
    ScoredFact,
    VectorRecord,
    parse_datetime,
)

logger = logging.getLogger(__name__)

EpisodeType = Literal["all", "conversation", "fact", "insight"]

DEFAULT_ALPHA = 0.65
EPISODE_FACT_POOL = 50
COHERENCE_BONUS = 0.1
COHERENCE_MIN_FACTS = 3
TITLE_CHARS = 50
UNKNOWN_EPISODE = "unknown"


def format_timeframe(facts: list[ConversationFact]) -> str:
    """Single date, or a "start - end" date range."""
    times = sorted(f.reference_time for f in facts if f.reference_time is not None)
    if not times:
        return "Unknown timeframe"
    earliest, latest = times[0].date(), times[-1].date()
    if earliest == latest:
        return earliest.isoformat()
    return f"{earliest.isoformat()} - {latest.isoformat()}"


def _latest(facts: list[ConversationFact]) -> datetime | None:
    times = [f.reference_time for f in facts if f.reference_time is not None]
    return max(times) if times else None


def episode_relevance(facts: list[ConversationFact], base: float | None = None) -> float:
    """Base score (average confidence by default) plus a bonus for substantial episodes."""
    if not facts and base is None:
        return 0.0
    if base is None:
        base = sum(f.confidence for f in facts) / len(facts)
    bonus = COHERENCE_BONUS if len(facts) > COHERENCE_MIN_FACTS else 0.0
    return base + bonus


class ConversationMemorySearchService:
    """Ranks stored facts and episodes for a query.

    Fact ranking blends vector similarity with the temporal score:
    `alpha * similarity + (1 - alpha) * temporal`.
    """

    def __init__(
        self,
        embedder: Embedder,
        store: VectorStore,
        workspace_path: str,
        temporal: TemporalScorer | None = None,
        alpha: float = DEFAULT_ALPHA,
        episode_store: VectorStore | None = None,
    ):
        self._embedder = embedder
        self._store = store
        self._workspace_path = workspace_path
        self._temporal = temporal or TemporalScorer()
        self._alpha = alpha
        self._episode_store = episode_store

    async def _embed_query(self, query: str) -> list[float]:
        try:
            embedding = await self._embedder.embed(query)
        except EmbeddingFailure:
            raise
        except Exception as e:
            raise EmbeddingFailure(str(e)) from e
        if not embedding:
            raise EmbeddingFailure("embedder returned an empty vector")
        return embedding

    async def _search_store(
        self,
        store: VectorStore,
        query: str,
        embedding: list[float],
        limit: int,
        filters: dict[str, Any],
    ) -> list[VectorRecord]:
        try:
            return await store.search(query, embedding, limit, filters)
        except StorageFailure:
            raise
        except Exception as e:
            raise StorageFailure(f"search failed: {e}") from e

    def _scope(self, filters: dict[str, Any] | None) -> dict[str, Any]:
        return {**(filters or {}), "workspace_path": self._workspace_path}

    def rank(
        self, records: list[VectorRecord], now: datetime | None = None
    ) -> list[ScoredFact]:
        now = now or datetime.now(UTC)
        scored = []
        for record in records:
            fact = ConversationFact.from_payload(record.payload, record.id)
            if fact is None:
                continue
            similarity = record.score if isinstance(record.score, int | float) else 0.0
            temporal = self._temporal.score(fact, now)
            total = self._alpha * similarity + (1 - self._alpha) * temporal
            scored.append(ScoredFact(fact, similarity, temporal, total))
        scored.sort(key=lambda s: s.score, reverse=True)
        return scored

    async def search_scored(
        self,
        query: str,
        limit: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[ScoredFact]:
        embedding = await self._embed_query(query)
        records = await self._search_store(
            self._store, query, embedding, limit, self._scope(filters)
        )
        return self.rank(records)

    async def search(
        self,
        query: str,
        limit: int = 10,
        filters: dict[str, Any] | None = None,
    ) -> list[ConversationFact]:
        return [s.fact for s in await self.search_scored(query, limit, filters)]

    async def search_episodes(self, query: str, limit: int = 5) -> list[EpisodeSearchResult]:
        """Episodes relevant to a query, best first.

        With an episode collection the episode records are searched directly
        and their facts attached; otherwise fact hits are grouped by episode.
        """
        embedding = await self._embed_query(query)

        if self._episode_store is not None:
            results = await self._search_episode_records(query, embedding, limit)
            if results:
                return results

        records = await self._search_store(
            self._store, query, embedding, EPISODE_FACT_POOL, self._scope(None)
        )
        groups: dict[str, list[ConversationFact]] = defaultdict(list)
        for record in records:
            fact = ConversationFact.from_payload(record.payload, record.id)
            if fact is not None:
                groups[fact.episode_id or UNKNOWN_EPISODE].append(fact)

        results = [
            self._episode_result(episode_id, facts, None, None)
            for episode_id, facts in groups.items()
        ]
        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results[:limit]

    async def _search_episode_records(
        self, query: str, embedding: list[float], limit: int
    ) -> list[EpisodeSearchResult]:
        assert self._episode_store is not None
        hits = await self._search_store(
            self._episode_store, query, embedding, limit, self._scope(None)
        )
        results = []
        for hit in hits:
            episode_id = str(hit.payload.get("episode_id", hit.id))
            facts = await self.episode_facts(episode_id)
            results.append(
                self._episode_result(
                    episode_id,
                    facts,
                    hit.payload.get("context_description"),
                    hit.score or 0.0,
                )
            )
        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results

    def _episode_result(
        self,
        episode_id: str,
        facts: list[ConversationFact],
        context: str | None,
        base: float | None,
    ) -> EpisodeSearchResult:
        facts = sorted(facts, key=lambda f: f.confidence, reverse=True)
        if context is None:
            context = next(
                (f.episode_context for f in facts if f.episode_context),
                "Episode context unavailable",
            )
        return EpisodeSearchResult(
            episode_id=episode_id,
            episode_context=context,
            relevance_score=episode_relevance(facts, base),
            fact_count=len(facts),
            facts=facts,
            timeframe=format_timeframe(facts),
        )

    async def episode_facts(
        self, episode_id: str, limit: int = 200
    ) -> list[ConversationFact]:
        try:
            page = await self._store.filter(
                limit, {"workspace_path": self._workspace_path, "episode_id": episode_id}
            )
        except StorageFailure:
            raise
        except Exception as e:
            raise StorageFailure(f"filter failed: {e}") from e
        facts = []
        for record in page.records:
            fact = ConversationFact.from_payload(record.payload, record.id)
            if fact is not None:
                facts.append(fact)
        return facts

    async def get_episode_details(
        self, episode_id: str, limit: int = 5
    ) -> dict[str, Any] | None:
        """Context, timeframe and the most relevant facts of one episode."""
        facts = await self.episode_facts(episode_id)
        if not facts:
            return None
        limit = max(1, min(limit, 20))
        now = datetime.now(UTC)
        ranked = sorted(facts, key=lambda f: self._temporal.score(f, now), reverse=True)
        context = next(
            (f.episode_context for f in facts if f.episode_context),
            "Episode context unavailable",
        )
        return {
            "episode_id": episode_id,
            "episode_context": context,
            "timeframe": format_timeframe(facts),
            "fact_count": len(facts),
            "facts": [
                {
                    "id": f.id,
                    "content": f.content,
                    "category": f.category.value,
                    "confidence": f.confidence,
                    "reference_time": (
                        f.reference_time.isoformat() if f.reference_time else None
                    ),
                }
                for f in ranked[:limit]
            ],
        }

    async def search_with_filters(
        self,
        query: str,
        *,
        limit: int = 10,
        start: datetime | None = None,
        end: datetime | None = None,
        episode_type: EpisodeType = "all",
        relevance_threshold: float | None = None,
    ) -> list[MemorySearchItem]:
        """Episode search first, falling back to fact search when nothing matches."""
        items = [
            self._episode_item(r)
            for r in await self.search_episodes(query, max(limit * 2, 20))
        ]
        if not items:
            items = [self._fact_item(s) for s in await self.search_scored(query)]

        if start is not None or end is not None:
            items = [i for i in items if _within(i.timestamp, start, end)]
        if episode_type != "all":
            items = [i for i in items if i.episode_type == episode_type]
        if relevance_threshold is not None and relevance_threshold > 0:
            items = [i for i in items if i.relevance_score >= relevance_threshold]
        return items[:limit]

    def _episode_item(self, result: EpisodeSearchResult) -> MemorySearchItem:
        latest = _latest(result.facts)
        return MemorySearchItem(
            id=result.episode_id,
            title=result.episode_context,
            content="\n".join(f.content for f in result.facts[:5]),
            timestamp=latest.isoformat() if latest else "",
            episode_type="conversation",
            relevance_score=result.relevance_score,
            episode_id=result.episode_id,
            metadata={"fact_count": result.fact_count, "timeframe": result.timeframe},
        )

    def _fact_item(self, scored: ScoredFact) -> MemorySearchItem:
        fact = scored.fact
        return MemorySearchItem(
            id=fact.id,
            title=fact.content[:TITLE_CHARS] or "Memory",
            content=fact.content,
            timestamp=fact.reference_time.isoformat() if fact.reference_time else "",
            episode_type="fact",
            relevance_score=scored.score,
            episode_id=fact.episode_id,
            metadata={"category": fact.category.value, **fact.metadata},
        )


def _aware(when: datetime | None) -> datetime | None:
    if when is not None and when.tzinfo is None:
        return when.replace(tzinfo=UTC)
    return when


def _within(timestamp: str, start: datetime | None, end: datetime | None) -> bool:
    when = _aware(parse_datetime(timestamp))
    if when is None:
        return False
    start, end = _aware(start), _aware(end)
    if start is not None and when < start:
        return False
    if end is not None and when > end:
        return False
    return True
