"""Public types for conversation memory."""

from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Literal


def parse_datetime(s: str | None) -> datetime | None:
    """Parse ISO datetime string, handling Z suffix and ensuring timezone awareness."""
    if not s:
        return None
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt


def _iso(dt: datetime | None) -> str | None:
    return dt.isoformat() if dt else None


Role = Literal["user", "assistant", "system"]


@dataclass(frozen=True)
class Message:
    """A single chat message fed to the memory engine."""

    role: Role
    content: str
    timestamp: str | None = None

    @property
    def time(self) -> datetime | None:
        return parse_datetime(self.timestamp)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.timestamp:
            d["timestamp"] = self.timestamp
        return d

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> "Message":
        return cls(
            role=d.get("role", "user"),
            content=d.get("content", ""),
            timestamp=d.get("timestamp"),
        )


class FactCategory(Enum):
    """Fact classification, each with its own decay model.

    - infrastructure: durable environment facts (stack, hosting, tooling)
    - architecture: design decisions; superseded by newer decisions
    - debugging: active problems; resolved or aged out
    - pattern: conventions and recurring practices
    """

    INFRASTRUCTURE = "infrastructure"
    ARCHITECTURE = "architecture"
    DEBUGGING = "debugging"
    PATTERN = "pattern"

    @classmethod
    def parse(cls, value: Any) -> "FactCategory | None":
        """Return the category for a raw value, or None if unknown."""
        if isinstance(value, cls):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


class SystemState(Enum):
    """Lifecycle state reported to the host."""

    NOT_INITIALIZED = "NotInitialized"
    INITIALIZING = "Initializing"
    INDEXED = "Indexed"
    STANDBY = "Standby"
    ERROR = "Error"


DEFAULT_CONFIDENCE = 0.7


@dataclass
class ConversationFact:
    """A durable fact distilled from conversation.

    Category is fixed at creation. resolved/superseded/stale state is
    mutated in place through point updates, never by re-insertion.
    """

    id: str
    content: str
    category: FactCategory
    confidence: float = DEFAULT_CONFIDENCE
    reference_time: datetime | None = None
    ingestion_time: datetime | None = None
    workspace_path: str = ""

    resolved: bool = False
    resolved_at: datetime | None = None
    superseded_by: str | None = None
    superseded_at: datetime | None = None

    source_model: str | None = None
    episode_id: str | None = None
    episode_context: str | None = None
    context_description: str | None = None

    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def is_superseded(self) -> bool:
        return bool(self.superseded_by)

    def to_payload(self) -> dict[str, Any]:
        """Serialize to a vector store payload."""
        d: dict[str, Any] = {
            "id": self.id,
            "content": self.content,
            "category": self.category.value,
            "confidence": self.confidence,
            "workspace_path": self.workspace_path,
            "reference_time": _iso(self.reference_time),
            "ingestion_time": _iso(self.ingestion_time),
            "resolved": self.resolved,
        }
        if self.resolved_at:
            d["resolved_at"] = self.resolved_at.isoformat()
        if self.superseded_by:
            d["superseded_by"] = self.superseded_by
        if self.superseded_at:
            d["superseded_at"] = self.superseded_at.isoformat()
        if self.source_model:
            d["source_model"] = self.source_model
        if self.episode_id:
            d["episode_id"] = self.episode_id
        if self.episode_context:
            d["episode_context"] = self.episode_context
        if self.context_description:
            d["context_description"] = self.context_description
        if self.metadata:
            d["metadata"] = dict(self.metadata)
        return d

    @classmethod
    def from_payload(
        cls, payload: dict[str, Any], fact_id: str | None = None
    ) -> "ConversationFact | None":
        """Deserialize from a store payload; None if the category is unknown."""
        category = FactCategory.parse(payload.get("category"))
        if category is None:
            return None
        confidence = payload.get("confidence")
        return cls(
            id=str(fact_id or payload.get("id", "")),
            content=str(payload.get("content", "")),
            category=category,
            confidence=(
                float(confidence)
                if isinstance(confidence, int | float)
                else DEFAULT_CONFIDENCE
            ),
            reference_time=parse_datetime(payload.get("reference_time")),
            ingestion_time=parse_datetime(payload.get("ingestion_time")),
            workspace_path=payload.get("workspace_path", ""),
            resolved=bool(payload.get("resolved", False)),
            resolved_at=parse_datetime(payload.get("resolved_at")),
            superseded_by=payload.get("superseded_by"),
            superseded_at=parse_datetime(payload.get("superseded_at")),
            source_model=payload.get("source_model"),
            episode_id=payload.get("episode_id"),
            episode_context=payload.get("episode_context"),
            context_description=payload.get("context_description"),
            metadata=dict(payload.get("metadata") or {}),
        )


@dataclass(frozen=True)
class FactCandidate:
    """Extractor output before conflict resolution and embedding."""

    content: str
    category: FactCategory
    confidence: float = DEFAULT_CONFIDENCE


@dataclass(frozen=True)
class ConversationEpisode:
    """A closed, described segment of conversation."""

    id: str
    workspace_id: str
    context_description: str
    message_count: int
    start_time: datetime | None
    end_time: datetime | None
    messages: tuple[Message, ...] = ()

    def with_description(self, description: str) -> "ConversationEpisode":
        return replace(self, context_description=description)

    def to_payload(self) -> dict[str, Any]:
        """Serialize for the episode collection (messages are not stored)."""
        return {
            "episode_id": self.id,
            "workspace_path": self.workspace_id,
            "context_description": self.context_description,
            "message_count": self.message_count,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
        }

    @classmethod
    def from_payload(cls, payload: dict[str, Any]) -> "ConversationEpisode":
        return cls(
            id=str(payload.get("episode_id", "")),
            workspace_id=payload.get("workspace_path", ""),
            context_description=payload.get("context_description", ""),
            message_count=int(payload.get("message_count", 0)),
            start_time=parse_datetime(payload.get("start_time")),
            end_time=parse_datetime(payload.get("end_time")),
        )


@dataclass
class VectorRecord:
    """A stored point; score is only set on search results."""

    id: str
    vector: list[float] | None
    payload: dict[str, Any]
    score: float | None = None


@dataclass
class FilterPage:
    """One page of a filtered scan. next_cursor None means end of results."""

    records: list[VectorRecord]
    next_cursor: str | None = None


@dataclass(frozen=True)
class ProjectContext:
    """Facts about the workspace used to steer extraction prompts."""

    workspace_name: str
    language: str = "unknown"
    framework: str | None = None
    package_manager: str | None = None


@dataclass
class Hints:
    """Workspace hints included in episode description prompts."""

    deps: list[str] = field(default_factory=list)
    tags: list[str] = field(default_factory=list)
    dirs: list[str] = field(default_factory=list)
    extra: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.deps or self.tags or self.dirs or self.extra)


@dataclass(frozen=True)
class ToolMeta:
    """A tool invocation that happened during the turn."""

    name: str
    params: Any = None
    result_text: str | None = None


@dataclass(frozen=True)
class FileRef:
    """A file referenced in the turn, with its content hash."""

    path: str
    hash: str


@dataclass
class TurnOptions:
    """Optional context for process_turn."""

    model_id: str | None = None
    tool_meta: ToolMeta | None = None
    full_history: list[Message] | None = None
    file_refs: list[FileRef] | None = None


@dataclass(frozen=True)
class FileRefUpdate:
    """A file change event from the host's code indexer."""

    path: str
    status: str = "success"
    new_hash: str | None = None
    op: Literal["index", "delete", "change"] | None = None


class MemoryAction(Enum):
    """Conflict resolution outcome for a candidate fact."""

    ADD = "ADD"
    IGNORE = "IGNORE"
    SUPERSEDE = "SUPERSEDE"
    RESOLVE = "RESOLVE"


@dataclass
class ResolvedAction:
    """A conflict decision and the existing facts it applies to."""

    action: MemoryAction
    candidate: FactCandidate
    target_ids: list[str] = field(default_factory=list)


@dataclass
class ScoredFact:
    """A fact with its similarity, temporal and blended scores."""

    fact: ConversationFact
    similarity: float
    temporal: float
    score: float


@dataclass
class EpisodeSearchResult:
    """An episode matched by search, with its facts."""

    episode_id: str
    episode_context: str
    relevance_score: float
    fact_count: int
    facts: list[ConversationFact]
    timeframe: str


@dataclass
class MemorySearchItem:
    """Flat search result shape handed to host UIs."""

    id: str
    title: str
    content: str
    timestamp: str
    episode_type: str
    relevance_score: float
    episode_id: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "timestamp": self.timestamp,
            "episode_type": self.episode_type,
            "relevance_score": self.relevance_score,
            "episode_id": self.episode_id,
            "metadata": self.metadata,
        }


@dataclass
class MemoryStatus:
    """Snapshot of the state manager."""

    state: SystemState
    message: str
    processed_episodes: int = 0
    total_episodes: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "system_status": self.state.value,
            "message": self.message,
            "processed_episodes": self.processed_episodes,
            "total_episodes": self.total_episodes,
        }
