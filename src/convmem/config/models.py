"""Configuration models using Pydantic."""

import logging
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, Field, SecretStr, field_validator

from convmem.config.paths import get_vectors_path

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Configuration error."""

    pass


class TemporalConfig(BaseModel):
    """Per-category decay parameters for temporal scoring."""

    infra_multiplier: float = 1.2
    architecture_decay_days: float = 90
    architecture_floor: float = 0.3
    superseded_score: float = 0.1
    debugging_resolved_score: float = 0.15
    debugging_old_days: float = 14
    debugging_old_score: float = 0.1
    pattern_base: float = 0.8
    pattern_decay_days: float = 180
    pattern_floor: float = 0.5


class RetentionConfig(BaseModel):
    """Cleanup of debugging facts."""

    enabled: bool = True
    interval_minutes: float = 60
    resolved_days: float = 7
    stale_unresolved_days: float = 30
    page_size: int = 128


class SegmentationConfig(BaseModel):
    """Episode boundary detection.

    heuristic: time gaps, topic patterns and an optional message cap.
    semantic: heuristic plus embedding centroid drift.
    llm_verified: semantic plus an LLM pass that refines boundaries.
    """

    mode: Literal["heuristic", "semantic", "llm_verified"] = "heuristic"
    time_gap_minutes: float = 30
    # None disables the cap
    max_messages: int | None = None
    topic_patterns: list[str] = []
    drift_k: float = 2.5
    min_window: int = 5
    distance: Literal["cosine", "dot"] = "cosine"
    refiner_timeout_seconds: float = 15


class HintsConfig(BaseModel):
    """Where episode description hints come from."""

    source: Literal["none", "workspace", "memory", "auto"] = "workspace"
    extra: list[str] = []


class EpisodeConfig(BaseModel):
    """Episode pipeline configuration."""

    enabled: bool = True
    segmentation: SegmentationConfig = Field(default_factory=SegmentationConfig)
    hints: HintsConfig = Field(default_factory=HintsConfig)
    # Background processing starts once this many messages are buffered
    min_buffer: int = 4
    store_episodes: bool = True


class ExtractionConfig(BaseModel):
    """LLM settings for fact extraction."""

    temperature: float = 0.1
    max_tokens: int = 1500
    request_timeout_seconds: float = 30
    # Messages of the current turn sent to the extractor
    turn_window: int = 5
    transcript_chars: int = 4000
    message_chars: int = 2000


class ModelConfig(BaseModel):
    """Model used for JSON generation."""

    provider: Literal["openai"] = "openai"
    model: str | None = None
    max_tokens: int = 1500


class ProviderConfig(BaseModel):
    """Provider-level configuration."""

    api_key: SecretStr | None = None
    base_url: str | None = None


class EmbeddingsConfig(BaseModel):
    """Configuration for embedding model.

    Only OpenAI embeddings are shipped; hosts can inject any Embedder.
    """

    provider: Literal["openai"] = "openai"
    model: str = "text-embedding-3-small"
    dimension: int = 1536


class QdrantConfig(BaseModel):
    """Connection settings for the Qdrant vector store."""

    url: str = "http://localhost:6333"
    api_key: SecretStr | None = None
    timeout_seconds: int = 30


class MemoryConfig(BaseModel):
    """Root configuration model."""

    enabled: bool = True
    store: Literal["numpy", "qdrant"] = "numpy"
    vectors_path: Path = Field(default_factory=get_vectors_path)

    init_timeout_seconds: float = 60
    ingest_timeout_seconds: float = 45
    # Weight of similarity in the blended search score
    search_alpha: float = 0.65
    search_limit: int = 10
    episode_limit: int = 5

    temporal: TemporalConfig = Field(default_factory=TemporalConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    episodes: EpisodeConfig = Field(default_factory=EpisodeConfig)
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    model: ModelConfig = Field(default_factory=ModelConfig)
    embeddings: EmbeddingsConfig = Field(default_factory=EmbeddingsConfig)
    qdrant: QdrantConfig = Field(default_factory=QdrantConfig)
    openai: ProviderConfig = Field(default_factory=ProviderConfig)

    @field_validator("search_alpha")
    @classmethod
    def _check_alpha(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("search_alpha must be between 0 and 1")
        return v

    def resolve_openai_key(self) -> SecretStr | None:
        """Get the OpenAI API key, if configured."""
        if self.openai.api_key is None:
            logger.debug("openai_api_key_missing")
        return self.openai.api_key
