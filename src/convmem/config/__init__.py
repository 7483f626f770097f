"""Configuration module."""

from convmem.config.loader import load_config
from convmem.config.models import (
    ConfigError,
    EmbeddingsConfig,
    EpisodeConfig,
    ExtractionConfig,
    HintsConfig,
    MemoryConfig,
    ModelConfig,
    ProviderConfig,
    QdrantConfig,
    RetentionConfig,
    SegmentationConfig,
    TemporalConfig,
)
from convmem.config.paths import (
    get_artifacts_dir,
    get_config_path,
    get_convmem_home,
    get_logs_path,
    get_workspace_data_dir,
)

__all__ = [
    "ConfigError",
    "EmbeddingsConfig",
    "EpisodeConfig",
    "ExtractionConfig",
    "HintsConfig",
    "MemoryConfig",
    "ModelConfig",
    "ProviderConfig",
    "QdrantConfig",
    "RetentionConfig",
    "SegmentationConfig",
    "TemporalConfig",
    "get_artifacts_dir",
    "get_config_path",
    "get_convmem_home",
    "get_logs_path",
    "get_workspace_data_dir",
    "load_config",
]
