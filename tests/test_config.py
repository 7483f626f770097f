"""Tests for configuration loading and models."""

import pytest
from pydantic import SecretStr, ValidationError

from convmem.config import get_convmem_home
from convmem.config.loader import _resolve_env_secrets, load_config
from convmem.config.models import (
    ConfigError,
    EpisodeConfig,
    MemoryConfig,
    RetentionConfig,
    SegmentationConfig,
)


class TestModels:
    """Tests for config model defaults and validation."""

    def test_memory_defaults(self):
        config = MemoryConfig()
        assert config.enabled is True
        assert config.store == "numpy"
        assert config.search_alpha == 0.65
        assert config.embeddings.model == "text-embedding-3-small"
        assert config.embeddings.dimension == 1536
        assert config.extraction.temperature == 0.1
        assert config.extraction.max_tokens == 1500

    def test_segmentation_defaults(self):
        config = SegmentationConfig()
        assert config.mode == "heuristic"
        assert config.time_gap_minutes == 30
        assert config.max_messages is None

    def test_episode_and_retention_defaults(self):
        assert EpisodeConfig().min_buffer == 4
        assert RetentionConfig().resolved_days == 7
        assert RetentionConfig().stale_unresolved_days == 30

    def test_alpha_bounds(self):
        with pytest.raises(ValidationError):
            MemoryConfig(search_alpha=1.5)

    def test_invalid_store(self):
        with pytest.raises(ValidationError):
            MemoryConfig(store="sqlite")

    def test_openai_key(self):
        config = MemoryConfig(openai={"api_key": "sk-test"})
        assert config.resolve_openai_key().get_secret_value() == "sk-test"
        assert MemoryConfig().resolve_openai_key() is None


class TestResolveEnvSecrets:
    """Tests for environment secret resolution."""

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        monkeypatch.setenv("QDRANT_API_KEY", "qd-env")
        config = _resolve_env_secrets({})
        assert config["openai"]["api_key"].get_secret_value() == "sk-env"
        assert config["qdrant"]["api_key"].get_secret_value() == "qd-env"

    def test_file_value_wins(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        config = _resolve_env_secrets({"openai": {"api_key": "sk-file"}})
        assert config["openai"]["api_key"] == "sk-file"

    def test_missing_env(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        config = _resolve_env_secrets({})
        assert config["openai"].get("api_key") is None


class TestLoadConfig:
    """Tests for load_config."""

    def test_explicit_file(self, tmp_path, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        path = tmp_path / "config.toml"
        path.write_text(
            """
store = "qdrant"
search_alpha = 0.5

[qdrant]
url = "http://qdrant:6333"

[episodes.segmentation]
mode = "semantic"
max_messages = 40

[retention]
interval_minutes = 15
"""
        )
        config = load_config(path)
        assert config.store == "qdrant"
        assert config.search_alpha == 0.5
        assert config.qdrant.url == "http://qdrant:6333"
        assert config.episodes.segmentation.mode == "semantic"
        assert config.episodes.segmentation.max_messages == 40
        assert config.retention.interval_minutes == 15

    def test_missing_explicit_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_invalid_toml(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text("store = ")
        with pytest.raises(ConfigError, match="Invalid TOML"):
            load_config(path)

    def test_invalid_values(self, tmp_path):
        path = tmp_path / "config.toml"
        path.write_text('store = "sqlite"\n')
        with pytest.raises(ConfigError, match="Invalid configuration"):
            load_config(path)

    def test_defaults_without_file(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)
        monkeypatch.setenv("CONVMEM_HOME", str(tmp_path / "home"))
        monkeypatch.setenv("OPENAI_API_KEY", "sk-env")
        get_convmem_home.cache_clear()
        try:
            config = load_config()
        finally:
            get_convmem_home.cache_clear()
        assert config.store == "numpy"
        assert isinstance(config.openai.api_key, SecretStr)
