"""Centralized path management for convmem.

Global state (config, logs) lives under a single base directory, which can
be overridden with the CONVMEM_HOME environment variable. Per-workspace
data (tool artifacts) lives under `<workspace>/.roo-memory/`.
"""

import os
from functools import lru_cache
from pathlib import Path

ENV_VAR = "CONVMEM_HOME"

# Per-workspace directory removed by clear_memory_data()
WORKSPACE_DATA_DIR = ".roo-memory"


@lru_cache(maxsize=1)
def get_convmem_home() -> Path:
    """Get the base directory for convmem data.

    Resolution order:
    1. CONVMEM_HOME environment variable (if set)
    2. ~/.convmem
    """
    if env_home := os.environ.get(ENV_VAR):
        return Path(env_home).expanduser().resolve()
    return Path.home() / ".convmem"


def get_config_path() -> Path:
    """Get the default config file path."""
    return get_convmem_home() / "config.toml"


def get_logs_path() -> Path:
    """Get the JSONL log directory."""
    return get_convmem_home() / "logs"


def get_vectors_path() -> Path:
    """Get the directory for the in-process vector store's files."""
    return get_convmem_home() / "vectors"


def get_workspace_data_dir(workspace_path: str | Path) -> Path:
    """Get the per-workspace memory directory."""
    return Path(workspace_path) / WORKSPACE_DATA_DIR


def get_artifacts_dir(workspace_path: str | Path) -> Path:
    """Get the directory holding captured tool outputs."""
    return get_workspace_data_dir(workspace_path) / "artifacts"
