"""Episode detection and description."""

from convmem.episodes.context import EpisodeContextGenerator, fallback_description
from convmem.episodes.detector import EpisodeDetector, make_episode_id
from convmem.episodes.hints import (
    AutoHintsProvider,
    FileSystemHintsProvider,
    MemoryHintsProvider,
    create_hints_provider,
)

__all__ = [
    "AutoHintsProvider",
    "EpisodeContextGenerator",
    "EpisodeDetector",
    "FileSystemHintsProvider",
    "MemoryHintsProvider",
    "create_hints_provider",
    "fallback_description",
    "make_episode_id",
]
