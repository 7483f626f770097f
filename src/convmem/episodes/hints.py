"""Hints that steer episode descriptions toward the project's vocabulary."""

import asyncio
import json
import logging
import re
import tomllib
from pathlib import Path

from convmem.config.models import HintsConfig
from convmem.project import python_dependencies
from convmem.protocols import HintsProvider, VectorStore
from convmem.types import FactCategory, Hints, ProjectContext

logger = logging.getLogger(__name__)

MAX_DEPS = 20
MAX_DIRS = 10
MAX_TAGS = 15

IGNORED_DIRS = frozenset(
    {
        "node_modules",
        ".git",
        "dist",
        "build",
        "out",
        ".vscode",
        ".idea",
        ".roo-memory",
        ".venv",
        "venv",
        "__pycache__",
        "target",
    }
)

_TECH_TERM_RE = re.compile(r"\b[A-Z][A-Za-z0-9_-]+\b")


class FileSystemHintsProvider:
    """Dependencies from manifests plus top-level directories."""

    def __init__(self, workspace_path: str, extra: list[str] | None = None):
        self._workspace = Path(workspace_path)
        self._extra = list(extra or [])

    async def get_hints(self, project: ProjectContext | None = None) -> Hints:
        return await asyncio.to_thread(self._collect)

    def _collect(self) -> Hints:
        return Hints(
            deps=self._read_dependencies(),
            dirs=self._list_top_level_dirs(),
            extra=list(self._extra),
        )

    def _read_dependencies(self) -> list[str]:
        deps: list[str] = []

        try:
            pkg = json.loads((self._workspace / "package.json").read_text(encoding="utf-8"))
            if isinstance(pkg, dict):
                deps.extend(pkg.get("dependencies") or {})
                deps.extend(pkg.get("devDependencies") or {})
        except (OSError, ValueError):
            pass

        deps.extend(python_dependencies(self._workspace))

        try:
            with (self._workspace / "Cargo.toml").open("rb") as f:
                cargo = tomllib.load(f)
            deps.extend(cargo.get("dependencies", {}))
        except (OSError, tomllib.TOMLDecodeError):
            pass

        return list(dict.fromkeys(deps))[:MAX_DEPS]

    def _list_top_level_dirs(self) -> list[str]:
        try:
            dirs = sorted(
                entry.name
                for entry in self._workspace.iterdir()
                if entry.is_dir() and entry.name not in IGNORED_DIRS
            )
        except OSError:
            return []
        return dirs[:MAX_DIRS]


class MemoryHintsProvider:
    """Capitalised technical terms from stored infrastructure and pattern facts."""

    def __init__(self, store: VectorStore, workspace_path: str):
        self._store = store
        self._workspace_path = workspace_path

    async def get_hints(self, project: ProjectContext | None = None) -> Hints:
        tags: dict[str, None] = {}
        for category in (FactCategory.INFRASTRUCTURE, FactCategory.PATTERN):
            page = await self._store.filter(
                100,
                {"workspace_path": self._workspace_path, "category": category.value},
            )
            for record in page.records:
                content = str(record.payload.get("content", ""))
                for term in _TECH_TERM_RE.findall(content):
                    if 2 < len(term) < 20:
                        tags[term] = None
        return Hints(tags=list(tags)[:MAX_TAGS])


class AutoHintsProvider:
    """Memory tags when available, always combined with workspace hints."""

    def __init__(
        self,
        workspace: FileSystemHintsProvider,
        memory: MemoryHintsProvider | None = None,
    ):
        self._workspace = workspace
        self._memory = memory

    async def get_hints(self, project: ProjectContext | None = None) -> Hints:
        hints = await self._workspace.get_hints(project)
        if self._memory is not None:
            try:
                hints.tags = (await self._memory.get_hints(project)).tags
            except Exception as e:
                logger.debug("memory_hints_failed", extra={"error.message": str(e)})
        return hints


def create_hints_provider(
    config: HintsConfig,
    workspace_path: str,
    store: VectorStore | None = None,
) -> HintsProvider | None:
    """Build the provider selected by `config.source`."""
    match config.source:
        case "none":
            return None
        case "workspace":
            return FileSystemHintsProvider(workspace_path, config.extra)
        case "memory":
            return MemoryHintsProvider(store, workspace_path) if store else None
        case "auto":
            return AutoHintsProvider(
                FileSystemHintsProvider(workspace_path, config.extra),
                MemoryHintsProvider(store, workspace_path) if store else None,
            )
