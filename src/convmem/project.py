"""Project context detection from workspace manifest files."""

import json
import logging
import re
import tomllib
from pathlib import Path
from typing import Any

from convmem.types import ProjectContext

logger = logging.getLogger(__name__)

JS_FRAMEWORKS = [
    "next",
    "react",
    "vue",
    "nuxt",
    "svelte",
    "angular",
    "@nestjs/core",
    "express",
    "fastify",
    "koa",
    "astro",
]

PY_FRAMEWORKS = ["fastapi", "django", "flask", "starlette", "litestar"]

# Lock file -> package manager, checked in order
JS_LOCKFILES = [
    ("pnpm-lock.yaml", "pnpm"),
    ("yarn.lock", "yarn"),
    ("bun.lockb", "bun"),
    ("package-lock.json", "npm"),
]
PY_LOCKFILES = [
    ("uv.lock", "uv"),
    ("poetry.lock", "poetry"),
    ("pdm.lock", "pdm"),
    ("Pipfile", "pipenv"),
]


def _read_json(path: Path) -> dict[str, Any] | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None
    return data if isinstance(data, dict) else None


def _read_toml(path: Path) -> dict[str, Any] | None:
    try:
        with path.open("rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError):
        return None


def _requirement_names(lines: list[str]) -> list[str]:
    names = []
    for line in lines:
        line = line.split("#", 1)[0].strip()
        if not line or line.startswith("-"):
            continue
        if match := re.match(r"[A-Za-z0-9_.\-]+", line):
            names.append(match.group(0).lower())
    return names


def python_dependencies(workspace: Path) -> list[str]:
    """Dependency names from pyproject.toml and requirements.txt."""
    names: list[str] = []
    pyproject = _read_toml(workspace / "pyproject.toml")
    if pyproject:
        deps = pyproject.get("project", {}).get("dependencies", [])
        if isinstance(deps, list):
            names.extend(_requirement_names([str(d) for d in deps]))
        poetry = pyproject.get("tool", {}).get("poetry", {}).get("dependencies", {})
        if isinstance(poetry, dict):
            names.extend(k.lower() for k in poetry if k.lower() != "python")
    try:
        req = (workspace / "requirements.txt").read_text(encoding="utf-8")
        names.extend(_requirement_names(req.splitlines()))
    except OSError:
        pass
    return list(dict.fromkeys(names))


def _detect_python(workspace: Path) -> tuple[str | None, str | None]:
    deps = python_dependencies(workspace)
    framework = next((f for f in PY_FRAMEWORKS if f in deps), None)

    package_manager = None
    pyproject = _read_toml(workspace / "pyproject.toml") or {}
    tool = pyproject.get("tool", {})
    for name in ("uv", "poetry", "pdm", "hatch"):
        if name in tool:
            package_manager = name
            break
    if package_manager is None:
        package_manager = next(
            (pm for lock, pm in PY_LOCKFILES if (workspace / lock).exists()), "pip"
        )
    return framework, package_manager


def _detect_node(
    workspace: Path, pkg: dict[str, Any]
) -> tuple[str, str | None, str | None]:
    deps = {**(pkg.get("dependencies") or {}), **(pkg.get("devDependencies") or {})}
    typescript = "typescript" in deps or (workspace / "tsconfig.json").exists()
    language = "typescript" if typescript else "javascript"
    framework = next((f for f in JS_FRAMEWORKS if f in deps), None)
    if framework == "@nestjs/core":
        framework = "nest"

    package_manager = None
    if isinstance(pkg.get("packageManager"), str):
        package_manager = pkg["packageManager"].split("@")[0] or None
    if package_manager is None:
        package_manager = next(
            (pm for lock, pm in JS_LOCKFILES if (workspace / lock).exists()), None
        )
    return language, framework, package_manager


def detect_project_context(workspace_path: str) -> ProjectContext:
    """Infer language, framework and package manager from manifest files.

    Python manifests win over package.json (a Python project with a JS
    frontend is still reported as Python). Unreadable manifests are ignored.
    """
    workspace = Path(workspace_path)
    name = workspace.name or workspace_path
    language = "unknown"
    framework: str | None = None
    package_manager: str | None = None

    pkg = _read_json(workspace / "package.json")
    if pkg is not None:
        language, framework, package_manager = _detect_node(workspace, pkg)

    if (workspace / "pyproject.toml").exists() or (workspace / "requirements.txt").exists():
        language = "python"
        py_framework, py_pm = _detect_python(workspace)
        framework = py_framework or framework
        package_manager = py_pm
    elif (workspace / "Cargo.toml").exists():
        language, package_manager = "rust", "cargo"
    elif (workspace / "go.mod").exists():
        language, package_manager = "go", "go"

    logger.debug(
        "project_context_detected",
        extra={
            "project.language": language,
            "project.framework": framework,
            "project.package_manager": package_manager,
        },
    )
    return ProjectContext(
        workspace_name=name,
        language=language,
        framework=framework,
        package_manager=package_manager,
    )
