"""On-disk capture of large tool outputs.

Tool results can be far larger than a vector payload should carry. High
signal tool outputs are written under `<workspace>/.roo-memory/artifacts/`
and only a short digest fact pointing at the file is embedded.
"""

import hashlib
import json
import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import aiofiles

from convmem.config.paths import WORKSPACE_DATA_DIR, get_artifacts_dir
from convmem.types import ToolMeta

logger = logging.getLogger(__name__)

MCP_TOOLS = frozenset({"use_mcp_tool", "access_mcp_resource"})
HIGH_SIGNAL_TOOLS = MCP_TOOLS | {"codebase_search", "execute_command"}

DIGEST_PREVIEW_CHARS = 160


@dataclass(frozen=True)
class Artifact:
    """A persisted tool output."""

    relative_path: str
    hash: str
    size: int


def should_persist(tool: ToolMeta) -> bool:
    return tool.name in HIGH_SIGNAL_TOOLS and bool(tool.result_text)


def minify_params(params: Any) -> str:
    """Compact JSON for tool params; falls back to str() for non-JSON values."""
    try:
        return json.dumps(params if params is not None else {}, separators=(",", ":"), default=str)
    except (TypeError, ValueError):
        return str(params)


def tool_label(tool: ToolMeta) -> str:
    """server/tool for MCP invocations, the tool name otherwise."""
    if tool.name in MCP_TOOLS and isinstance(tool.params, dict):
        server = tool.params.get("server_name")
        name = tool.params.get("tool_name") or tool.params.get("uri")
        if server and name:
            return f"{server}/{name}"
    return tool.name


async def persist_artifact(workspace_path: str, tool: ToolMeta) -> Artifact:
    """Write the tool output to the artifacts directory (created lazily).

    Files are content addressed, so capturing the same output twice
    rewrites one file.
    """
    result = tool.result_text or ""
    digest = hashlib.sha256(result.encode("utf-8")).hexdigest()
    artifacts_dir = get_artifacts_dir(workspace_path)
    artifacts_dir.mkdir(parents=True, exist_ok=True)

    filename = f"{digest[:16]}.json"
    path = artifacts_dir / filename
    record = {
        "tool": tool.name,
        "params": tool.params,
        "captured_at": datetime.now(UTC).isoformat(),
        "result": result,
    }
    async with aiofiles.open(path, "w", encoding="utf-8") as f:
        await f.write(json.dumps(record, ensure_ascii=False, default=str))

    relative = Path(WORKSPACE_DATA_DIR) / "artifacts" / filename
    logger.debug(
        "artifact_persisted",
        extra={"artifact.path": str(relative), "artifact.size": len(result)},
    )
    return Artifact(relative_path=relative.as_posix(), hash=digest, size=len(result))


def build_digest(tool: ToolMeta, artifact: Artifact) -> str:
    """Short, embeddable description of a captured output."""
    preview = " ".join((tool.result_text or "").split())[:DIGEST_PREVIEW_CHARS]
    return (
        f"Tool {tool_label(tool)} output captured ({artifact.size} chars) "
        f"at {artifact.relative_path}: {preview}"
    )


def digest_metadata(tool: ToolMeta, artifact: Artifact) -> dict[str, Any]:
    return {
        "artifact_path": artifact.relative_path,
        "artifact_hash": artifact.hash,
        "tool": {"name": tool.name, "params": minify_params(tool.params)},
        "data_source": "mcp" if tool.name in MCP_TOOLS else "tool",
        "persistent": True,
    }
