"""Collection naming for workspace-scoped stores."""

import hashlib


def workspace_hash(workspace_path: str, length: int = 16) -> str:
    return hashlib.sha256(workspace_path.encode("utf-8")).hexdigest()[:length]


def collection_name(workspace_path: str, suffix: str = "memory") -> str:
    """ws-<sha256(workspace)[:16]>-<suffix>; stable for a given path."""
    return f"ws-{workspace_hash(workspace_path)}-{suffix}"
