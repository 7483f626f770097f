"""Payload filter helpers shared by store implementations."""

from typing import Any

_MISSING = object()


def get_path(payload: dict[str, Any], key: str) -> Any:
    """Look up a dotted key (e.g. "metadata.file_path") in a nested payload."""
    current: Any = payload
    for part in key.split("."):
        if not isinstance(current, dict) or part not in current:
            return _MISSING
        current = current[part]
    return current


def matches(payload: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """True if every filter key equals the payload value at that path."""
    if not filters:
        return True
    for key, expected in filters.items():
        value = get_path(payload, key)
        if value is _MISSING or value != expected:
            return False
    return True

