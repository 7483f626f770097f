"""Heuristic conflict resolution between new and stored facts.

No LLM is involved: decisions come from vector similarity against the
closest stored facts of the same category.
"""

import logging
import re

from convmem.protocols import VectorStore
from convmem.types import FactCandidate, FactCategory, MemoryAction, ResolvedAction

logger = logging.getLogger(__name__)

CANDIDATE_LIMIT = 8
DUPLICATE_THRESHOLD = 0.95
SUPERSEDE_THRESHOLD = 0.8
RESOLVE_THRESHOLD = 0.85

_RESOLUTION_RE = re.compile(r"\b(?:fixed|resolved?|resolves|no longer)\b", re.IGNORECASE)
_NEGATED_RE = re.compile(
    r"\b(?:not|never|isn't|wasn't|hasn't|haven't|still)\s+(?:yet\s+)?(?:been\s+)?"
    r"(?:fixed|resolved)\b",
    re.IGNORECASE,
)


def reports_fix(text: str) -> bool:
    """True when the text says an issue was fixed, not that it is still open."""
    return bool(_RESOLUTION_RE.search(text)) and not _NEGATED_RE.search(text)


def _same_text(a: str, b: str) -> bool:
    return a.strip().lower() == b.strip().lower()


class ConflictResolver:
    """Decide whether a candidate is new, a duplicate, or replaces stored facts.

    - near duplicate (same text, very high similarity): IGNORE
    - architecture, similar but different text: SUPERSEDE the older decisions
    - debugging that reports a fix, similar to open issues: RESOLVE them
    - anything else: ADD
    """

    def __init__(self, store: VectorStore, workspace_path: str):
        self._store = store
        self._workspace_path = workspace_path

    async def resolve(
        self, candidate: FactCandidate, embedding: list[float] | None
    ) -> ResolvedAction:
        if not embedding:
            return ResolvedAction(MemoryAction.ADD, candidate)

        filters = {
            "workspace_path": self._workspace_path,
            "category": candidate.category.value,
        }
        matches = await self._store.search(
            candidate.content, embedding, CANDIDATE_LIMIT, filters
        )

        for match in matches:
            if (match.score or 0) > DUPLICATE_THRESHOLD and _same_text(
                match.payload.get("content", ""), candidate.content
            ):
                return ResolvedAction(MemoryAction.IGNORE, candidate, [match.id])

        if candidate.category == FactCategory.ARCHITECTURE:
            close = [
                m.id
                for m in matches
                if (m.score or 0) > SUPERSEDE_THRESHOLD
                and not m.payload.get("superseded_by")
                and not _same_text(m.payload.get("content", ""), candidate.content)
            ]
            if close:
                return ResolvedAction(MemoryAction.SUPERSEDE, candidate, close)

        if candidate.category == FactCategory.DEBUGGING and reports_fix(
            candidate.content
        ):
            close = [
                m.id
                for m in matches
                if (m.score or 0) > RESOLVE_THRESHOLD and not m.payload.get("resolved")
            ]
            if close:
                return ResolvedAction(MemoryAction.RESOLVE, candidate, close)

        return ResolvedAction(MemoryAction.ADD, candidate)
