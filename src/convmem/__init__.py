"""Conversation memory for coding assistants.

Turns chat turns into durable, searchable facts and episodes scoped to a
workspace, and turns queries back into time-decayed, ranked results.

Public API:
- ConversationMemoryManager: per-workspace facade (ingest, search, lifecycle)
- MemoryRegistry: workspace path -> manager map owned by the host
- ConversationMemoryOrchestrator: the ingestion/search engine itself
"""

from convmem.manager import ConversationMemoryManager, MemoryRegistry
from convmem.orchestrator import ConversationMemoryOrchestrator

__all__ = [
    "ConversationMemoryManager",
    "ConversationMemoryOrchestrator",
    "MemoryRegistry",
]
