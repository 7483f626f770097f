"""Vector store implementations."""

from convmem.storage.naming import collection_name, workspace_hash
from convmem.storage.numpy_store import NumpyVectorStore
from convmem.storage.qdrant_store import QdrantClientPool, QdrantMemoryStore

__all__ = [
    "NumpyVectorStore",
    "QdrantClientPool",
    "QdrantMemoryStore",
    "collection_name",
    "workspace_hash",
]
