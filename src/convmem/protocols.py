"""Protocol definitions for the services the engine coordinates.

The engine talks to three unreliable collaborators: a JSON-producing LLM,
an embedding model and a vector store. These protocols let hosts plug in
any implementation and let tests substitute fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from convmem.types import FilterPage, Hints, ProjectContext, VectorRecord


@runtime_checkable
class Embedder(Protocol):
    """Produces fixed-length float vectors for text."""

    @property
    def dimension(self) -> int:
        """Length of every vector this embedder returns."""
        ...

    async def embed(self, text: str) -> list[float]:
        """Embed one text. Returns exactly `dimension` floats or raises."""
        ...

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """Embed several texts in one request."""
        ...


@runtime_checkable
class JsonLLMProvider(Protocol):
    """LLM capability used for extraction and episode description."""

    async def generate_json(
        self,
        prompt: str,
        *,
        temperature: float | None = None,
        max_tokens: int | None = None,
    ) -> Any:
        """Return parsed JSON, or raw text the caller parses itself."""
        ...


@runtime_checkable
class VectorStore(Protocol):
    """Workspace-scoped vector collection.

    Filters are flat `{dotted.key: value}` equality matches against payloads.
    """

    @property
    def collection_name(self) -> str:
        """Collection this store was constructed for."""
        ...

    async def ensure_collection(self, name: str, dimension: int) -> None:
        """Create the collection if it does not exist."""
        ...

    async def insert(
        self,
        vectors: list[list[float]],
        ids: list[str],
        payloads: list[dict[str, Any]],
    ) -> None:
        """Insert points in one batch."""
        ...

    async def update(
        self,
        id: str,
        vector: list[float] | None,
        payload: dict[str, Any],
    ) -> None:
        """Merge payload keys into a point, optionally replacing its vector."""
        ...

    async def delete(self, id: str) -> None:
        """Delete one point."""
        ...

    async def get(self, id: str) -> VectorRecord | None:
        """Fetch one point by id."""
        ...

    async def search(
        self,
        query_text: str,
        embedding: list[float],
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorRecord]:
        """Nearest neighbours; empty on empty embedding or dimension mismatch."""
        ...

    async def filter(
        self,
        limit: int,
        filters: dict[str, Any] | None = None,
        cursor: str | None = None,
    ) -> FilterPage:
        """One page of points matching filters."""
        ...

    async def clear_collection(self) -> None:
        """Delete every point, keeping the collection."""
        ...

    async def delete_collection(self) -> None:
        """Drop the collection entirely."""
        ...


@runtime_checkable
class HintsProvider(Protocol):
    """Supplies workspace hints for episode descriptions."""

    async def get_hints(self, project: ProjectContext | None = None) -> Hints:
        """Collect hints. Callers treat failures as no hints."""
        ...
