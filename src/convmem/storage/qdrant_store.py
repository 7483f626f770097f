"""Qdrant-backed vector store."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Awaitable
from typing import Any, TypeVar

from qdrant_client import AsyncQdrantClient
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    MatchValue,
    PointStruct,
    PointVectors,
    VectorParams,
)

from convmem.errors import StorageFailure
from convmem.types import FilterPage, VectorRecord

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Payload key holding the caller's id when it is not a valid Qdrant UUID
ID_KEY = "_convmem_id"


def to_point_id(record_id: str) -> str:
    """Qdrant only accepts UUIDs or integers as point ids."""
    try:
        return str(uuid.UUID(record_id))
    except ValueError:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, record_id))


def build_filter(filters: dict[str, Any] | None) -> Filter | None:
    if not filters:
        return None
    return Filter(
        must=[
            FieldCondition(key=key, match=MatchValue(value=value))
            for key, value in filters.items()
        ]
    )


class QdrantClientPool:
    """Shares one AsyncQdrantClient per (url, api key) across workspaces."""

    def __init__(self) -> None:
        self._clients: dict[tuple[str, str | None], AsyncQdrantClient] = {}

    def get(
        self, url: str, api_key: str | None = None, timeout: int = 30
    ) -> AsyncQdrantClient:
        key = (url, api_key)
        if key not in self._clients:
            self._clients[key] = AsyncQdrantClient(
                url=url, api_key=api_key, timeout=timeout
            )
        return self._clients[key]

    async def close(self) -> None:
        for client in self._clients.values():
            await client.close()
        self._clients.clear()


class QdrantMemoryStore:
    """VectorStore implementation on a single Qdrant collection.

    The collection name is fixed at construction; the name passed to
    ensure_collection() is only logged.
    """

    def __init__(self, client: AsyncQdrantClient, collection_name: str) -> None:
        self._client = client
        self._collection_name = collection_name
        self._dimension: int | None = None

    @property
    def collection_name(self) -> str:
        return self._collection_name

    async def _call(self, operation: str, awaitable: Awaitable[T]) -> T:
        try:
            return await awaitable
        except StorageFailure:
            raise
        except Exception as e:
            raise StorageFailure(
                f"vector store {operation} failed on {self._collection_name}: {e}"
            ) from e

    def _to_record(
        self, point: Any, *, score: float | None = None, with_vector: bool = False
    ) -> VectorRecord:
        payload = dict(point.payload or {})
        record_id = payload.pop(ID_KEY, None) or str(point.id)
        vector = None
        if with_vector and isinstance(point.vector, list):
            vector = list(point.vector)
        return VectorRecord(id=record_id, vector=vector, payload=payload, score=score)

    async def ensure_collection(self, name: str, dimension: int) -> None:
        if name != self._collection_name:
            logger.debug(
                "collection_name_ignored",
                extra={"collection.requested": name, "collection": self._collection_name},
            )
        response = await self._call("get_collections", self._client.get_collections())
        existing = {c.name for c in response.collections}
        if self._collection_name not in existing:
            await self._call(
                "create_collection",
                self._client.create_collection(
                    collection_name=self._collection_name,
                    vectors_config=VectorParams(size=dimension, distance=Distance.COSINE),
                ),
            )
            logger.info(
                "collection_created",
                extra={"collection": self._collection_name, "dimension": dimension},
            )
        self._dimension = dimension

    async def insert(
        self,
        vectors: list[list[float]],
        ids: list[str],
        payloads: list[dict[str, Any]],
    ) -> None:
        if not (len(vectors) == len(ids) == len(payloads)):
            raise ValueError("vectors, ids and payloads must have equal length")
        points = [
            PointStruct(
                id=to_point_id(record_id),
                vector=vector,
                payload={**payload, ID_KEY: record_id},
            )
            for record_id, vector, payload in zip(ids, vectors, payloads, strict=True)
        ]
        await self._call(
            "upsert",
            self._client.upsert(collection_name=self._collection_name, points=points),
        )

    async def update(
        self,
        id: str,
        vector: list[float] | None,
        payload: dict[str, Any],
    ) -> None:
        point_id = to_point_id(id)
        if payload:
            await self._call(
                "set_payload",
                self._client.set_payload(
                    collection_name=self._collection_name,
                    payload=payload,
                    points=[point_id],
                ),
            )
        if vector is not None:
            await self._call(
                "update_vectors",
                self._client.update_vectors(
                    collection_name=self._collection_name,
                    points=[PointVectors(id=point_id, vector=vector)],
                ),
            )

    async def delete(self, id: str) -> None:
        await self._call(
            "delete",
            self._client.delete(
                collection_name=self._collection_name,
                points_selector=[to_point_id(id)],
            ),
        )

    async def get(self, id: str) -> VectorRecord | None:
        points = await self._call(
            "retrieve",
            self._client.retrieve(
                collection_name=self._collection_name,
                ids=[to_point_id(id)],
                with_payload=True,
                with_vectors=True,
            ),
        )
        if not points:
            return None
        return self._to_record(points[0], with_vector=True)

    async def _collection_dimension(self) -> int | None:
        """Vector size of the collection, read from Qdrant on first use."""
        if self._dimension is None:
            info = await self._call(
                "get_collection",
                self._client.get_collection(collection_name=self._collection_name),
            )
            vectors = info.config.params.vectors
            size = getattr(vectors, "size", None)
            if isinstance(size, int):
                self._dimension = size
        return self._dimension

    async def search(
        self,
        query_text: str,
        embedding: list[float],
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorRecord]:
        if not embedding:
            return []
        dimension = await self._collection_dimension()
        if dimension is not None and len(embedding) != dimension:
            logger.warning(
                "search_dimension_mismatch",
                extra={"expected": dimension, "actual": len(embedding)},
            )
            return []
        response = await self._call(
            "query_points",
            self._client.query_points(
                collection_name=self._collection_name,
                query=embedding,
                query_filter=build_filter(filters),
                limit=limit,
                with_payload=True,
            ),
        )
        return [self._to_record(p, score=p.score) for p in response.points]

    async def filter(
        self,
        limit: int,
        filters: dict[str, Any] | None = None,
        cursor: str | None = None,
    ) -> FilterPage:
        points, next_offset = await self._call(
            "scroll",
            self._client.scroll(
                collection_name=self._collection_name,
                scroll_filter=build_filter(filters),
                limit=limit,
                offset=cursor,
                with_payload=True,
            ),
        )
        return FilterPage(
            records=[self._to_record(p) for p in points],
            next_cursor=str(next_offset) if next_offset is not None else None,
        )

    async def clear_collection(self) -> None:
        await self._call(
            "clear",
            self._client.delete(
                collection_name=self._collection_name,
                points_selector=Filter(must=[]),
            ),
        )

    async def delete_collection(self) -> None:
        await self._call(
            "delete_collection",
            self._client.delete_collection(collection_name=self._collection_name),
        )
        self._dimension = None
