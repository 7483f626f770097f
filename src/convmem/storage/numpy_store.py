"""In-process vector store backed by numpy.

Brute-force cosine similarity over a float32 matrix. At a single
workspace's scale (thousands of facts, 1536-dim) a search is a few
milliseconds. When a directory is given, the collection is persisted as
`<name>.npy` + `<name>.ids.json` + `<name>.payloads.json` with atomic writes.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any

import numpy as np

from convmem.errors import StorageFailure
from convmem.storage.filters import matches
from convmem.types import FilterPage, VectorRecord

logger = logging.getLogger(__name__)


class NumpyVectorStore:
    """VectorStore implementation holding vectors and payloads in memory.

    Vectors are normalized on insert, so get() returns unit vectors. New
    vectors are buffered and flushed into the matrix lazily (before search,
    save or remove) to avoid an array copy on every insert.
    """

    def __init__(self, collection_name: str, directory: Path | None = None) -> None:
        self._collection_name = collection_name
        self._directory = directory
        self._dimension: int | None = None
        self._exists = False
        self._vectors: np.ndarray = np.empty((0, 0), dtype=np.float32)
        self._ids: list[str] = []
        self._id_to_index: dict[str, int] = {}
        self._payloads: dict[str, dict[str, Any]] = {}
        self._pending: list[np.ndarray] = []
        self._lock = asyncio.Lock()

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def count(self) -> int:
        return len(self._ids)

    def _flush(self) -> None:
        if not self._pending:
            return
        new_block = np.stack(self._pending)
        if self._vectors.size == 0:
            self._vectors = new_block
        else:
            self._vectors = np.vstack([self._vectors, new_block])
        self._pending.clear()

    def _normalize(self, embedding: list[float]) -> np.ndarray:
        vec = np.array(embedding, dtype=np.float32)
        if self._dimension is not None and vec.shape[0] != self._dimension:
            raise StorageFailure(
                f"vector store expected {self._dimension} dimensions, got {vec.shape[0]}"
            )
        norm = np.linalg.norm(vec)
        if norm > 0:
            vec /= norm
        return vec

    def _require_collection(self) -> None:
        if not self._exists:
            raise StorageFailure(
                f"vector store collection {self._collection_name} does not exist"
            )

    async def ensure_collection(self, name: str, dimension: int) -> None:
        if name != self._collection_name:
            logger.debug(
                "collection_name_ignored",
                extra={"collection.requested": name, "collection": self._collection_name},
            )
        if self._exists:
            return
        if self._directory is not None:
            await asyncio.to_thread(self._load_sync, self._directory)
        if self._dimension is not None and self._dimension != dimension:
            raise StorageFailure(
                f"vector store collection {self._collection_name} has dimension "
                f"{self._dimension}, expected {dimension}"
            )
        self._dimension = dimension
        self._exists = True

    async def insert(
        self,
        vectors: list[list[float]],
        ids: list[str],
        payloads: list[dict[str, Any]],
    ) -> None:
        self._require_collection()
        if not (len(vectors) == len(ids) == len(payloads)):
            raise ValueError("vectors, ids and payloads must have equal length")

        async with self._lock:
            normalized = [self._normalize(v) for v in vectors]
            for point_id, vec, payload in zip(ids, normalized, payloads, strict=True):
                self._put(point_id, vec, dict(payload))
            await self._persist()

    def _put(self, point_id: str, vec: np.ndarray, payload: dict[str, Any]) -> None:
        self._payloads[point_id] = payload
        if point_id in self._id_to_index:
            idx = self._id_to_index[point_id]
            materialized = self._vectors.shape[0] if self._vectors.size > 0 else 0
            if idx < materialized:
                self._vectors[idx] = vec
            else:
                self._pending[idx - materialized] = vec
            return
        self._id_to_index[point_id] = len(self._ids)
        self._ids.append(point_id)
        self._pending.append(vec)

    async def update(
        self,
        id: str,
        vector: list[float] | None,
        payload: dict[str, Any],
    ) -> None:
        self._require_collection()
        async with self._lock:
            if id not in self._payloads:
                raise StorageFailure(f"vector store has no point {id}")
            self._payloads[id] = {**self._payloads[id], **payload}
            if vector is not None:
                self._put(id, self._normalize(vector), self._payloads[id])
            await self._persist()

    async def delete(self, id: str) -> None:
        self._require_collection()
        async with self._lock:
            self._remove(id)
            await self._persist()

    def _remove(self, point_id: str) -> None:
        idx = self._id_to_index.pop(point_id, None)
        self._payloads.pop(point_id, None)
        if idx is None:
            return

        self._flush()

        last_idx = len(self._ids) - 1
        if idx != last_idx:
            last_id = self._ids[last_idx]
            self._ids[idx] = last_id
            self._id_to_index[last_id] = idx
            self._vectors[idx] = self._vectors[last_idx]

        self._ids.pop()
        if not self._ids:
            self._vectors = np.empty((0, 0), dtype=np.float32)
        else:
            self._vectors = self._vectors[: len(self._ids)]

    async def get(self, id: str) -> VectorRecord | None:
        self._require_collection()
        if id not in self._id_to_index:
            return None
        self._flush()
        vector = self._vectors[self._id_to_index[id]].tolist()
        return VectorRecord(id=id, vector=vector, payload=dict(self._payloads[id]))

    async def search(
        self,
        query_text: str,
        embedding: list[float],
        limit: int,
        filters: dict[str, Any] | None = None,
    ) -> list[VectorRecord]:
        self._require_collection()
        if not embedding or len(embedding) != self._dimension or not self._ids:
            return []

        self._flush()

        q = np.array(embedding, dtype=np.float32)
        norm = np.linalg.norm(q)
        if norm == 0:
            return []
        q /= norm

        candidates = [
            i for i, pid in enumerate(self._ids) if matches(self._payloads[pid], filters)
        ]
        if not candidates:
            return []

        idx = np.array(candidates)
        scores = self._vectors[idx] @ q
        order = np.argsort(scores)[::-1][:limit]

        return [
            VectorRecord(
                id=self._ids[idx[i]],
                vector=None,
                payload=dict(self._payloads[self._ids[idx[i]]]),
                score=float(scores[i]),
            )
            for i in order
        ]

    async def filter(
        self,
        limit: int,
        filters: dict[str, Any] | None = None,
        cursor: str | None = None,
    ) -> FilterPage:
        """Page through matching points in insertion order.

        The cursor is the position to resume scanning from.
        """
        self._require_collection()
        start = int(cursor) if cursor else 0
        records: list[VectorRecord] = []
        position = start
        ids = list(self._ids)
        while position < len(ids) and len(records) < limit:
            pid = ids[position]
            position += 1
            payload = self._payloads[pid]
            if matches(payload, filters):
                records.append(VectorRecord(id=pid, vector=None, payload=dict(payload)))

        next_cursor = str(position) if position < len(ids) else None
        return FilterPage(records=records, next_cursor=next_cursor)

    async def clear_collection(self) -> None:
        async with self._lock:
            self._ids.clear()
            self._id_to_index.clear()
            self._payloads.clear()
            self._pending.clear()
            self._vectors = np.empty((0, 0), dtype=np.float32)
            await self._persist()

    async def delete_collection(self) -> None:
        await self.clear_collection()
        self._exists = False
        self._dimension = None

    async def _persist(self) -> None:
        if self._directory is None:
            return
        self._flush()
        await asyncio.to_thread(self._save_sync, self._directory)

    def _paths(self, directory: Path) -> tuple[Path, Path, Path]:
        base = directory / self._collection_name
        return (
            base.with_suffix(".npy"),
            base.with_suffix(".ids.json"),
            base.with_suffix(".payloads.json"),
        )

    def _save_sync(self, directory: Path) -> None:
        """Atomic writes (runs in thread)."""
        directory.mkdir(parents=True, exist_ok=True)
        npy_path, ids_path, payloads_path = self._paths(directory)

        if not self._ids:
            for p in (npy_path, ids_path, payloads_path):
                p.unlink(missing_ok=True)
            return

        # suffix must be .npy so np.save doesn't append its own extension
        fd, tmp = tempfile.mkstemp(dir=directory, suffix=".tmp.npy")
        try:
            os.close(fd)
            np.save(tmp, self._vectors)
            Path(tmp).replace(npy_path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

        for target, data in (
            (ids_path, self._ids),
            (payloads_path, self._payloads),
        ):
            fd, tmp = tempfile.mkstemp(dir=directory, suffix=".json.tmp")
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(data, f)
                    f.flush()
                    os.fsync(f.fileno())
                Path(tmp).replace(target)
            except BaseException:
                Path(tmp).unlink(missing_ok=True)
                raise

    def _load_sync(self, directory: Path) -> None:
        npy_path, ids_path, payloads_path = self._paths(directory)
        if not (npy_path.exists() and ids_path.exists() and payloads_path.exists()):
            return

        vectors = np.load(str(npy_path)).astype(np.float32)
        with ids_path.open() as f:
            ids: list[str] = json.load(f)
        with payloads_path.open() as f:
            payloads: dict[str, dict[str, Any]] = json.load(f)

        if len(ids) != vectors.shape[0] or set(ids) != set(payloads):
            logger.warning(
                "vector_store_files_inconsistent",
                extra={
                    "collection": self._collection_name,
                    "ids.count": len(ids),
                    "vectors.count": int(vectors.shape[0]),
                },
            )
            return

        self._vectors = vectors
        self._ids = ids
        self._id_to_index = {id_: i for i, id_ in enumerate(ids)}
        self._payloads = payloads
        self._dimension = int(vectors.shape[1]) if vectors.size else None
