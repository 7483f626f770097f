"""Tests for the Qdrant-backed store against a mocked client."""

import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from qdrant_client.models import Filter

from convmem.errors import StorageFailure
from convmem.storage.qdrant_store import (
    ID_KEY,
    QdrantClientPool,
    QdrantMemoryStore,
    build_filter,
    to_point_id,
)
from tests.conftest import DIMENSION, fake_vector


@pytest.fixture
def client():
    mock = MagicMock()
    mock.get_collections = AsyncMock(
        return_value=SimpleNamespace(collections=[SimpleNamespace(name="other")])
    )
    mock.get_collection = AsyncMock(
        return_value=SimpleNamespace(
            config=SimpleNamespace(params=SimpleNamespace(vectors=SimpleNamespace(size=DIMENSION)))
        )
    )
    for name in (
        "create_collection",
        "upsert",
        "set_payload",
        "update_vectors",
        "delete",
        "retrieve",
        "query_points",
        "scroll",
        "delete_collection",
        "close",
    ):
        setattr(mock, name, AsyncMock())
    return mock


@pytest.fixture
def qdrant_store(client):
    return QdrantMemoryStore(client, "ws-test-memory")


class TestPointIds:
    """Tests for id mapping."""

    def test_uuid_passthrough(self):
        value = str(uuid.uuid4())
        assert to_point_id(value) == value

    def test_string_ids_are_stable_uuids(self):
        assert to_point_id("fact_abc") == to_point_id("fact_abc")
        assert to_point_id("fact_abc") != to_point_id("fact_abd")
        uuid.UUID(to_point_id("fact_abc"))

    def test_build_filter(self):
        assert build_filter(None) is None
        condition = build_filter({"category": "debugging", "resolved": True})
        assert [c.key for c in condition.must] == ["category", "resolved"]


class TestQdrantMemoryStore:
    """Tests for QdrantMemoryStore."""

    async def test_ensure_creates_missing_collection(self, qdrant_store, client):
        await qdrant_store.ensure_collection("ws-test-memory", DIMENSION)
        client.create_collection.assert_awaited_once()
        kwargs = client.create_collection.await_args.kwargs
        assert kwargs["collection_name"] == "ws-test-memory"
        assert kwargs["vectors_config"].size == DIMENSION

    async def test_ensure_existing_collection(self, qdrant_store, client):
        client.get_collections.return_value = SimpleNamespace(
            collections=[SimpleNamespace(name="ws-test-memory")]
        )
        await qdrant_store.ensure_collection("ws-test-memory", DIMENSION)
        client.create_collection.assert_not_awaited()

    async def test_insert_keeps_original_id(self, qdrant_store, client):
        await qdrant_store.insert([fake_vector("a")], ["fact_a"], [{"content": "Uses Redis"}])
        point = client.upsert.await_args.kwargs["points"][0]
        assert point.id == to_point_id("fact_a")
        assert point.payload == {"content": "Uses Redis", ID_KEY: "fact_a"}

    async def test_insert_length_mismatch(self, qdrant_store):
        with pytest.raises(ValueError):
            await qdrant_store.insert([fake_vector("a")], ["a", "b"], [{}])

    async def test_search_maps_records(self, qdrant_store, client):
        client.query_points.return_value = SimpleNamespace(
            points=[
                SimpleNamespace(
                    id=to_point_id("fact_a"),
                    payload={"content": "Uses Redis", ID_KEY: "fact_a"},
                    score=0.91,
                )
            ]
        )
        results = await qdrant_store.search("redis", fake_vector("redis"), 5, {"category": "infrastructure"})
        assert results[0].id == "fact_a"
        assert results[0].payload == {"content": "Uses Redis"}
        assert results[0].score == 0.91
        assert client.query_points.await_args.kwargs["query_filter"] is not None

    async def test_search_dimension_mismatch(self, qdrant_store, client):
        await qdrant_store.ensure_collection("ws-test-memory", DIMENSION)
        assert await qdrant_store.search("q", [0.1, 0.2], 5) == []
        client.query_points.assert_not_awaited()

    async def test_search_reads_dimension_from_collection(self, qdrant_store, client):
        assert await qdrant_store.search("q", [0.1, 0.2], 5) == []
        client.query_points.assert_not_awaited()
        client.get_collection.assert_awaited_once_with(collection_name="ws-test-memory")

        client.query_points.return_value = SimpleNamespace(points=[])
        await qdrant_store.search("q", fake_vector("q"), 5)
        await qdrant_store.search("q", fake_vector("q"), 5)
        assert client.query_points.await_count == 2
        client.get_collection.assert_awaited_once()

    async def test_update_payload_and_vector(self, qdrant_store, client):
        await qdrant_store.update("fact_a", fake_vector("b"), {"resolved": True})
        assert client.set_payload.await_args.kwargs["payload"] == {"resolved": True}
        assert client.set_payload.await_args.kwargs["points"] == [to_point_id("fact_a")]
        client.update_vectors.assert_awaited_once()

    async def test_get_missing(self, qdrant_store, client):
        client.retrieve.return_value = []
        assert await qdrant_store.get("fact_a") is None

    async def test_get_returns_vector(self, qdrant_store, client):
        client.retrieve.return_value = [
            SimpleNamespace(id="x", payload={ID_KEY: "fact_a"}, vector=[1.0, 0.0])
        ]
        record = await qdrant_store.get("fact_a")
        assert record.id == "fact_a"
        assert record.vector == [1.0, 0.0]

    async def test_filter_pages(self, qdrant_store, client):
        point_id = to_point_id("fact_b")
        client.scroll.return_value = (
            [SimpleNamespace(id="x", payload={ID_KEY: "fact_a"})],
            point_id,
        )
        page = await qdrant_store.filter(1, {"category": "debugging"})
        assert [r.id for r in page.records] == ["fact_a"]
        assert page.next_cursor == point_id

    async def test_clear_uses_match_all_filter(self, qdrant_store, client):
        await qdrant_store.clear_collection()
        selector = client.delete.await_args.kwargs["points_selector"]
        assert isinstance(selector, Filter)

    async def test_client_errors_become_storage_failures(self, qdrant_store, client):
        client.upsert.side_effect = ConnectionError("connection refused")
        with pytest.raises(StorageFailure, match="upsert failed on ws-test-memory"):
            await qdrant_store.insert([fake_vector("a")], ["a"], [{}])


class TestQdrantClientPool:
    """Tests for QdrantClientPool."""

    async def test_shares_clients_per_endpoint(self):
        with patch("convmem.storage.qdrant_store.AsyncQdrantClient") as factory:
            factory.side_effect = lambda **kwargs: MagicMock(close=AsyncMock())
            pool = QdrantClientPool()
            first = pool.get("http://localhost:6333")
            assert pool.get("http://localhost:6333") is first
            assert pool.get("http://other:6333") is not first
            assert factory.call_count == 2

            await pool.close()
            first.close.assert_awaited_once()
