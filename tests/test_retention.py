"""Tests for the debugging fact retention sweep."""

import asyncio
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from convmem.config.models import RetentionConfig
from convmem.lifecycle.retention import RetentionService
from convmem.types import ConversationFact, FactCategory, FilterPage

from tests.conftest import fake_vector

NOW = datetime(2025, 6, 1, tzinfo=UTC)
WS = "/test/workspace"


async def add_fact(store, fact_id, category, days_old, resolved=False, workspace=WS):
    fact = ConversationFact(
        id=fact_id,
        content=f"fact {fact_id}",
        category=category,
        reference_time=NOW - timedelta(days=days_old),
        workspace_path=workspace,
        resolved=resolved,
    )
    await store.insert([fake_vector(fact.content)], [fact_id], [fact.to_payload()])


class TestRunCleanup:
    """Tests for a single sweep."""

    async def test_deletes_only_expired_debugging_facts(self, ready_store):
        await add_fact(ready_store, "resolved-old", FactCategory.DEBUGGING, 8, resolved=True)
        await add_fact(ready_store, "resolved-new", FactCategory.DEBUGGING, 2, resolved=True)
        await add_fact(ready_store, "open-old", FactCategory.DEBUGGING, 31)
        await add_fact(ready_store, "open-new", FactCategory.DEBUGGING, 20)
        await add_fact(ready_store, "arch-old", FactCategory.ARCHITECTURE, 500)
        await add_fact(ready_store, "other-ws", FactCategory.DEBUGGING, 99, workspace="/other")

        service = RetentionService(ready_store, WS)
        deleted = await service.run_cleanup(NOW)

        assert deleted == 2
        assert await ready_store.get("resolved-old") is None
        assert await ready_store.get("open-old") is None
        for kept in ("resolved-new", "open-new", "arch-old", "other-ws"):
            assert await ready_store.get(kept) is not None

    async def test_scans_every_page_before_deleting(self, ready_store):
        for i in range(7):
            await add_fact(ready_store, f"old-{i}", FactCategory.DEBUGGING, 40)

        service = RetentionService(ready_store, WS, RetentionConfig(page_size=2))
        assert await service.run_cleanup(NOW) == 7
        assert ready_store.count == 0

    async def test_filter_failure_propagates(self):
        store = AsyncMock()
        store.filter.side_effect = RuntimeError("vector store down")
        service = RetentionService(store, WS)
        with pytest.raises(RuntimeError):
            await service.run_cleanup(NOW)


class TestSweepLoop:
    """Tests for the background task."""

    async def test_start_stop(self):
        store = AsyncMock()
        store.filter.return_value = FilterPage(records=[])
        service = RetentionService(store, WS, RetentionConfig(interval_minutes=0))

        await service.start()
        assert service.is_running
        await asyncio.sleep(0.01)
        await service.stop()

        assert not service.is_running
        assert store.filter.await_count >= 1

    async def test_sweep_failures_are_swallowed(self):
        store = AsyncMock()
        store.filter.side_effect = RuntimeError("boom")
        service = RetentionService(store, WS, RetentionConfig(interval_minutes=0))

        await service.start()
        await asyncio.sleep(0.01)
        assert service.is_running
        await service.stop()

    async def test_stop_without_start(self):
        service = RetentionService(AsyncMock(), WS)
        await service.stop()
        assert not service.is_running
