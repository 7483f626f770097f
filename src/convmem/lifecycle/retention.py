"""Retention of debugging facts.

Resolved debugging facts are removed after a short window and unresolved
ones after a longer staleness window. Other categories are never deleted
here; they only lose relevance through temporal scoring.
"""

import asyncio
import logging
from datetime import UTC, datetime

from convmem.config.models import RetentionConfig
from convmem.lifecycle.temporal import age_days
from convmem.protocols import VectorStore
from convmem.types import FactCategory, parse_datetime

logger = logging.getLogger(__name__)


class RetentionService:
    """Periodically sweeps a workspace's debugging facts.

    Example:
        retention = RetentionService(store, "/path/to/workspace")
        await retention.start()
        ...
        await retention.stop()
    """

    def __init__(
        self,
        store: VectorStore,
        workspace_path: str,
        config: RetentionConfig | None = None,
    ):
        self._store = store
        self._workspace_path = workspace_path
        self._config = config or RetentionConfig()
        self._running = False
        self._task: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._running

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        logger.debug(
            "retention_started",
            extra={
                "workspace": self._workspace_path,
                "interval_minutes": self._config.interval_minutes,
            },
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _sweep_loop(self) -> None:
        interval = self._config.interval_minutes * 60
        while self._running:
            await asyncio.sleep(interval)
            try:
                await self.run_cleanup()
            except Exception as e:
                logger.warning(
                    "retention_sweep_failed",
                    extra={"workspace": self._workspace_path, "error.message": str(e)},
                )

    def _expired(self, payload: dict, now: datetime) -> bool:
        age = age_days(parse_datetime(payload.get("reference_time")), now)
        if payload.get("resolved"):
            return age > self._config.resolved_days
        return age > self._config.stale_unresolved_days

    async def run_cleanup(self, now: datetime | None = None) -> int:
        """Run one sweep and return the number of facts deleted.

        Matching ids are collected over the full scan before deleting so
        deletions never shift the pagination cursor.
        """
        now = now or datetime.now(UTC)
        filters = {
            "workspace_path": self._workspace_path,
            "category": FactCategory.DEBUGGING.value,
        }

        expired: list[str] = []
        cursor: str | None = None
        while True:
            page = await self._store.filter(self._config.page_size, filters, cursor)
            expired.extend(r.id for r in page.records if self._expired(r.payload, now))
            cursor = page.next_cursor
            if cursor is None:
                break

        for fact_id in expired:
            await self._store.delete(fact_id)

        if expired:
            logger.info(
                "retention_sweep_complete",
                extra={"workspace": self._workspace_path, "deleted.count": len(expired)},
            )
        return len(expired)
