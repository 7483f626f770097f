"""Reconciliation of stored facts against file change events.

Facts may carry `metadata.file_path` plus a content hash. When the host's
code indexer reports changes, referenced facts are marked indexed, stale
or deleted, and deletions and renames get their own superseding facts.
"""

import logging
import uuid
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from convmem.errors import ReconciliationFailure
from convmem.protocols import Embedder, VectorStore
from convmem.types import (
    ConversationFact,
    FactCategory,
    FileRefUpdate,
    VectorRecord,
)

logger = logging.getLogger(__name__)

PAGE_SIZE = 256
DELETE_CONFIDENCE = 0.5
RENAME_CONFIDENCE = 0.6


@dataclass
class ReconcileReport:
    """Counts of what one reconciliation pass changed."""

    updated: int = 0
    indexed: int = 0
    staled: int = 0
    failed: int = 0


async def scan(
    store: VectorStore, filters: dict[str, Any], page_size: int = PAGE_SIZE
) -> AsyncIterator[VectorRecord]:
    """Yield every record matching filters, following cursors to the end."""
    cursor: str | None = None
    while True:
        page = await store.filter(page_size, filters, cursor)
        for record in page.records:
            yield record
        if page.next_cursor is None or not page.records:
            return
        cursor = page.next_cursor


def next_file_metadata(metadata: dict[str, Any], change: FileRefUpdate) -> dict[str, Any]:
    """Metadata after applying one change; equal to the input when nothing changes."""
    current_hash = metadata.get("code_index_hash") or metadata.get("file_hash")
    if change.new_hash:
        if metadata.get("ref_status") == "pending":
            return {
                **metadata,
                "ref_status": "indexed",
                "code_index_hash": change.new_hash,
                "stale": False,
            }
        if current_hash and current_hash != change.new_hash:
            return {**metadata, "stale": True}
    elif change.status == "success":
        return {**metadata, "stale": True, "deleted": True}
    return dict(metadata)


async def resolve_file_ref_updates(
    store: VectorStore,
    workspace_path: str,
    changes: list[FileRefUpdate],
) -> ReconcileReport:
    """Mark facts referencing changed files as indexed or stale.

    Only payloads that actually change are written, so running the same
    changes twice writes nothing the second time. A failing change is
    logged and skipped.
    """
    report = ReconcileReport()
    for change in changes:
        try:
            await _apply_change(store, workspace_path, change, report)
        except Exception as e:
            report.failed += 1
            failure = ReconciliationFailure(change.path, e)
            logger.warning(
                "file_ref_reconcile_failed",
                extra={"file.path": change.path, "error.message": str(failure)},
            )
    if report.updated:
        logger.info(
            "file_refs_reconciled",
            extra={
                "fact.updated": report.updated,
                "fact.indexed": report.indexed,
                "fact.staled": report.staled,
            },
        )
    return report


async def _apply_change(
    store: VectorStore,
    workspace_path: str,
    change: FileRefUpdate,
    report: ReconcileReport,
) -> None:
    filters = {"metadata.file_path": change.path, "workspace_path": workspace_path}
    updates: list[tuple[str, dict[str, Any]]] = []
    async for record in scan(store, filters):
        metadata = dict(record.payload.get("metadata") or {})
        new_metadata = next_file_metadata(metadata, change)
        if new_metadata == metadata:
            continue
        if new_metadata.get("ref_status") == "indexed" and metadata.get("ref_status") != "indexed":
            report.indexed += 1
        if new_metadata.get("stale") and not metadata.get("stale"):
            report.staled += 1
        updates.append((record.id, new_metadata))

    now = datetime.now(UTC).isoformat()
    for record_id, metadata in updates:
        await store.update(record_id, None, {"metadata": metadata, "updated_at": now})
        report.updated += 1


def _file_event_fact(
    workspace_path: str, content: str, confidence: float, metadata: dict[str, Any]
) -> ConversationFact:
    now = datetime.now(UTC)
    return ConversationFact(
        id=str(uuid.uuid4()),
        content=content,
        category=FactCategory.PATTERN,
        confidence=confidence,
        reference_time=now,
        ingestion_time=now,
        workspace_path=workspace_path,
        metadata=metadata,
    )


async def _supersede(
    store: VectorStore,
    record: VectorRecord,
    new_id: str,
    metadata_changes: dict[str, Any],
) -> None:
    metadata = {**(record.payload.get("metadata") or {}), **metadata_changes}
    await store.update(
        record.id,
        None,
        {
            "metadata": metadata,
            "superseded_by": new_id,
            "superseded_at": datetime.now(UTC).isoformat(),
        },
    )


async def _insert_fact(
    store: VectorStore, embedder: Embedder, fact: ConversationFact
) -> None:
    embedding = await embedder.embed(fact.content)
    await store.insert([embedding], [fact.id], [fact.to_payload()])


async def handle_files_indexed(
    store: VectorStore,
    embedder: Embedder,
    workspace_path: str,
    updates: list[FileRefUpdate],
) -> int:
    """Record deletions and renames as facts superseding the old file facts.

    Returns:
        Number of facts superseded.
    """
    superseded = 0

    for update in updates:
        if update.op != "delete":
            continue
        try:
            filters = {"metadata.file_path": update.path, "workspace_path": workspace_path}
            related = [r async for r in scan(store, filters) if not r.payload.get("superseded_by")]
            if not related:
                continue
            fact = _file_event_fact(
                workspace_path,
                f"File deleted: {update.path}",
                DELETE_CONFIDENCE,
                {"file_path": update.path, "deleted": True},
            )
            await _insert_fact(store, embedder, fact)
            for record in related:
                await _supersede(store, record, fact.id, {"stale": True, "deleted": True})
                superseded += 1
        except Exception as e:
            logger.warning(
                "file_delete_reconcile_failed",
                extra={"file.path": update.path, "error.message": str(e)},
            )

    for update in updates:
        if update.op != "index" or not update.new_hash:
            continue
        try:
            filters = {"metadata.file_hash": update.new_hash, "workspace_path": workspace_path}
            moved = [
                r
                async for r in scan(store, filters)
                if not r.payload.get("superseded_by")
                and (r.payload.get("metadata") or {}).get("file_path") not in (None, update.path)
            ]
            for record in moved:
                old_path = record.payload["metadata"]["file_path"]
                fact = _file_event_fact(
                    workspace_path,
                    f"File renamed: {old_path} → {update.path}",
                    RENAME_CONFIDENCE,
                    {
                        "from": old_path,
                        "to": update.path,
                        "file_hash": update.new_hash,
                        "rename": True,
                    },
                )
                await _insert_fact(store, embedder, fact)
                await _supersede(
                    store,
                    record,
                    fact.id,
                    {"stale": True, "renamed": True, "new_path": update.path},
                )
                superseded += 1
        except Exception as e:
            logger.warning(
                "file_rename_reconcile_failed",
                extra={"file.path": update.path, "error.message": str(e)},
            )

    if superseded:
        logger.info("file_facts_superseded", extra={"fact.count": superseded})
    return superseded
