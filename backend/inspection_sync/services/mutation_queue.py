"""Durable FIFO queue of writes that could not be confirmed remotely."""

import asyncio
import logging
import uuid
from typing import Any, Iterable

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inspection_sync.models.base import ensure_utc
from inspection_sync.models.cache import QueuedMutationRecord
from inspection_sync.models.enums import MutationKind
from inspection_sync.schemas import PaginatedResult
from inspection_sync.schemas.inspection import QueuedMutation
from inspection_sync.services.pagination import (
    decode_cursor,
    get_valid_page_size,
    process_paginated_results,
)

logger = logging.getLogger(__name__)


def _to_schema(record: QueuedMutationRecord) -> QueuedMutation:
    mutation = QueuedMutation.model_validate(record)
    mutation.created_at = ensure_utc(mutation.created_at)
    return mutation


class MutationQueue:
    """Append-only queue of pending remote writes.

    Entries are replayed in enqueue order and removed only after the remote
    write succeeds. A failed replay leaves the entry in place with its retry
    count bumped. Response mutations are full-row upserts, so only per-item
    order matters.

    ``lock`` serialises remote writes for queued items: the replayer holds it
    per entry and online saves hold it while they write and discard.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self.lock = asyncio.Lock()

    async def enqueue(
        self,
        kind: MutationKind | str,
        payload: dict[str, Any],
    ) -> QueuedMutation | None:
        kind = MutationKind(kind)
        record = QueuedMutationRecord(
            id=str(uuid.uuid4()),
            kind=kind.value,
            report_id=str(payload["report_id"]),
            template_item_id=payload.get("template_item_id"),
            payload=payload,
            retry_count=0,
        )
        try:
            async with self.session_factory() as db:
                db.add(record)
                await db.commit()
                await db.refresh(record)
        except Exception:
            logger.error(
                "Failed to queue %s mutation for report %s item %s",
                kind.value,
                payload.get("report_id"),
                payload.get("template_item_id"),
                exc_info=True,
            )
            return None

        logger.debug("Queued %s mutation %s", kind.value, record.id)
        return _to_schema(record)

    async def list_pending(self, report_id: str | None = None) -> list[QueuedMutation]:
        """Pending entries in enqueue order."""
        query = select(QueuedMutationRecord).order_by(QueuedMutationRecord.seq.asc())
        if report_id is not None:
            query = query.where(QueuedMutationRecord.report_id == report_id)
        try:
            async with self.session_factory() as db:
                result = await db.execute(query)
                return [_to_schema(r) for r in result.scalars().all()]
        except Exception:
            logger.error("Failed to read mutation queue", exc_info=True)
            return []

    async def list_page(
        self,
        limit: int | None = None,
        cursor: str | None = None,
        report_id: str | None = None,
    ) -> PaginatedResult:
        """Cursor-paginated view of the queue, oldest first."""
        page_size = get_valid_page_size(limit)
        query = select(QueuedMutationRecord).order_by(QueuedMutationRecord.seq.asc())
        if report_id is not None:
            query = query.where(QueuedMutationRecord.report_id == report_id)

        position = decode_cursor(cursor) if cursor else None
        try:
            async with self.session_factory() as db:
                if position is not None:
                    anchor = (
                        await db.execute(
                            select(QueuedMutationRecord.seq).where(
                                QueuedMutationRecord.id == position.id,
                            )
                        )
                    ).scalar_one_or_none()
                    if anchor is not None:
                        query = query.where(QueuedMutationRecord.seq > anchor)
                result = await db.execute(query.limit(page_size + 1))
                rows = [_to_schema(r) for r in result.scalars().all()]
        except Exception:
            logger.error("Failed to page mutation queue", exc_info=True)
            rows = []

        return process_paginated_results(rows, page_size, cursor)

    async def exists(self, mutation_id: str) -> bool:
        query = select(QueuedMutationRecord.seq).where(QueuedMutationRecord.id == mutation_id)
        try:
            async with self.session_factory() as db:
                return (await db.execute(query)).scalar_one_or_none() is not None
        except Exception:
            logger.error("Failed to look up queued mutation %s", mutation_id, exc_info=True)
            return False

    async def remove(self, mutation_id: str) -> bool:
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    delete(QueuedMutationRecord).where(QueuedMutationRecord.id == mutation_id)
                )
                await db.commit()
        except Exception:
            logger.error("Failed to remove queued mutation %s", mutation_id, exc_info=True)
            return False
        return result.rowcount > 0

    async def record_failure(self, mutation_id: str, error: str) -> None:
        """Keep the entry for retry, noting why the last attempt failed."""
        try:
            async with self.session_factory() as db:
                await db.execute(
                    update(QueuedMutationRecord)
                    .where(QueuedMutationRecord.id == mutation_id)
                    .values(
                        retry_count=QueuedMutationRecord.retry_count + 1,
                        last_error=error[:1000],
                    )
                )
                await db.commit()
        except Exception:
            logger.error("Failed to update queued mutation %s", mutation_id, exc_info=True)

    async def discard_superseded(
        self,
        report_id: str,
        template_item_ids: Iterable[str],
    ) -> int:
        """Drop queued response writes for items just written remotely.

        Called after the items' full current state reached the remote
        service, which makes any older queued upsert for them stale.
        """
        item_ids = list(template_item_ids)
        if not item_ids:
            return 0
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    delete(QueuedMutationRecord).where(
                        QueuedMutationRecord.kind == MutationKind.RESPONSE.value,
                        QueuedMutationRecord.report_id == report_id,
                        QueuedMutationRecord.template_item_id.in_(item_ids),
                    )
                )
                await db.commit()
        except Exception:
            logger.error(
                "Failed to discard superseded mutations for report %s",
                report_id,
                exc_info=True,
            )
            return 0

        if result.rowcount:
            logger.info(
                "Discarded %d superseded queued mutations for report %s",
                result.rowcount,
                report_id,
            )
        return result.rowcount

    async def count(self, report_id: str | None = None) -> int:
        query = select(func.count()).select_from(QueuedMutationRecord)
        if report_id is not None:
            query = query.where(QueuedMutationRecord.report_id == report_id)
        try:
            async with self.session_factory() as db:
                return (await db.execute(query)).scalar_one()
        except Exception:
            logger.error("Failed to count queued mutations", exc_info=True)
            return 0
