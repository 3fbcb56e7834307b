"""Durable local cache of in-progress inspection drafts.

One row per report, overwritten wholesale on every save. The cache is a
durability aid, not a source of truth: every operation logs its failures and
returns normally so a broken disk never takes the edit path down with it.
"""

import asyncio
import logging
from datetime import datetime

from pydantic import ValidationError
from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from inspection_sync.config import settings
from inspection_sync.models.base import ensure_utc, utcnow
from inspection_sync.models.cache import InspectionDraftRecord
from inspection_sync.schemas import PaginatedResult
from inspection_sync.schemas.inspection import Draft, LocalResponse
from inspection_sync.services.pagination import (
    decode_cursor,
    get_valid_page_size,
    process_paginated_results,
)

logger = logging.getLogger(__name__)


class DraftCache:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def save(self, draft: Draft) -> bool:
        """Persist the full draft, replacing any earlier copy."""
        try:
            async with self.session_factory() as db:
                record = await db.get(InspectionDraftRecord, draft.report_id)
                if record is None:
                    record = InspectionDraftRecord(report_id=draft.report_id)
                    db.add(record)
                record.template_id = draft.template_id
                record.record_id = draft.record_id
                record.responses = [r.model_dump(mode="json") for r in draft.responses]
                record.current_section_index = draft.current_section_index
                record.version = draft.version
                record.last_updated = utcnow()
                await db.commit()
        except Exception:
            logger.error("Failed to save draft for report %s", draft.report_id, exc_info=True)
            return False
        return True

    async def load(self, report_id: str) -> Draft | None:
        try:
            async with self.session_factory() as db:
                record = await db.get(InspectionDraftRecord, report_id)
        except Exception:
            logger.error("Failed to load draft for report %s", report_id, exc_info=True)
            return None

        if record is None:
            return None
        return self._to_draft(record)

    async def delete(self, report_id: str) -> bool:
        try:
            async with self.session_factory() as db:
                await db.execute(
                    delete(InspectionDraftRecord).where(
                        InspectionDraftRecord.report_id == report_id,
                    )
                )
                await db.commit()
        except Exception:
            logger.error("Failed to delete draft for report %s", report_id, exc_info=True)
            return False
        return True

    async def list_drafts(self) -> list[Draft]:
        """All stored drafts, most recently edited first."""
        try:
            async with self.session_factory() as db:
                result = await db.execute(
                    select(InspectionDraftRecord).order_by(
                        InspectionDraftRecord.last_updated.desc(),
                        InspectionDraftRecord.report_id.desc(),
                    )
                )
                records = result.scalars().all()
        except Exception:
            logger.error("Failed to list drafts", exc_info=True)
            return []

        drafts = (self._to_draft(r) for r in records)
        return [d for d in drafts if d is not None]

    async def list_page(
        self,
        limit: int | None = None,
        cursor: str | None = None,
    ) -> PaginatedResult:
        """Cursor-paginated drafts for the resume list, newest first."""
        page_size = get_valid_page_size(limit)
        query = select(InspectionDraftRecord).order_by(
            InspectionDraftRecord.last_updated.desc(),
            InspectionDraftRecord.report_id.desc(),
        )

        position = decode_cursor(cursor) if cursor else None
        if position is not None:
            try:
                ts = datetime.fromisoformat(position.timestamp)
            except ValueError:
                ts = None
            if ts is not None:
                query = query.where(
                    or_(
                        InspectionDraftRecord.last_updated < ts,
                        and_(
                            InspectionDraftRecord.last_updated == ts,
                            InspectionDraftRecord.report_id < position.id,
                        ),
                    )
                )

        try:
            async with self.session_factory() as db:
                result = await db.execute(query.limit(page_size + 1))
                records = result.scalars().all()
        except Exception:
            logger.error("Failed to page drafts", exc_info=True)
            records = []

        drafts = [d for d in (self._to_draft(r) for r in records) if d is not None]
        return process_paginated_results(
            drafts, page_size, cursor,
            timestamp_field="last_updated", id_field="report_id",
        )

    def _to_draft(self, record: InspectionDraftRecord) -> Draft | None:
        if record.version > settings.DRAFT_SCHEMA_VERSION:
            logger.warning(
                "Ignoring draft for report %s: schema version %d is newer than %d",
                record.report_id,
                record.version,
                settings.DRAFT_SCHEMA_VERSION,
            )
            return None
        try:
            responses = [LocalResponse.model_validate(r) for r in record.responses or []]
        except ValidationError as exc:
            logger.error("Corrupt draft for report %s: %s", record.report_id, exc)
            return None

        for response in responses:
            response.field_updated_at = ensure_utc(response.field_updated_at)

        return Draft(
            report_id=record.report_id,
            template_id=record.template_id,
            record_id=record.record_id,
            responses=responses,
            current_section_index=record.current_section_index,
            last_updated=ensure_utc(record.last_updated),
            version=record.version,
        )


class BackgroundDraftWriter:
    """Runs draft saves as tracked background tasks.

    Edits schedule a save and return immediately. Writes run one at a time in
    scheduling order so an older snapshot can never land after a newer one.
    The outcome of the latest write is kept for diagnostics.
    """

    def __init__(self, cache: DraftCache):
        self.cache = cache
        self._lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()
        self.last_saved_at: datetime | None = None
        self.last_error: str | None = None

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def schedule(self, draft: Draft) -> asyncio.Task:
        snapshot = draft.model_copy(deep=True)
        task = asyncio.get_running_loop().create_task(self._write(snapshot))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def flush(self) -> None:
        """Wait for every scheduled write to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    async def _write(self, draft: Draft) -> bool:
        async with self._lock:
            ok = await self.cache.save(draft)
        if ok:
            self.last_saved_at = utcnow()
            self.last_error = None
        else:
            self.last_error = f"Draft for report {draft.report_id} could not be written locally"
        return ok
