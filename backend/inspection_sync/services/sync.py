"""Replay of queued mutations once the device is back online."""

import asyncio
import logging
from datetime import datetime
from typing import Callable

from pydantic import ValidationError

from inspection_sync.config import settings
from inspection_sync.models.base import utcnow
from inspection_sync.models.enums import MutationKind
from inspection_sync.schemas.inspection import QueuedMutation, ResponseUpsert
from inspection_sync.schemas.session import ReplaySummary, SyncStatusRead
from inspection_sync.services.connectivity import ConnectivityMonitor
from inspection_sync.services.mutation_queue import MutationQueue
from inspection_sync.services.remote import ReportStore

logger = logging.getLogger(__name__)

MAX_RETRIES_EXCEEDED = "Max retries exceeded"


class QueueReplayer:
    """Drains the mutation queue against the report store.

    Entries are replayed oldest first and removed only after the remote
    write succeeds. Failed entries stay queued with their retry count bumped.
    Past max_retries they are still kept, flagged, for a manual retry.
    """

    def __init__(
        self,
        queue: MutationQueue,
        reports: ReportStore,
        connectivity: ConnectivityMonitor,
        max_retries: int | None = None,
    ):
        self.queue = queue
        self.reports = reports
        self.connectivity = connectivity
        self.max_retries = max_retries or settings.SYNC_MAX_RETRIES
        self.last_sync: datetime | None = None
        self._syncing = False
        self._tasks: set[asyncio.Task] = set()

    @property
    def is_syncing(self) -> bool:
        return self._syncing

    async def process_queue(self) -> ReplaySummary:
        if self._syncing:
            logger.info("Queue replay already in progress")
            return ReplaySummary()
        if not self.connectivity.is_online():
            logger.info("Cannot replay queue: device is offline")
            return ReplaySummary(skipped_offline=True)

        self._syncing = True
        summary = ReplaySummary()
        try:
            for mutation in await self.queue.list_pending():
                async with self.queue.lock:
                    # An online save may have superseded it since the listing
                    if not await self.queue.exists(mutation.id):
                        logger.debug("Queued mutation %s superseded, skipping", mutation.id)
                        continue

                    error = await self._replay(mutation)
                    if error is None:
                        await self.queue.remove(mutation.id)
                        summary.applied += 1
                        continue

                    summary.failed += 1
                    if mutation.retry_count + 1 >= self.max_retries:
                        error = f"{MAX_RETRIES_EXCEEDED}: {error}"
                    await self.queue.record_failure(mutation.id, error)

            if summary.applied:
                self.last_sync = utcnow()
        finally:
            self._syncing = False

        logger.info(
            "Queue replay finished: %d applied, %d failed",
            summary.applied,
            summary.failed,
        )
        return summary

    async def _replay(self, mutation: QueuedMutation) -> str | None:
        """Apply one entry. Returns the error message, or None on success."""
        if mutation.kind != MutationKind.RESPONSE:
            return f"Unsupported mutation kind: {mutation.kind}"
        try:
            data = ResponseUpsert.model_validate(mutation.payload)
        except ValidationError as exc:
            logger.error("Queued mutation %s has an invalid payload: %s", mutation.id, exc)
            return "Invalid payload"
        try:
            await self.reports.upsert_response(data)
        except Exception as exc:
            logger.warning("Replay of mutation %s failed: %s", mutation.id, exc)
            return getattr(exc, "message", None) or str(exc) or exc.__class__.__name__
        return None

    async def sync_status(self) -> SyncStatusRead:
        return SyncStatusRead(
            is_syncing=self._syncing,
            pending_items=await self.queue.count(),
            last_sync=self.last_sync,
        )

    def start_auto_sync(self) -> Callable[[], None]:
        """Replay the queue whenever connectivity comes back.

        Must be called from a running event loop. Returns the unsubscribe
        function.
        """
        loop = asyncio.get_running_loop()

        def on_change(online: bool) -> None:
            if not online:
                return
            task = loop.create_task(self.process_queue())
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)

        return self.connectivity.subscribe(on_change)

    async def wait_idle(self) -> None:
        """Wait for replays started by start_auto_sync to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
