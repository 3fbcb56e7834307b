"""Inspection session controller.

Drives one inspection through load -> edit -> save -> submit while the
device drops in and out of connectivity:

- every edit lands in memory at once and is written to the draft cache in
  the background
- saves always hit the local cache first; remote writes that cannot happen
  now go to the mutation queue
- resuming a report merges the local draft with the remote responses
- submission uploads pending media item by item and only fails if the final
  status change fails

The controller owns the InspectionSession. Callers get a frozen SessionView
from view() and never hold the live state.
"""

import logging
from typing import Any

from pydantic import ValidationError

from inspection_sync.config import settings
from inspection_sync.models.base import utcnow
from inspection_sync.models.enums import (
    ConflictStrategy,
    MediaKind,
    MutationKind,
    ReportStatus,
    SessionPhase,
    Severity,
)
from inspection_sync.schemas.inspection import (
    Draft,
    LocalResponse,
    MergeSummary,
    Report,
    Template,
    TemplateSection,
)
from inspection_sync.schemas.session import (
    OperationResult,
    ResponseView,
    SessionView,
    StartResult,
    SubmitResult,
)
from inspection_sync.schemas.values import (
    MediaValue,
    decode_response_value,
    encode_response_value,
)
from inspection_sync.services.conflict_resolution import merge_all_responses
from inspection_sync.services.connectivity import ConnectivityMonitor
from inspection_sync.services.draft_cache import BackgroundDraftWriter, DraftCache
from inspection_sync.services.mutation_queue import MutationQueue
from inspection_sync.services.remote import (
    MediaStore,
    RemoteServiceError,
    ReportStore,
    TemplateSource,
)

logger = logging.getLogger(__name__)

# Marks "leave this field as it is" for optional edit arguments
UNSET: Any = object()

SETUP_ERRORS = (RemoteServiceError, ValidationError)


class InspectionSession:
    """In-memory state of one inspection being edited."""

    def __init__(
        self,
        report: Report,
        template: Template,
        responses: dict[str, LocalResponse],
        current_section_index: int = 0,
    ):
        self.report = report
        self.template = template
        self.responses = responses
        self.current_section_index = current_section_index

    @property
    def is_submitted(self) -> bool:
        return self.report.status == ReportStatus.SUBMITTED

    @property
    def total_items(self) -> int:
        return len(self.template.items)

    @property
    def completed_items(self) -> int:
        return sum(1 for r in self.responses.values() if r.response_value is not None)

    @property
    def progress(self) -> int:
        if not self.total_items:
            return 0
        return round(self.completed_items / self.total_items * 100)

    @property
    def current_section(self) -> TemplateSection | None:
        sections = self.template.sections
        if 0 <= self.current_section_index < len(sections):
            return sections[self.current_section_index]
        return None

    def to_draft(self) -> Draft:
        return Draft(
            report_id=self.report.id,
            template_id=self.template.id,
            record_id=self.report.record_id,
            responses=[self.responses[item.id] for item in self.template.items if item.id in self.responses],
            current_section_index=self.current_section_index,
            last_updated=utcnow(),
            version=settings.DRAFT_SCHEMA_VERSION,
        )


class InspectionSessionController:
    def __init__(
        self,
        templates: TemplateSource,
        reports: ReportStore,
        media: MediaStore,
        connectivity: ConnectivityMonitor,
        draft_cache: DraftCache,
        queue: MutationQueue,
        strategy: ConflictStrategy | str | None = None,
    ):
        self.templates = templates
        self.reports = reports
        self.media = media
        self.connectivity = connectivity
        self.draft_cache = draft_cache
        self.queue = queue
        self.strategy = ConflictStrategy(strategy or settings.CONFLICT_STRATEGY)
        self.writer = BackgroundDraftWriter(draft_cache)

        self._session: InspectionSession | None = None
        self._phase = SessionPhase.IDLE
        self._error: str | None = None
        self._busy = False
        self.last_merge: MergeSummary | None = None

    # --- State ---

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def error(self) -> str | None:
        return self._error

    @property
    def session(self) -> InspectionSession | None:
        return self._session

    @property
    def is_busy(self) -> bool:
        return self._busy

    def view(self) -> SessionView:
        """Read-only snapshot of the current session for the UI."""
        session = self._session
        if session is None:
            return SessionView(
                phase=self._phase,
                error=self._error,
                pending_draft_writes=self.writer.pending,
                last_draft_error=self.writer.last_error,
            )

        responses = []
        for item in session.template.items:
            response = session.responses.get(item.id)
            if response is None:
                continue
            responses.append(ResponseView(
                **response.model_dump(),
                value=decode_response_value(response.item_type, response.response_value),
            ))

        return SessionView(
            phase=self._phase,
            error=self._error,
            report_id=session.report.id,
            report_status=session.report.status,
            template_id=session.template.id,
            record_id=session.report.record_id,
            current_section_index=session.current_section_index,
            current_section=session.current_section,
            section_count=len(session.template.sections),
            total_items=session.total_items,
            completed_items=session.completed_items,
            progress=session.progress,
            responses=responses,
            pending_draft_writes=self.writer.pending,
            last_draft_error=self.writer.last_error,
        )

    # --- Start / Load ---

    async def start_inspection(
        self,
        organisation_id: str,
        record_id: str,
        template_id: str,
        user_id: str,
    ) -> StartResult:
        """Create a new draft report and an empty response per template item."""
        if self._busy:
            return StartResult(error="Another inspection operation is in progress.")

        self._busy = True
        try:
            return await self._start(organisation_id, record_id, template_id, user_id)
        finally:
            self._busy = False

    async def _start(
        self,
        organisation_id: str,
        record_id: str,
        template_id: str,
        user_id: str,
    ) -> StartResult:
        self._begin_loading()

        try:
            template = await self.templates.fetch_template_with_sections(template_id)
        except SETUP_ERRORS as exc:
            return StartResult(error=self._setup_failed("Failed to load template", exc))

        try:
            report = await self.reports.create_report(
                organisation_id, record_id, template_id, user_id,
            )
        except SETUP_ERRORS as exc:
            return StartResult(error=self._setup_failed("Failed to create report", exc))

        responses = {
            item.id: LocalResponse(
                template_item_id=item.id,
                item_label=item.label,
                item_type=item.item_type,
            )
            for item in template.items
        }
        self._session = InspectionSession(report, template, responses)
        self._phase = SessionPhase.READY
        logger.info(
            "Started inspection %s (template %s, %d items)",
            report.id,
            template.id,
            len(responses),
        )
        return StartResult(report_id=report.id)

    async def load_inspection(self, report_id: str) -> OperationResult:
        """Resume a report, merging any local draft with the remote state.

        The remote fetch is required: resuming a specific report without the
        system of record is an error, not a silent fall back to the draft.
        """
        if self._busy:
            return OperationResult(error="Another inspection operation is in progress.")

        self._busy = True
        try:
            return await self._load(report_id)
        finally:
            self._busy = False

    async def _load(self, report_id: str) -> OperationResult:
        self._begin_loading()

        try:
            report = await self.reports.fetch_report_by_id(report_id)
            template = await self.templates.fetch_template_with_sections(report.template_id)
            remote_responses = await self.reports.fetch_report_responses(report_id)
        except SETUP_ERRORS as exc:
            return OperationResult(error=self._setup_failed("Failed to load report", exc))

        if report.status == ReportStatus.SUBMITTED:
            # Nothing local can apply to a submitted report any more
            await self.draft_cache.delete(report_id)
            draft = None
        else:
            draft = await self.draft_cache.load(report_id)

        if draft is not None and draft.template_id != template.id:
            logger.warning(
                "Draft for report %s was taken against template %s, report uses %s",
                report_id,
                draft.template_id,
                template.id,
            )

        summary = merge_all_responses(
            draft.responses if draft else [],
            remote_responses,
            template.items,
            self.strategy,
        )
        self.last_merge = summary

        responses: dict[str, LocalResponse] = {}
        for item, merged in zip(template.items, summary.merged):
            responses[item.id] = LocalResponse(
                template_item_id=item.id,
                item_label=item.label,
                item_type=item.item_type,
                response_value=merged.response_value,
                severity=merged.severity,
                notes=merged.notes,
                photos=merged.photos,
                videos=merged.videos,
                uploaded_media=merged.uploaded_media,
                field_updated_at=merged.field_updated_at,
            )

        section_index = 0
        if draft is not None and 0 <= draft.current_section_index < len(template.sections):
            section_index = draft.current_section_index

        self._session = InspectionSession(report, template, responses, section_index)
        self._phase = (
            SessionPhase.SUBMITTED if report.status == ReportStatus.SUBMITTED else SessionPhase.READY
        )
        logger.info(
            "Loaded inspection %s: draft=%s, remote responses=%d, conflicts=%d",
            report_id,
            draft is not None,
            len(remote_responses),
            summary.conflict_count,
        )
        return OperationResult()

    def _begin_loading(self) -> None:
        self._session = None
        self.last_merge = None
        self._phase = SessionPhase.LOADING
        self._error = None

    def _setup_failed(self, prefix: str, exc: Exception) -> str:
        message = f"{prefix}: {getattr(exc, 'message', None) or exc}"
        logger.error(message)
        self._session = None
        self._phase = SessionPhase.IDLE
        self._error = message
        return message

    # --- Edits ---

    def set_response(
        self,
        template_item_id: str,
        value: Any,
        severity: Any = UNSET,
        notes: Any = UNSET,
    ) -> LocalResponse:
        """Set an item's answer. ``value`` may be a raw string or a typed value."""
        updates: dict[str, Any] = {"response_value": encode_response_value(value)}
        if severity is not UNSET:
            updates["severity"] = Severity(severity) if severity is not None else None
        if notes is not UNSET:
            updates["notes"] = notes
        return self._apply_edit(template_item_id, updates)

    def add_photo(self, template_item_id: str, photo_uri: str) -> LocalResponse:
        return self._add_media(template_item_id, "photos", photo_uri)

    def remove_photo(self, template_item_id: str, photo_index: int) -> LocalResponse:
        return self._remove_media(template_item_id, "photos", photo_index)

    def add_video(self, template_item_id: str, video_uri: str) -> LocalResponse:
        return self._add_media(template_item_id, "videos", video_uri)

    def remove_video(self, template_item_id: str, video_index: int) -> LocalResponse:
        return self._remove_media(template_item_id, "videos", video_index)

    def _add_media(self, template_item_id: str, field: str, uri: str) -> LocalResponse:
        current = self._editable_response(template_item_id)
        return self._apply_edit(template_item_id, {field: [*getattr(current, field), uri]})

    def _remove_media(self, template_item_id: str, field: str, index: int) -> LocalResponse:
        current = self._editable_response(template_item_id)
        items = list(getattr(current, field))
        if not 0 <= index < len(items):
            raise ValueError(f"No {field[:-1]} at index {index} for item {template_item_id}.")
        del items[index]
        return self._apply_edit(template_item_id, {field: items})

    def _editable_response(self, template_item_id: str) -> LocalResponse:
        session = self._session
        if session is None:
            raise ValueError("No active inspection.")
        if session.is_submitted:
            raise ValueError("Inspection has already been submitted.")
        response = session.responses.get(template_item_id)
        if response is None:
            raise ValueError(f"Unknown template item: {template_item_id}")
        return response

    def _apply_edit(self, template_item_id: str, updates: dict[str, Any]) -> LocalResponse:
        current = self._editable_response(template_item_id)
        updated = current.model_copy(update={**updates, "field_updated_at": utcnow()})
        self._session.responses[template_item_id] = updated
        self._error = None
        self._persist_draft()
        return updated

    def _persist_draft(self) -> None:
        session = self._session
        if session is None or session.is_submitted:
            return
        try:
            self.writer.schedule(session.to_draft())
        except RuntimeError:
            # No running loop: the next save writes the draft
            logger.warning("No event loop; draft for %s not written yet", session.report.id)

    # --- Navigation ---

    def next_section(self) -> int:
        return self.go_to_section(self._current_index() + 1)

    def previous_section(self) -> int:
        return self.go_to_section(self._current_index() - 1)

    def go_to_section(self, index: int) -> int:
        """Move to a section. Out-of-range targets leave the position unchanged."""
        session = self._session
        if session is None:
            return 0
        if 0 <= index < len(session.template.sections) and index != session.current_section_index:
            session.current_section_index = index
            self._persist_draft()
        return session.current_section_index

    def _current_index(self) -> int:
        return self._session.current_section_index if self._session else 0

    # --- Save ---

    async def save_responses(self) -> OperationResult:
        """Save locally, then remotely or to the queue.

        Never reports a failure once a session exists: anything that cannot
        reach the remote service now is queued for replay.
        """
        session = self._session
        if session is None:
            return OperationResult(error="No active inspection.")
        if session.is_submitted:
            return OperationResult(error="Inspection has already been submitted.")
        if self._busy:
            return OperationResult(error="A save is already in progress.")

        self._busy = True
        self._phase = SessionPhase.SAVING
        self._error = None
        try:
            await self._save(session)
        finally:
            self._busy = False
            if self._phase == SessionPhase.SAVING:
                self._phase = SessionPhase.READY
        return OperationResult()

    async def _save(self, session: InspectionSession) -> None:
        await self.writer.schedule(session.to_draft())
        pending = [r for r in session.responses.values() if r.needs_sync]
        await self._push(session.report.id, pending)

    async def _save_items(self, session: InspectionSession, template_item_ids: list[str]) -> None:
        await self.writer.schedule(session.to_draft())
        responses = [session.responses[i] for i in template_item_ids if i in session.responses]
        await self._push(session.report.id, responses)

    async def _push(self, report_id: str, pending: list[LocalResponse]) -> None:
        """Write responses to the report store, or queue them for replay."""
        if not pending:
            return

        async with self.queue.lock:
            await self._push_locked(report_id, pending)

    async def _push_locked(self, report_id: str, pending: list[LocalResponse]) -> None:
        if not self.connectivity.is_online():
            queued = await self._enqueue_all(report_id, pending)
            logger.info("Offline: queued %d responses for report %s", queued, report_id)
            return

        written: list[str] = []
        try:
            for response in pending:
                await self.reports.upsert_response(response.to_upsert(report_id))
                written.append(response.template_item_id)
        except Exception as exc:
            logger.warning(
                "Remote save failed for report %s after %d/%d responses, queueing all: %s",
                report_id,
                len(written),
                len(pending),
                exc,
            )
            await self._enqueue_all(report_id, pending)
            return

        await self.queue.discard_superseded(report_id, written)
        logger.info("Saved %d responses for report %s", len(written), report_id)

    async def _enqueue_all(self, report_id: str, responses: list[LocalResponse]) -> int:
        queued = 0
        for response in responses:
            payload = response.to_upsert(report_id).model_dump(mode="json")
            if await self.queue.enqueue(MutationKind.RESPONSE, payload) is not None:
                queued += 1
        return queued

    # --- Submit ---

    async def submit_inspection(self) -> SubmitResult:
        """Save, upload pending media, then mark the report submitted.

        Media failures are reported as a warning naming the affected items.
        Only a failed status change is returned as an error.
        """
        session = self._session
        if session is None:
            return SubmitResult(error="No active inspection.")
        if session.is_submitted:
            return SubmitResult(error="Inspection has already been submitted.")
        if self._busy:
            return SubmitResult(error="Another inspection operation is in progress.")

        self._busy = True
        self._phase = SessionPhase.SUBMITTING
        self._error = None
        try:
            return await self._submit(session)
        finally:
            self._busy = False
            if self._phase == SessionPhase.SUBMITTING:
                self._phase = SessionPhase.READY

    async def _submit(self, session: InspectionSession) -> SubmitResult:
        report_id = session.report.id
        await self._save(session)

        failed_items, updated = await self._upload_pending_media(session)
        if updated:
            await self._save_items(session, updated)

        try:
            await self.reports.submit_report(report_id)
        except Exception as exc:
            message = f"Failed to submit inspection: {getattr(exc, 'message', None) or exc}"
            logger.error("Submit failed for report %s: %s", report_id, exc)
            self._error = message
            self._phase = SessionPhase.READY
            # Keep uploaded references and leftover media for the retry
            await self.writer.schedule(session.to_draft())
            return SubmitResult(error=message, failed_items=failed_items)

        session.report = session.report.model_copy(
            update={"status": ReportStatus.SUBMITTED, "submitted_at": utcnow()},
        )
        self._phase = SessionPhase.SUBMITTED
        await self.writer.flush()
        await self.draft_cache.delete(report_id)

        warning = None
        if failed_items:
            labels = [session.responses[i].item_label or i for i in failed_items]
            warning = (
                "Inspection submitted, but some media could not be uploaded for: "
                + ", ".join(labels)
            )
        logger.info(
            "Submitted inspection %s (%d items with media failures)",
            report_id,
            len(failed_items),
        )
        return SubmitResult(warning=warning, failed_items=failed_items)

    async def _upload_pending_media(
        self,
        session: InspectionSession,
    ) -> tuple[list[str], list[str]]:
        """Upload local media item by item, one file at a time.

        Returns (items with at least one failed upload, items whose value
        now carries new storage references).
        """
        report_id = session.report.id
        failed_items: list[str] = []
        updated: list[str] = []

        for item in session.template.items:
            response = session.responses.get(item.id)
            if response is None or not response.has_media:
                continue

            uploaded: list[str] = []
            sent: dict[str, list[str]] = {"photos": [], "videos": []}
            failed = False
            for field, kind in (("photos", MediaKind.PHOTO), ("videos", MediaKind.VIDEO)):
                for uri in getattr(response, field):
                    storage_path = await self._upload_one(report_id, item.id, uri, kind)
                    if storage_path:
                        uploaded.append(storage_path)
                        sent[field].append(uri)
                    else:
                        failed = True

            if failed:
                failed_items.append(item.id)

            # Edits may have landed while the uploads were awaited
            current = session.responses[item.id]
            updates: dict[str, Any] = {}
            for field, uris in sent.items():
                remaining = list(getattr(current, field))
                for uri in uris:
                    if uri in remaining:
                        remaining.remove(uri)
                updates[field] = remaining
            if uploaded:
                references = [*current.uploaded_media, *uploaded]
                updates["uploaded_media"] = references
                updates["response_value"] = encode_response_value(MediaValue(paths=references))
                updates["field_updated_at"] = utcnow()
                updated.append(item.id)
            session.responses[item.id] = current.model_copy(update=updates)

        return failed_items, updated

    async def _upload_one(
        self,
        report_id: str,
        template_item_id: str,
        uri: str,
        kind: MediaKind,
    ) -> str | None:
        try:
            result = await self.media.upload_media_file(report_id, template_item_id, uri, kind)
        except Exception as exc:
            logger.warning("Upload of %s for item %s raised: %s", uri, template_item_id, exc)
            return None
        if result.error or not result.storage_path:
            logger.warning(
                "Upload of %s for item %s failed: %s",
                uri,
                template_item_id,
                result.error,
            )
            return None
        return result.storage_path

    # --- Reset ---

    async def reset_inspection(self) -> None:
        """Drop the in-memory session once pending draft writes have landed.

        The draft of an unsubmitted report stays in the cache so the
        inspection can be resumed later.
        """
        await self.writer.flush()
        session = self._session
        if session is not None and session.is_submitted:
            await self.draft_cache.delete(session.report.id)
        self._session = None
        self.last_merge = None
        self._phase = SessionPhase.IDLE
        self._error = None
        self._busy = False
