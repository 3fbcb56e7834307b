"""Shared fixtures: an in-memory local cache and in-process remote fakes.

The fakes can hold a call open on an asyncio.Event so tests can interleave
other operations with an in-flight remote request.
"""

import asyncio
import uuid
from datetime import datetime, timezone
from pathlib import PurePosixPath

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from inspection_sync.database import build_session_factory, init_models
from inspection_sync.models.enums import MediaKind, ReportStatus
from inspection_sync.schemas.inspection import (
    MediaUploadResult,
    RemoteResponse,
    Report,
    ResponseUpsert,
    Template,
    TemplateItem,
    TemplateSection,
)
from inspection_sync.services.connectivity import ConnectivityMonitor
from inspection_sync.services.draft_cache import DraftCache
from inspection_sync.services.mutation_queue import MutationQueue
from inspection_sync.services.remote import RemoteServiceError
from inspection_sync.services.session import InspectionSessionController


def ts(hour: int, minute: int = 0) -> datetime:
    return datetime(2026, 3, 2, hour, minute, tzinfo=timezone.utc)


class FakeTemplateSource:
    def __init__(self, *templates: Template):
        self.templates = {t.id: t for t in templates}
        self.fail = False
        self.release: asyncio.Event | None = None
        self.fetching = asyncio.Event()

    async def fetch_template_with_sections(self, template_id: str) -> Template:
        self.fetching.set()
        if self.release is not None:
            await self.release.wait()
        if self.fail:
            raise RemoteServiceError("Template service unavailable")
        if template_id not in self.templates:
            raise RemoteServiceError(f"Template {template_id} not found", status_code=404)
        return self.templates[template_id]


class FakeReportStore:
    """System of record keyed the way the real one is: one response per (report, item)."""

    def __init__(self):
        self.reports: dict[str, Report] = {}
        self.responses: dict[tuple[str, str], RemoteResponse] = {}
        self.upserts: list[ResponseUpsert] = []
        self.submits: list[str] = []
        self.fail_create = False
        self.fail_fetch = False
        self.fail_upserts = False
        self.fail_submit = False
        self.hold_next_upsert: asyncio.Event | None = None
        self.upsert_held = asyncio.Event()

    async def create_report(self, organisation_id, record_id, template_id, user_id) -> Report:
        if self.fail_create:
            raise RemoteServiceError("POST /reports failed with HTTP 503", status_code=503)
        report = Report(
            id=f"report-{len(self.reports) + 1}",
            organisation_id=organisation_id,
            record_id=record_id,
            template_id=template_id,
            user_id=user_id,
            started_at=datetime.now(timezone.utc),
        )
        self.reports[report.id] = report
        return report

    async def fetch_report_by_id(self, report_id: str) -> Report:
        if self.fail_fetch:
            raise RemoteServiceError("Network unreachable")
        if report_id not in self.reports:
            raise RemoteServiceError(f"Report {report_id} not found", status_code=404)
        return self.reports[report_id]

    async def fetch_report_responses(self, report_id: str) -> list[RemoteResponse]:
        if self.fail_fetch:
            raise RemoteServiceError("Network unreachable")
        return [r for (rid, _), r in self.responses.items() if rid == report_id]

    async def upsert_response(self, data: ResponseUpsert) -> RemoteResponse:
        if self.fail_upserts:
            raise RemoteServiceError("PUT response failed with HTTP 503", status_code=503)
        if self.hold_next_upsert is not None:
            gate, self.hold_next_upsert = self.hold_next_upsert, None
            self.upsert_held.set()
            await gate.wait()
        self.upserts.append(data)
        key = (data.report_id, data.template_item_id)
        existing = self.responses.get(key)
        now = datetime.now(timezone.utc)
        response = RemoteResponse(
            id=existing.id if existing else str(uuid.uuid4()),
            created_at=existing.created_at if existing else now,
            updated_at=now,
            **data.model_dump(),
        )
        self.responses[key] = response
        return response

    async def submit_report(self, report_id: str) -> None:
        if self.fail_submit:
            raise RemoteServiceError("POST submit failed with HTTP 500", status_code=500)
        self.submits.append(report_id)
        self.reports[report_id] = self.reports[report_id].model_copy(
            update={"status": ReportStatus.SUBMITTED, "submitted_at": datetime.now(timezone.utc)},
        )

    def seed_report(self, report_id: str, template_id: str, status=ReportStatus.DRAFT) -> Report:
        report = Report(id=report_id, template_id=template_id, record_id="rec-1", status=status)
        self.reports[report_id] = report
        return report

    def seed_response(self, report_id: str, template_item_id: str, updated_at: datetime, **fields):
        self.responses[(report_id, template_item_id)] = RemoteResponse(
            id=str(uuid.uuid4()),
            report_id=report_id,
            template_item_id=template_item_id,
            created_at=updated_at,
            updated_at=updated_at,
            **fields,
        )


class FakeMediaStore:
    def __init__(self):
        self.uploads: list[tuple[str, str, str, MediaKind]] = []
        self.failing: set[str] = set()
        self.release: asyncio.Event | None = None
        self.uploading = asyncio.Event()

    async def upload_media_file(
        self,
        report_id: str,
        template_item_id: str,
        local_uri: str,
        media_kind: MediaKind = MediaKind.PHOTO,
    ) -> MediaUploadResult:
        self.uploads.append((report_id, template_item_id, local_uri, media_kind))
        self.uploading.set()
        if self.release is not None:
            await self.release.wait()
        if local_uri in self.failing:
            return MediaUploadResult(error="Upload failed")
        name = PurePosixPath(local_uri).name
        return MediaUploadResult(storage_path=f"{report_id}/{template_item_id}/{name}")


def build_template() -> Template:
    return Template(
        id="tpl-1",
        name="Site walk",
        sections=[
            TemplateSection(id="sec-1", name="Exterior", sort_order=0, items=[
                TemplateItem(id="item-door", label="Door condition", item_type="pass_fail"),
                TemplateItem(id="item-notes", label="General notes", item_type="text"),
            ]),
            TemplateSection(id="sec-2", name="Interior", sort_order=1, items=[
                TemplateItem(id="item-a", label="Item A", item_type="photo"),
                TemplateItem(id="item-b", label="Item B", item_type="photo"),
                TemplateItem(id="item-c", label="Item C", item_type="photo"),
            ]),
            TemplateSection(id="sec-3", name="Readings", sort_order=2, items=[
                TemplateItem(id="item-temp", label="Boiler temperature", item_type="temperature"),
                TemplateItem(id="item-hazards", label="Hazards", item_type="multi_select",
                             options=["Trip", "Electrical", "Fire"]),
            ]),
        ],
    )


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture
def draft_cache(session_factory):
    return DraftCache(session_factory)


@pytest.fixture
def queue(session_factory):
    return MutationQueue(session_factory)


@pytest.fixture
def template():
    return build_template()


@pytest.fixture
def templates(template):
    return FakeTemplateSource(template)


@pytest.fixture
def reports():
    return FakeReportStore()


@pytest.fixture
def media():
    return FakeMediaStore()


@pytest.fixture
def connectivity():
    return ConnectivityMonitor(initially_online=True)


@pytest.fixture
async def controller(templates, reports, media, connectivity, draft_cache, queue):
    controller = InspectionSessionController(
        templates=templates,
        reports=reports,
        media=media,
        connectivity=connectivity,
        draft_cache=draft_cache,
        queue=queue,
        strategy="newest-wins",
    )
    yield controller
    await controller.writer.flush()
