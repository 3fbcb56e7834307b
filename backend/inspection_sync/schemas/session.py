"""Session results, read-only session views, and UI request bodies."""

from datetime import datetime

from pydantic import BaseModel, Field

from inspection_sync.models.enums import ReportStatus, SessionPhase, Severity
from inspection_sync.schemas.inspection import LocalResponse, TemplateSection
from inspection_sync.schemas.values import ResponseValue


# --- Operation results ---

class StartResult(BaseModel):
    report_id: str | None = None
    error: str | None = None


class OperationResult(BaseModel):
    error: str | None = None


class SubmitResult(BaseModel):
    error: str | None = None
    warning: str | None = None
    # Items whose media could not be uploaded
    failed_items: list[str] = Field(default_factory=list)


class ReplaySummary(BaseModel):
    applied: int = 0
    failed: int = 0
    skipped_offline: bool = False


class SyncStatusRead(BaseModel):
    is_syncing: bool
    pending_items: int
    last_sync: datetime | None = None


# --- Read-only projection for the UI ---

class ResponseView(LocalResponse):
    value: ResponseValue | None = None

    model_config = {"frozen": True}


class SessionView(BaseModel):
    phase: SessionPhase = SessionPhase.IDLE
    error: str | None = None
    report_id: str | None = None
    report_status: ReportStatus | None = None
    template_id: str | None = None
    record_id: str | None = None
    current_section_index: int = 0
    current_section: TemplateSection | None = None
    section_count: int = 0
    total_items: int = 0
    completed_items: int = 0
    progress: int = 0
    responses: list[ResponseView] = Field(default_factory=list)
    pending_draft_writes: int = 0
    last_draft_error: str | None = None

    model_config = {"frozen": True}


# --- Request bodies ---

class StartInspectionRequest(BaseModel):
    organisation_id: str
    record_id: str
    template_id: str
    user_id: str


class SetResponseRequest(BaseModel):
    """Send either the raw stored string or a typed value.

    Severity and notes are left untouched unless present in the body.
    """
    value: str | None = None
    typed_value: ResponseValue | None = None
    severity: Severity | None = None
    notes: str | None = None


class MediaAttachRequest(BaseModel):
    uri: str = Field(min_length=1)


class GoToSectionRequest(BaseModel):
    index: int = Field(ge=0)


class ConnectivityUpdate(BaseModel):
    online: bool
