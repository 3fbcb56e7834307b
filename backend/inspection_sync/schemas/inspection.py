"""Template, report, response, draft and queue schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from inspection_sync.models.enums import (
    MutationKind,
    PhotoRule,
    ReportStatus,
    Severity,
)


# --- Template (read-only, supplied by the template service) ---

class TemplateItem(BaseModel):
    id: str
    label: str
    item_type: str = "text"
    is_required: bool = False
    photo_rule: PhotoRule | None = PhotoRule.NEVER
    options: list[str] | None = None
    sort_order: int = 0
    condition_field_id: str | None = None
    condition_operator: str | None = None
    condition_value: str | None = None


class TemplateSection(BaseModel):
    id: str
    name: str = ""
    sort_order: int = 0
    items: list[TemplateItem] = Field(default_factory=list)


class Template(BaseModel):
    id: str
    name: str = ""
    sections: list[TemplateSection] = Field(default_factory=list)

    @property
    def items(self) -> list[TemplateItem]:
        """All items across sections, in section order."""
        return [item for section in self.sections for item in section.items]


# --- Report (remote system of record) ---

class Report(BaseModel):
    id: str
    organisation_id: str | None = None
    record_id: str | None = None
    template_id: str
    user_id: str | None = None
    status: ReportStatus = ReportStatus.DRAFT
    started_at: datetime | None = None
    submitted_at: datetime | None = None


class RemoteResponse(BaseModel):
    id: str
    report_id: str
    template_item_id: str
    item_label: str | None = None
    item_type: str | None = None
    response_value: str | None = None
    severity: Severity | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class ResponseUpsert(BaseModel):
    report_id: str
    template_item_id: str
    item_label: str | None = None
    item_type: str | None = None
    response_value: str | None = None
    severity: Severity | None = None
    notes: str | None = None


class MediaUploadResult(BaseModel):
    storage_path: str | None = None
    error: str | None = None


# --- Local state ---

class LocalResponse(BaseModel):
    """One item's answer as held in memory and in the draft cache."""
    template_item_id: str
    item_label: str = ""
    item_type: str = "text"
    response_value: str | None = None
    severity: Severity | None = None
    notes: str | None = None
    # Local file paths not yet uploaded
    photos: list[str] = Field(default_factory=list)
    videos: list[str] = Field(default_factory=list)
    # Storage paths already uploaded from this device
    uploaded_media: list[str] = Field(default_factory=list)
    field_updated_at: datetime | None = None

    @property
    def has_media(self) -> bool:
        return bool(self.photos or self.videos)

    @property
    def needs_sync(self) -> bool:
        return self.response_value is not None or self.has_media

    def to_upsert(self, report_id: str) -> ResponseUpsert:
        return ResponseUpsert(
            report_id=report_id,
            template_item_id=self.template_item_id,
            item_label=self.item_label,
            item_type=self.item_type,
            response_value=self.response_value,
            severity=self.severity,
            notes=self.notes,
        )


class Draft(BaseModel):
    report_id: str
    template_id: str
    record_id: str | None = None
    responses: list[LocalResponse] = Field(default_factory=list)
    current_section_index: int = 0
    last_updated: datetime | None = None
    version: int = 1


class QueuedMutation(BaseModel):
    id: str
    seq: int
    kind: MutationKind
    report_id: str
    template_item_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    retry_count: int = 0
    last_error: str | None = None

    model_config = {"from_attributes": True}


# --- Conflict resolution ---

class ConflictField(BaseModel):
    field: str
    local_value: str | None
    server_value: str | None
    local_timestamp: datetime | None
    server_timestamp: datetime | None


class ResponseConflict(BaseModel):
    template_item_id: str
    item_label: str
    conflicts: list[ConflictField]


class MergedResponse(BaseModel):
    template_item_id: str
    response_value: str | None = None
    severity: Severity | None = None
    notes: str | None = None
    photos: list[str] = Field(default_factory=list)
    videos: list[str] = Field(default_factory=list)
    uploaded_media: list[str] = Field(default_factory=list)
    field_updated_at: datetime | None = None
    # Audit only; the user is never blocked on a conflict
    had_conflicts: bool = False
    local_wins: list[str] = Field(default_factory=list)
    server_wins: list[str] = Field(default_factory=list)


class MergeSummary(BaseModel):
    merged: list[MergedResponse]
    conflict_count: int = 0
    local_win_count: int = 0
    server_win_count: int = 0
