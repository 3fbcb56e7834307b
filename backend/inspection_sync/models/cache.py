"""Local cache tables: one draft per report and the pending mutation queue."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from inspection_sync.models.base import Base, CreatedAtMixin, utcnow


class InspectionDraftRecord(Base):
    __tablename__ = "inspection_draft"

    report_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    template_id: Mapped[str] = mapped_column(String(64), nullable=False)
    record_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    responses: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    current_section_index: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    version: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )


class QueuedMutationRecord(CreatedAtMixin, Base):
    __tablename__ = "queued_mutation"

    # seq is the FIFO order; id is the stable client-side identifier
    seq: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    report_id: Mapped[str] = mapped_column(String(64), nullable=False)
    template_item_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_queued_mutation_report", "report_id"),
        Index("ix_queued_mutation_report_item", "report_id", "template_item_id"),
    )
