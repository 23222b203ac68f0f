"""Import item model: one discovered email within a run."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

ITEM_PENDING = "pending"
ITEM_PROCESSING = "processing"
ITEM_COMPLETED = "completed"
ITEM_FAILED = "failed"
ITEM_CANCELED = "canceled"

# gpt_* columns mirror the resume's AI job for cheap UI reads
GPT_NOT_STARTED = "not_started"
GPT_QUEUED = "queued"
GPT_IN_PROGRESS = "in_progress"
GPT_SUCCEEDED = "succeeded"
GPT_FAILED = "failed"


class ImportItem(Base):
    __tablename__ = "import_items"
    __table_args__ = (
        UniqueConstraint("run_id", "external_message_id", name="uq_import_items_run_message"),
        Index("ix_import_items_run_status", "run_id", "status", "id"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("import_runs.id", ondelete="CASCADE"), nullable=False
    )
    job_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    external_message_id: Mapped[str] = mapped_column(String(512), nullable=False)
    external_thread_id: Mapped[str | None] = mapped_column(String(512), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[str] = mapped_column(String(20), default=ITEM_PENDING, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    resume_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    gpt_status: Mapped[str] = mapped_column(String(20), default=GPT_NOT_STARTED, nullable=False)
    gpt_attempts: Mapped[int] = mapped_column(Integer, default=0)
    gpt_last_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    gpt_last_finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    gpt_last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    gpt_next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    run: Mapped["ImportRun"] = relationship(back_populates="items")
