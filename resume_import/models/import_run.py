"""Import run model: one mailbox scan for one job posting."""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

RUN_ENQUEUED = "enqueued"
RUN_RUNNING = "running"
RUN_SUCCEEDED = "succeeded"
RUN_FAILED = "failed"
RUN_CANCELED = "canceled"

ACTIVE_RUN_STATUSES = (RUN_ENQUEUED, RUN_RUNNING)
TERMINAL_RUN_STATUSES = (RUN_SUCCEEDED, RUN_FAILED, RUN_CANCELED)

_ACTIVE_PREDICATE = "status IN ('enqueued', 'running')"


class ImportRun(Base):
    __tablename__ = "import_runs"
    __table_args__ = (
        # One enqueued-or-running run per job posting. Enforced by the database so
        # two racing enqueues can't both commit.
        Index(
            "uq_import_runs_one_active_per_job",
            "job_id",
            unique=True,
            sqlite_where=text(_ACTIVE_PREDICATE),
            postgresql_where=text(_ACTIVE_PREDICATE),
        ),
        Index("ix_import_runs_status_created", "status", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    job_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("job_postings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    requested_by: Mapped[str | None] = mapped_column(String(255), nullable=True)

    mailbox: Mapped[str] = mapped_column(String(255), nullable=False)
    search_text: Mapped[str] = mapped_column(String(500), nullable=False)
    max_emails: Mapped[int] = mapped_column(Integer, default=5000)

    status: Mapped[str] = mapped_column(String(20), default=RUN_ENQUEUED, nullable=False)
    progress: Mapped[float] = mapped_column(Float, default=0.0)
    total_messages: Mapped[int] = mapped_column(Integer, default=0)
    processed_messages: Mapped[int] = mapped_column(Integer, default=0)
    attempts: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processing_duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)

    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    meta: Mapped[dict] = mapped_column(JSON, default=dict)

    job: Mapped["JobPosting"] = relationship(back_populates="import_runs")
    items: Mapped[list["ImportItem"]] = relationship(
        back_populates="run", cascade="all, delete-orphan", passive_deletes=True
    )
    ai_jobs: Mapped[list["ResumeAiJob"]] = relationship(
        back_populates="run", cascade="all, delete-orphan", passive_deletes=True
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES

    def to_dict(self) -> dict:
        """Convert to the status payload returned by the API and CLI."""
        return {
            "id": self.id,
            "job_id": self.job_id,
            "status": self.status,
            "progress": float(self.progress or 0.0),
            "processed_messages": self.processed_messages or 0,
            "total_messages": self.total_messages or 0,
            "attempts": self.attempts or 0,
            "last_error": self.last_error,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "processing_duration_ms": self.processing_duration_ms,
            "summary": self.summary,
            "meta": self.meta or {},
        }
