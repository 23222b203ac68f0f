"""Resume AI job model: one parsing attempt chain for one resume in a run."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base

AI_PENDING = "pending"
AI_PROCESSING = "processing"
AI_SUCCEEDED = "succeeded"
AI_RETRY = "retry"
AI_FAILED = "failed"

CLAIMABLE_AI_STATUSES = (AI_PENDING, AI_RETRY)
ACTIVE_AI_STATUSES = (AI_PENDING, AI_PROCESSING, AI_RETRY)
TERMINAL_AI_STATUSES = (AI_SUCCEEDED, AI_FAILED)


class ResumeAiJob(Base):
    __tablename__ = "resume_ai_jobs"
    __table_args__ = (
        UniqueConstraint("run_id", "resume_id", name="uq_resume_ai_jobs_run_resume"),
        Index("ix_resume_ai_jobs_status_next_retry", "status", "next_retry_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    run_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("import_runs.id", ondelete="CASCADE"), nullable=False, index=True
    )
    job_id: Mapped[int] = mapped_column(Integer, nullable=False)
    resume_id: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String(20), default=AI_PENDING, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    next_retry_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    run: Mapped["ImportRun"] = relationship(back_populates="ai_jobs")
