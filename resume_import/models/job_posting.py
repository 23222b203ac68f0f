"""Job posting model: the role a mailbox import collects resumes for."""

from datetime import datetime, timezone

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


class JobPosting(Base):
    __tablename__ = "job_postings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    requirements: Mapped[str] = mapped_column(Text, default="")
    ai_summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    application_query: Mapped[str | None] = mapped_column(String(500), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(timezone.utc)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    import_runs: Mapped[list["ImportRun"]] = relationship(
        back_populates="job", cascade="all, delete-orphan", passive_deletes=True
    )

    def parse_context(self) -> dict:
        """Short job context handed to the resume parser."""
        description = self.description or ""
        if len(description) > 500:
            description = description[:500] + "..."
        return {
            "job_title": self.title,
            "job_description_short": description,
            "summary": self.ai_summary or self.requirements or "",
        }
