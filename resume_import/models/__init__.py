"""ORM models for the resume import pipeline."""

from .base import Base, SessionLocal, engine, init_db
from .import_item import ImportItem
from .import_run import ImportRun
from .job_posting import JobPosting
from .resume_ai_job import ResumeAiJob

__all__ = [
    "Base",
    "SessionLocal",
    "engine",
    "init_db",
    "JobPosting",
    "ImportRun",
    "ImportItem",
    "ResumeAiJob",
]
