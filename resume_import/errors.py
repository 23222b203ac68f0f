"""Error taxonomy for the import pipeline.

Claim losses and "nothing eligible" are normal control flow and never show up
here. Parse failures are recorded on the AI job, never raised past the worker.
"""

from typing import Optional


class ResumeImportError(Exception):
    """Base class; ``kind`` lets callers (and the API) tell errors apart."""

    kind = "error"
    status_code = 500

    def to_dict(self) -> dict:
        return {"error": str(self), "kind": self.kind}


class ValidationError(ResumeImportError):
    kind = "validation"
    status_code = 422


class NotFoundError(ResumeImportError):
    kind = "not_found"
    status_code = 404


class ConflictError(ResumeImportError):
    """A job posting already has an enqueued or running import."""

    kind = "conflict"
    status_code = 409

    def __init__(
        self,
        message: str,
        existing_run_id: Optional[str] = None,
        existing_status: Optional[str] = None,
        race: bool = False,
    ):
        super().__init__(message)
        self.existing_run_id = existing_run_id
        self.existing_status = existing_status
        self.race = race

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["existing_run_id"] = self.existing_run_id
        payload["existing_status"] = self.existing_status
        payload["race"] = self.race
        return payload


class TransientStoreError(ResumeImportError):
    """The database stayed unreachable after bounded retries."""

    kind = "transient_store"
    status_code = 503

    def __init__(self, message: str, stage: str = "", attempts: int = 0):
        super().__init__(message)
        self.stage = stage
        self.attempts = attempts


class ParseFailure(ResumeImportError):
    """A resume parse returned failure or timed out (recorded, not propagated)."""

    kind = "parse_failure"
