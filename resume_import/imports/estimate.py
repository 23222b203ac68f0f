"""Preview: roughly how many matching emails carry a usable resume.

Only the first few messages are checked exactly; the rest are assumed to be
eligible at a fixed ratio. The result is always labelled as an estimate.
"""

from dataclasses import asdict, dataclass
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from resume_import.config import AppConfig
from resume_import.errors import NotFoundError, ValidationError
from resume_import.imports.enqueue import validate_mailbox, validate_options
from resume_import.mailbox.eligibility import has_eligible_attachment
from resume_import.mailbox.provider import DiscoveredMessage, MailboxScanner
from resume_import.models import JobPosting


@dataclass
class EligibilityEstimate:
    total_messages: int
    sampled: int
    eligible_in_sample: int
    estimated_eligible: int
    is_estimate: bool = True

    def to_dict(self) -> dict:
        return asdict(self)


def estimate_eligible(
    messages: Sequence[DiscoveredMessage],
    allowed_extensions: Sequence[str],
    max_attachment_mb: int,
    sample_size: int = 10,
    ratio: float = 0.6,
) -> EligibilityEstimate:
    sample = list(messages[: max(0, sample_size)])
    eligible = sum(
        1 for m in sample if has_eligible_attachment(m, allowed_extensions, max_attachment_mb)
    )
    remaining = max(0, len(messages) - len(sample))
    return EligibilityEstimate(
        total_messages=len(messages),
        sampled=len(sample),
        eligible_in_sample=eligible,
        estimated_eligible=eligible + int(round(remaining * ratio)),
    )


def preview_import(
    db: Session,
    job_id: int,
    scanner: MailboxScanner,
    config: AppConfig,
    mailbox: str,
    search_text: Optional[str] = None,
    options: Optional[dict] = None,
) -> EligibilityEstimate:
    posting = db.get(JobPosting, job_id)
    if posting is None:
        raise NotFoundError(f"Job posting {job_id} not found")

    search_text = (search_text or posting.application_query or posting.title or "").strip()
    if len(search_text) < 2:
        raise ValidationError("search_text must be at least 2 characters")

    mailbox = validate_mailbox(mailbox)
    limit, mode, lookback_days = validate_options(
        options or {}, config.imports.default_max_emails, config.imports.max_emails_limit
    )

    messages = list(scanner.scan(mailbox, search_text, limit, mode, lookback_days))[:limit]
    return estimate_eligible(
        messages,
        config.imports.allowed_extensions,
        config.imports.max_attachment_mb,
        sample_size=config.imports.estimate_sample_size,
        ratio=config.imports.estimate_ratio,
    )
