"""Mailbox provider interface.

The pipeline never talks to a mail server itself. A scanner lists the
messages matching a search and, per message, reports the resume it produced
(or why it couldn't).
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional, Protocol


@dataclass
class AttachmentInfo:
    id: str
    name: str
    content_type: Optional[str] = None
    size: int = 0
    is_file: bool = True


@dataclass
class DiscoveredMessage:
    external_message_id: str
    thread_id: Optional[str] = None
    received_at: Optional[datetime] = None
    subject: str = ""
    attachments: list[AttachmentInfo] = field(default_factory=list)


@dataclass
class IngestResult:
    """What became of one message: a stored resume, nothing eligible, or an error."""

    resume_id: Optional[int] = None
    error: Optional[str] = None


class MailboxScanner(Protocol):
    def scan(
        self,
        mailbox: str,
        search_text: str,
        limit: int,
        mode: str,
        lookback_days: int,
    ) -> Iterable[DiscoveredMessage]:
        ...

    def ingest(self, mailbox: str, message: DiscoveredMessage, job_id: int) -> IngestResult:
        ...
