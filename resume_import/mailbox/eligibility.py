"""Which attachments count as resumes."""

from typing import Iterable

from resume_import.mailbox.provider import AttachmentInfo, DiscoveredMessage


def extension_of(name: str) -> str:
    name = (name or "").strip().lower()
    if "." not in name:
        return ""
    return name.rsplit(".", 1)[1]


def is_eligible_attachment(
    attachment: AttachmentInfo,
    allowed_extensions: Iterable[str],
    max_attachment_mb: int,
) -> bool:
    """File attachments with an allowed extension no larger than the size limit."""
    if not attachment.is_file:
        return False
    allowed = {ext.lower().lstrip(".") for ext in allowed_extensions}
    if extension_of(attachment.name) not in allowed:
        return False
    return 0 <= (attachment.size or 0) <= max_attachment_mb * 1024 * 1024


def eligible_attachments(
    message: DiscoveredMessage,
    allowed_extensions: Iterable[str],
    max_attachment_mb: int,
) -> list[AttachmentInfo]:
    allowed = list(allowed_extensions)
    return [a for a in message.attachments if is_eligible_attachment(a, allowed, max_attachment_mb)]


def has_eligible_attachment(
    message: DiscoveredMessage,
    allowed_extensions: Iterable[str],
    max_attachment_mb: int,
) -> bool:
    return bool(eligible_attachments(message, allowed_extensions, max_attachment_mb))
