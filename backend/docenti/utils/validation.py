"""Validation utilities for uploads, emails and schedule times."""

import re
from datetime import datetime, timezone
from typing import Optional

from docenti.errors import BadInputError

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def validate_pdf_upload(file_bytes: Optional[bytes], content_type: Optional[str] = None) -> None:
    """Reject missing files and anything that is not a PDF."""
    if not file_bytes:
        raise BadInputError("No file provided")
    is_pdf_type = (content_type or "").split(";")[0].strip().lower() == "application/pdf"
    if not is_pdf_type and not file_bytes[:5] == b"%PDF-":
        raise BadInputError("Invalid file type - PDF only")


def validate_email(email: Optional[str]) -> str:
    email = (email or "").strip().lower()
    if not _EMAIL_RE.match(email):
        raise BadInputError(f"Invalid email address: {email!r}")
    return email


def ensure_future(start_at: datetime, now: Optional[datetime] = None) -> datetime:
    """Normalize to UTC and reject timestamps that are not in the future."""
    if start_at.tzinfo is None:
        start_at = start_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    if start_at <= now:
        raise BadInputError("Start time must be in the future")
    return start_at.astimezone(timezone.utc)
