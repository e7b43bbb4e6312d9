"""
Error taxonomy for the PDF processing pipeline.

BadInputError    - data errors (no text, malformed score, bad upload, past schedule)
NotFoundError    - unknown exam or job
FatalConfigError - deployment problems; jobs hitting this are never retried
ArtifactUploadError - object storage failures; retried at the job level
"""

from typing import Any, Dict, Optional


class DocentiError(Exception):
    """Base exception for all pipeline errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class BadInputError(DocentiError):
    """Raised when input data cannot be processed."""


class NotFoundError(DocentiError):
    """Raised when an exam or job does not exist."""


class FatalConfigError(DocentiError):
    """Raised when the deployment is missing something the pipeline needs."""


class ArtifactUploadError(DocentiError):
    """Raised when a transcript could not be written to object storage."""

    def __init__(self, message: str, key: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        details = details or {}
        if key:
            details["key"] = key
        super().__init__(message, details)
