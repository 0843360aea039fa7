"""Exception types raised by the audit and remediation pipeline."""

from __future__ import annotations

from typing import Optional


class PdfAuditError(Exception):
    """Base class for every error this package raises."""


class InvalidFormat(PdfAuditError):
    """The bytes could not be opened as a PDF by one of the two views."""

    def __init__(self, message: str, view: Optional[str] = None):
        super().__init__(message)
        self.view = view


class TooLarge(PdfAuditError):
    """A configured ceiling (file size or page count) was exceeded."""

    def __init__(self, message: str, limit: float, actual: float):
        super().__init__(message)
        self.limit = limit
        self.actual = actual


class InvalidRange(PdfAuditError):
    """Requested page selection falls outside the document."""


class ResourceCorrupt(PdfAuditError):
    """One image or structure node is malformed. Recovered locally."""


class RemediationAborted(PdfAuditError):
    """The edited document failed its structural check and was rolled back."""

    def __init__(self, message: str, errors=None):
        super().__init__(message)
        self.errors = list(errors or [])


class HandlerMissing(PdfAuditError):
    """No fix is registered for an issue code."""

    def __init__(self, issue_code: str):
        super().__init__(f"No handler available for {issue_code}")
        self.issue_code = issue_code
