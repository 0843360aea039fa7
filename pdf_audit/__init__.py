"""
PDF Accessibility Audit

Parse a PDF, audit it against WCAG 2.1 / PDF/UA checks, and apply the
deterministic fixes.
"""

from .config import Settings, get_settings
from .errors import (
    HandlerMissing,
    InvalidFormat,
    InvalidRange,
    PdfAuditError,
    RemediationAborted,
    ResourceCorrupt,
    TooLarge,
)
from .loader import ParsedDocument, parse
from .models import Issue, Severity
from .remediation import apply_quick_fix, build_plan, remediate, remediate_document
from .validators import AuditReport, audit

__all__ = [
    "AuditReport",
    "HandlerMissing",
    "InvalidFormat",
    "InvalidRange",
    "Issue",
    "ParsedDocument",
    "PdfAuditError",
    "RemediationAborted",
    "ResourceCorrupt",
    "Settings",
    "Severity",
    "TooLarge",
    "apply_quick_fix",
    "audit",
    "build_plan",
    "get_settings",
    "parse",
    "remediate",
    "remediate_document",
]
