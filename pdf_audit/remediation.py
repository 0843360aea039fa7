"""
Remediation planning, execution and verification.

    plan = build_plan(report.issues)
    result = remediate(data, plan, file_name="report.pdf")

The executor keeps the original bytes as the backup, applies every
auto-fixable task to one in-memory pikepdf document in plan order, checks the
saved result, and either returns the backup untouched (rollback) or re-audits
the new bytes to verify each fix.
"""

from __future__ import annotations

import hashlib
import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

import pikepdf

from .analyzer import analyze_headings
from .config import Settings, get_settings
from .errors import HandlerMissing, InvalidFormat, PdfAuditError, RemediationAborted
from .handlers import HandlerContext, ModificationResult, get_handler
from .image_extractor import ImageDescriptor, collect_figures, get_image_by_id, match_figure
from .loader import ParsedDocument, parse
from .models import Issue
from .structtree import FIGURE_TAGS, walk_struct_tree
from .text_extractor import extract_text
from .validators import audit

logger = logging.getLogger(__name__)


# ============================================================================
# Classification
# ============================================================================


class FixType(str, Enum):
    AUTO_FIXABLE = "auto-fixable"
    QUICK_FIX = "quick-fix"
    MANUAL = "manual"


AUTO_FIXABLE_CODES = frozenset(
    {
        "PDF-NO-LANGUAGE",
        "PDF-NO-TITLE",
        "PDF-NO-METADATA",
        "PDF-NO-CREATOR",
        "PDF-EMPTY-HEADING",
        "PDF-REDUNDANT-TAG",
        "PDF-NO-BOOKMARKS",
        "MATTERHORN-01-001",
        "MATTERHORN-01-002",
        "MATTERHORN-01-003",
        "MATTERHORN-01-004",
        "MATTERHORN-01-005",
        "MATTERHORN-07-001",
        "MATTERHORN-11-001",
        "WCAG-2.4.2",
    }
)

QUICK_FIXABLE_CODES = frozenset(
    {
        "PDF-IMAGE-NO-ALT",
        "PDF-TABLE-NO-HEADERS",
        "PDF-FORM-NO-LABEL",
        "PDF-LINK-NO-TEXT",
        "PDF-FIGURE-NO-CAPTION",
        "MATTERHORN-13-002",
        "MATTERHORN-13-003",
        "ALT-TEXT-QUALITY",
        "ALT-TEXT-REDUNDANT-PREFIX",
        "TABLE-MISSING-SUMMARY",
        "TABLE-MISSING-HEADERS",
        "MATTERHORN-15-002",
        "MATTERHORN-15-003",
        "MATTERHORN-17-001",
        "MATTERHORN-19-006",
    }
)

MANUAL_CODES = frozenset(
    {
        "PDF-UNTAGGED",
        "PDF-READING-ORDER",
        "PDF-COMPLEX-TABLE",
        "PDF-CONTRAST-FAIL",
        "PDF-MISSING-STRUCTURE",
        "PDF-NESTED-STRUCTURE",
        "MATTERHORN-09-004",
        "HEADING-SKIP",
        "HEADING-MULTIPLE-H1",
        "HEADING-NESTING",
        "TABLE-ACCESSIBILITY",
        "TABLE-INACCESSIBLE",
        "TABLE-COMPLEX-STRUCTURE",
        "MATTERHORN-15-005",
        "LIST-NOT-TAGGED",
        "LIST-IMPROPER-MARKUP",
        "PDF-LOW-CONTRAST",
        "CONTRAST-FAIL",
    }
)

ALT_TEXT_QUICK_FIX_CODES = frozenset(
    {"MATTERHORN-13-002", "MATTERHORN-13-003", "ALT-TEXT-QUALITY", "ALT-TEXT-REDUNDANT-PREFIX"}
)


def classify_issue(code: str) -> FixType:
    if code in AUTO_FIXABLE_CODES:
        return FixType.AUTO_FIXABLE
    if code in QUICK_FIXABLE_CODES:
        return FixType.QUICK_FIX
    return FixType.MANUAL


# ============================================================================
# Tasks and plan
# ============================================================================


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


ALLOWED_TRANSITIONS = {
    TaskStatus.PENDING: {TaskStatus.IN_PROGRESS, TaskStatus.SKIPPED},
    TaskStatus.IN_PROGRESS: {TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED},
    TaskStatus.COMPLETED: set(),
    TaskStatus.FAILED: set(),
    TaskStatus.SKIPPED: set(),
}


@dataclass
class RemediationTask:
    id: str
    issue_id: str
    issue_code: str
    type: FixType
    severity: str
    message: str
    location: Optional[str] = None
    status: TaskStatus = TaskStatus.PENDING
    result: Optional[ModificationResult] = None
    notes: Optional[str] = None

    def transition(self, new_status: TaskStatus) -> None:
        """Move to a later state. Raises ValueError on a regression."""
        if new_status not in ALLOWED_TRANSITIONS[self.status]:
            raise ValueError(
                f"Task {self.id}: illegal transition {self.status.value} -> {new_status.value}"
            )
        self.status = new_status

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "issueId": self.issue_id,
            "issueCode": self.issue_code,
            "type": self.type.value,
            "severity": self.severity,
            "status": self.status.value,
            "location": self.location,
            "message": self.message,
            "notes": self.notes,
        }


@dataclass
class RemediationPlan:
    tasks: List[RemediationTask]
    total_issues: int = 0
    auto_fixable_count: int = 0
    quick_fix_count: int = 0
    manual_fix_count: int = 0

    def tasks_of_type(self, fix_type: FixType) -> List[RemediationTask]:
        return [t for t in self.tasks if t.type is fix_type]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalIssues": self.total_issues,
            "autoFixableCount": self.auto_fixable_count,
            "quickFixCount": self.quick_fix_count,
            "manualFixCount": self.manual_fix_count,
            "tasks": [t.to_dict() for t in self.tasks],
        }


def build_plan(issues: Iterable[Issue]) -> RemediationPlan:
    """One task per issue, most severe first; ties keep validator order."""
    ordered = sorted(issues, key=lambda i: i.severity.rank)
    tasks = [
        RemediationTask(
            id=f"task-{n}",
            issue_id=issue.id,
            issue_code=issue.code,
            type=classify_issue(issue.code),
            severity=issue.severity.value,
            message=issue.message,
            location=issue.location,
        )
        for n, issue in enumerate(ordered, start=1)
    ]
    plan = RemediationPlan(
        tasks=tasks,
        total_issues=len(tasks),
        auto_fixable_count=sum(1 for t in tasks if t.type is FixType.AUTO_FIXABLE),
        quick_fix_count=sum(1 for t in tasks if t.type is FixType.QUICK_FIX),
        manual_fix_count=sum(1 for t in tasks if t.type is FixType.MANUAL),
    )
    logger.info(
        "Remediation plan: %d tasks (%d auto, %d quick, %d manual)",
        plan.total_issues,
        plan.auto_fixable_count,
        plan.quick_fix_count,
        plan.manual_fix_count,
    )
    return plan


# ============================================================================
# Results
# ============================================================================


@dataclass
class VerificationResult:
    total_tasks: int = 0
    verified_fixed: int = 0
    still_broken: int = 0
    unverified: int = 0
    # task id -> verified-fixed | still-broken | unverified
    details: Dict[str, str] = field(default_factory=dict)

    def record(self, task_id: str, outcome: str) -> None:
        self.details[task_id] = outcome
        self.total_tasks += 1
        if outcome == "verified-fixed":
            self.verified_fixed += 1
        elif outcome == "still-broken":
            self.still_broken += 1
        else:
            self.unverified += 1


@dataclass
class RemediationResult:
    success: bool
    completed_tasks: int
    failed_tasks: int
    skipped_tasks: int
    remediated_bytes: bytes
    backup_reference: str
    verification: Optional[VerificationResult] = None
    error: Optional[str] = None
    tasks: List[RemediationTask] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        verification = None
        if self.verification is not None:
            verification = {
                "totalTasks": self.verification.total_tasks,
                "verifiedFixed": self.verification.verified_fixed,
                "stillBroken": self.verification.still_broken,
                "unverified": self.verification.unverified,
            }
        return {
            "success": self.success,
            "completedTasks": self.completed_tasks,
            "failedTasks": self.failed_tasks,
            "skippedTasks": self.skipped_tasks,
            "backupReference": self.backup_reference,
            "error": self.error,
            "verification": verification,
            "tasks": [t.to_dict() for t in self.tasks],
        }


# ============================================================================
# Structural check
# ============================================================================


def validate_pdf(
    data: bytes, expected_pages: Optional[int] = None, settings: Optional[Settings] = None
) -> List[str]:
    """
    Well-formedness check on serialized bytes. Returns a list of problems,
    empty when the file is usable.
    """
    settings = settings or get_settings()
    errors: List[str] = []

    if not data:
        return ["PDF is empty"]
    if not data.startswith(b"%PDF-"):
        errors.append("Missing %PDF- header")

    try:
        with pikepdf.open(io.BytesIO(data)) as pdf:
            page_count = len(pdf.pages)
    except pikepdf.PdfError as e:
        errors.append(f"PDF cannot be opened: {e}")
        return errors

    if page_count == 0:
        errors.append("PDF has no pages")
    if expected_pages is not None and page_count != expected_pages:
        errors.append(f"Page count changed from {expected_pages} to {page_count}")

    size_mb = len(data) / (1024 * 1024)
    if size_mb > settings.large_file_warning_mb:
        logger.warning("Remediated PDF is large: %.1f MB", size_mb)

    return errors


def create_backup(data: bytes, file_name: str, settings: Settings) -> str:
    """Keep the untouched bytes recoverable; returns a path or a content digest."""
    digest = hashlib.sha256(data).hexdigest()
    backup_dir = settings.backup_dir_path
    if backup_dir is None:
        return f"sha256:{digest}"

    backup_dir.mkdir(parents=True, exist_ok=True)
    path = backup_dir / f"{Path(file_name).stem}.{digest[:12]}.backup.pdf"
    path.write_bytes(data)
    logger.info("Backup written to %s", path)
    return str(path)


# ============================================================================
# Executor
# ============================================================================


def run_task(pdf: pikepdf.Pdf, task: RemediationTask, context: HandlerContext) -> None:
    """Apply one task's handler. Never raises; the outcome lands on the task."""
    try:
        handler = get_handler(task.issue_code)
    except HandlerMissing:
        task.transition(TaskStatus.SKIPPED)
        task.notes = "No handler available"
        logger.info("Skipping %s: no handler for %s", task.id, task.issue_code)
        return

    task.transition(TaskStatus.IN_PROGRESS)
    try:
        result = handler(pdf, task, context)
    except Exception as e:
        logger.warning("Handler for %s failed on %s: %s", task.issue_code, task.id, e)
        task.result = ModificationResult(
            success=False, description=f"Handler raised: {e}", error=str(e)
        )
        task.transition(TaskStatus.FAILED)
        return

    task.result = result
    if result.success:
        task.transition(TaskStatus.COMPLETED)
        logger.debug("%s: %s", task.id, result.description)
    else:
        task.notes = result.error or result.description
        task.transition(TaskStatus.FAILED)


def _apply_fixes(data: bytes, tasks: List[RemediationTask], context: HandlerContext):
    """Returns (new bytes, original page count)."""
    try:
        pdf = pikepdf.open(io.BytesIO(data))
    except pikepdf.PdfError as e:
        raise InvalidFormat(f"Failed to load PDF for remediation: {e}", view="pikepdf") from e

    with pdf:
        original_pages = len(pdf.pages)
        for task in tasks:
            run_task(pdf, task, context)

        buffer = io.BytesIO()
        try:
            pdf.save(buffer)
        except (pikepdf.PdfError, ValueError) as e:
            raise RemediationAborted(f"Failed to save modified PDF: {e}", [str(e)]) from e

    return buffer.getvalue(), original_pages


def bookmark_headings(semantic) -> List[tuple]:
    return [(h.level, h.text, h.page_number - 1) for h in semantic.headings.headings]


def collect_headings(data: bytes, settings: Optional[Settings] = None) -> List[tuple]:
    """(level, title, 0-based page) for every detected heading, for bookmark generation."""
    with parse(data, settings=settings) as handle:
        hierarchy = analyze_headings(handle, extract_text(handle), handle.structure.metadata.is_tagged)
    return [(h.level, h.text, h.page_number - 1) for h in hierarchy.headings]


def remediate(
    data: bytes,
    plan: RemediationPlan,
    file_name: str = "document.pdf",
    settings: Optional[Settings] = None,
    headings: Optional[List[tuple]] = None,
    verify_result: bool = True,
) -> RemediationResult:
    """
    Execute the auto-fixable tasks of a plan against a copy of ``data``.

    Task failures are recorded and the batch continues. If the saved document
    fails validate_pdf, the original bytes are returned with success=False.
    """
    settings = settings or get_settings()
    backup_reference = create_backup(data, file_name, settings)

    tasks = [
        t
        for t in plan.tasks
        if t.type is FixType.AUTO_FIXABLE and t.status is TaskStatus.PENDING
    ]
    context = HandlerContext(file_name=file_name, settings=settings)
    if headings is not None:
        context.headings = list(headings)
    elif any(t.issue_code == "PDF-NO-BOOKMARKS" for t in tasks):
        context.headings = collect_headings(data, settings)

    logger.info("Executing %d auto-fixable tasks on %s", len(tasks), file_name)

    def counts():
        return (
            sum(1 for t in tasks if t.status is TaskStatus.COMPLETED),
            sum(1 for t in tasks if t.status is TaskStatus.FAILED),
            sum(1 for t in tasks if t.status is TaskStatus.SKIPPED),
        )

    try:
        new_bytes, original_pages = _apply_fixes(data, tasks, context)
        errors = validate_pdf(new_bytes, original_pages, settings)
        if errors:
            raise RemediationAborted(
                "Modified PDF validation failed: " + "; ".join(errors), errors
            )
    except RemediationAborted as e:
        logger.error("Rolling back %s: %s", file_name, e)
        completed, failed, skipped = counts()
        return RemediationResult(
            success=False,
            completed_tasks=completed,
            failed_tasks=failed,
            skipped_tasks=skipped,
            remediated_bytes=data,
            backup_reference=backup_reference,
            error=str(e),
            tasks=tasks,
        )

    verification = verify(new_bytes, tasks, file_name, settings) if verify_result else None
    completed, failed, skipped = counts()
    logger.info(
        "Remediation of %s: %d completed, %d failed, %d skipped",
        file_name,
        completed,
        failed,
        skipped,
    )
    return RemediationResult(
        success=True,
        completed_tasks=completed,
        failed_tasks=failed,
        skipped_tasks=skipped,
        remediated_bytes=new_bytes,
        backup_reference=backup_reference,
        verification=verification,
        tasks=tasks,
    )


# ============================================================================
# Verification
# ============================================================================


def _has_xmp(handle: ParsedDocument) -> bool:
    return "/Metadata" in handle.pdf.Root


# codes no validator emits, checked directly against the new document
METADATA_PROBES: Dict[str, Callable[[ParsedDocument], bool]] = {
    "PDF-NO-CREATOR": lambda h: bool(h.structure.metadata.creator),
    "PDF-NO-LANGUAGE": lambda h: bool(h.structure.metadata.language),
    "PDF-NO-TITLE": lambda h: bool(h.structure.metadata.title),
    "PDF-NO-METADATA": _has_xmp,
    "MATTERHORN-07-001": _has_xmp,
}

# codes the validators report, so absence after re-audit means fixed
OBSERVABLE_CODES = frozenset(
    {
        "MATTERHORN-01-002",
        "MATTERHORN-01-003",
        "MATTERHORN-01-004",
        "MATTERHORN-11-001",
        "WCAG-2.4.2",
        "PDF-NO-BOOKMARKS",
    }
)


def verify(
    data: bytes,
    tasks: List[RemediationTask],
    file_name: str = "document.pdf",
    settings: Optional[Settings] = None,
) -> VerificationResult:
    """
    Re-audit the remediated bytes and classify every completed task.

    Verification only reads; it never changes a task's status.
    """
    result = VerificationResult()
    completed = [t for t in tasks if t.status is TaskStatus.COMPLETED]

    try:
        with parse(data, file_name=file_name, settings=settings) as handle:
            report = audit(handle, settings=settings)
            probes = {
                code: probe(handle) for code, probe in METADATA_PROBES.items()
            }
    except PdfAuditError as e:
        logger.warning("Verification could not re-parse %s: %s", file_name, e)
        for task in completed:
            result.record(task.id, "unverified")
        return result

    remaining = {(i.code, i.location) for i in report.issues}
    for task in completed:
        code = task.issue_code
        if code in probes:
            outcome = "verified-fixed" if probes[code] else "still-broken"
        elif (code, task.location) in remaining:
            outcome = "still-broken"
        elif code in OBSERVABLE_CODES:
            outcome = "verified-fixed"
        else:
            outcome = "unverified"
        result.record(task.id, outcome)

    logger.info(
        "Verification: %d fixed, %d still broken, %d unverified",
        result.verified_fixed,
        result.still_broken,
        result.unverified,
    )
    return result


# ============================================================================
# Quick fixes
# ============================================================================


def _find_figure(pdf: pikepdf.Pdf, figure_index: Optional[int], image: Optional[ImageDescriptor]):
    if image is not None:
        by_obj, by_mcid = collect_figures(pdf)
        info = match_figure(image.page_number, image.objgen, image.mcid, by_obj, by_mcid)
        return info.node if info is not None else None

    count = 0
    for elem, tag, _ancestors in walk_struct_tree(pdf):
        if tag not in FIGURE_TAGS:
            continue
        count += 1
        if figure_index is not None and count == figure_index:
            return elem
    return None


def apply_quick_fix(
    data: bytes,
    issue_code: str,
    fix_data: Dict[str, Any],
    settings: Optional[Settings] = None,
) -> bytes:
    """
    Write user-supplied alt text onto a Figure element.

    fix_data: {"altText": str, and "imageId": str or "figureIndex": int (1-based)}

    Raises:
        HandlerMissing: the code has no quick-fix handler.
        ValueError: no structure tree, no alt text, or no matching figure.
    """
    if issue_code not in ALT_TEXT_QUICK_FIX_CODES:
        raise HandlerMissing(issue_code)

    alt_text = (fix_data.get("altText") or "").strip()
    if not alt_text:
        raise ValueError("altText is required")

    image = None
    image_id = fix_data.get("imageId")
    if image_id:
        with parse(data, settings=settings) as handle:
            image = get_image_by_id(handle, image_id, settings=settings)
        if image is None:
            raise ValueError(f"Image {image_id} not found")

    with pikepdf.open(io.BytesIO(data)) as pdf:
        if "/StructTreeRoot" not in pdf.Root:
            raise ValueError("PDF has no structure tree - tag the document first")

        figure = _find_figure(pdf, fix_data.get("figureIndex"), image)
        if figure is None:
            raise ValueError("No Figure element matches the requested image")

        figure["/Alt"] = pikepdf.String(alt_text)
        buffer = io.BytesIO()
        pdf.save(buffer)

    logger.info("Applied alt text quick fix for %s", issue_code)
    return buffer.getvalue()


def remediate_document(
    source, file_name: Optional[str] = None, settings: Optional[Settings] = None
):
    """Parse, audit, plan and remediate in one call. Returns (report, plan, result)."""
    settings = settings or get_settings()
    with parse(source, file_name=file_name, settings=settings) as handle:
        report = audit(handle, settings=settings)
        data = handle.data
        name = handle.file_name

    plan = build_plan(report.issues)
    headings = bookmark_headings(report.semantic) if report.semantic is not None else None
    result = remediate(data, plan, file_name=name, settings=settings, headings=headings)
    return report, plan, result
