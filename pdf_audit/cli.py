"""
PDF Accessibility Audit

Audit a PDF against WCAG 2.1 / PDF/UA checks and optionally apply the
deterministic fixes.

Usage:
  pdf-audit document.pdf              # Print grouped report
  pdf-audit --json document.pdf       # Report as JSON
  pdf-audit --fix document.pdf        # Remediate, writes document_remediated.pdf
"""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from .config import get_settings
from .errors import PdfAuditError
from .loader import parse
from .remediation import RemediationResult, bookmark_headings, build_plan, remediate
from .validators import AuditReport, audit

logger = logging.getLogger(__name__)

# ============================================================================
# Constants
# ============================================================================

CATEGORY_TITLES = {
    "structure": "Document Structure",
    "metadata": "Metadata",
    "language": "Language",
    "navigation": "Navigation",
    "reading-order": "Reading Order",
    "headings": "Headings",
    "lists": "Lists",
    "tables": "Tables",
    "table-structure": "Tables",
    "table-headers": "Tables",
    "table-summary": "Tables",
    "layout-table": "Tables",
    "links": "Links",
    "forms": "Forms",
    "alt-text": "Images & Alt Text",
}
CATEGORIES = [
    "Document Structure",
    "Metadata",
    "Language",
    "Navigation",
    "Reading Order",
    "Headings",
    "Lists",
    "Tables",
    "Links",
    "Forms",
    "Images & Alt Text",
    "Other",
]

SYMBOLS = {"critical": "✗", "serious": "✗", "moderate": "⚠", "minor": "⚠"}
LABELS = {"critical": "[CRITICAL]", "serious": "[SERIOUS]", "moderate": "[MODERATE]", "minor": "[MINOR]"}


# ============================================================================
# Report formatting
# ============================================================================


def format_audit_report(
    report: AuditReport, page_count: int, use_symbols: bool = False
) -> str:
    """
    Format an audit as a grouped text report.

    Args:
        report: Result of audit()
        page_count: Pages in the audited document
        use_symbols: If True, use Unicode symbols (✗/⚠). If False, use [SEVERITY] labels.
    """
    prefixes = SYMBOLS if use_symbols else LABELS

    lines = [
        f"Document: {report.file_name}",
        f"Pages: {page_count}",
        f"Score: {report.score}/100",
        "",
    ]

    by_category: Dict[str, List] = {}
    for issue in report.issues:
        title = CATEGORY_TITLES.get(issue.category or "", "Other")
        by_category.setdefault(title, []).append(issue)

    for category in CATEGORIES:
        if category not in by_category:
            continue
        lines.append(f"{category}:")
        for issue in by_category[category]:
            where = f" ({issue.location})" if issue.location else ""
            lines.append(f"  {prefixes[issue.severity.value]} {issue.code}: {issue.message}{where}")
            if issue.suggestion:
                lines.append(f"      {issue.suggestion}")
        lines.append("")

    for name, error in report.validator_errors.items():
        lines.append(f"Validator {name} failed: {error}")
    if report.validator_errors:
        lines.append("")

    summary = report.summary
    lines.append("=" * 50)
    lines.append("Summary:")
    lines.append(f"  Critical: {summary.critical}")
    lines.append(f"  Serious:  {summary.serious}")
    lines.append(f"  Moderate: {summary.moderate}")
    lines.append(f"  Minor:    {summary.minor}")
    lines.append("")

    if summary.total == 0:
        lines.append("No accessibility issues found.")
    elif report.passed:
        lines.append("No blocking issues, but some checks produced warnings.")
    else:
        lines.append("This PDF has blocking accessibility issues.")

    return "\n".join(lines)


def format_remediation(result: RemediationResult, output: Optional[Path]) -> str:
    lines = ["", "Remediation:"]
    if not result.success:
        lines.append(f"  Rolled back: {result.error}")
        lines.append(f"  Backup: {result.backup_reference}")
        return "\n".join(lines)

    lines.append(f"  Completed: {result.completed_tasks}")
    lines.append(f"  Failed:    {result.failed_tasks}")
    lines.append(f"  Skipped:   {result.skipped_tasks}")
    if result.verification is not None:
        v = result.verification
        lines.append(
            f"  Verified fixed: {v.verified_fixed}, still broken: {v.still_broken}, "
            f"unverified: {v.unverified}"
        )
    if output is not None:
        lines.append(f"  Written: {output}")
    return "\n".join(lines)


# ============================================================================
# Commands
# ============================================================================


def run_audit(input_file: Path, as_json: bool = False, fix: bool = False) -> int:
    settings = get_settings()

    with parse(input_file, settings=settings) as handle:
        report = audit(handle, settings=settings)
        page_count = handle.page_count
        data = handle.data

    result = None
    output = None
    if fix:
        plan = build_plan(report.issues)
        headings = bookmark_headings(report.semantic) if report.semantic is not None else None
        result = remediate(
            data, plan, file_name=input_file.name, settings=settings, headings=headings
        )
        if result.success:
            output = input_file.with_name(f"{input_file.stem}_remediated.pdf")
            output.write_bytes(result.remediated_bytes)

    if as_json:
        payload = report.to_dict()
        payload["pages"] = page_count
        if result is not None:
            payload["remediation"] = result.to_dict()
            payload["remediation"]["output"] = str(output) if output else None
        print(json.dumps(payload, indent=2, default=str))
    else:
        print(format_audit_report(report, page_count, use_symbols=True))
        if result is not None:
            print(format_remediation(result, output))

    return 0 if report.passed else 1


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    args = sys.argv[1:] if argv is None else argv
    as_json = False
    fix = False
    input_path = None

    for arg in args:
        if arg in ("--json", "-j"):
            as_json = True
        elif arg in ("--fix", "-f"):
            fix = True
        elif arg in ("--help", "-h"):
            print(__doc__)
            return 0
        elif not arg.startswith("-"):
            input_path = arg

    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if not input_path:
        print("Error: no PDF file given")
        print(__doc__)
        return 1

    input_file = Path(input_path)
    if not input_file.exists():
        print(f"Error: File not found: {input_path}")
        return 1
    if input_file.suffix.lower() != ".pdf":
        print(f"Error: Unsupported file type: {input_file.suffix}")
        return 1

    try:
        return run_audit(input_file, as_json=as_json, fix=fix)
    except PdfAuditError as e:
        print(f"\nError: {e}\n")
        return 1
    except Exception as e:
        logger.exception("Unexpected failure")
        print(f"\nError: {e}\n")
        return 1


if __name__ == "__main__":
    sys.exit(main())
