"""
Accessibility validators.

Three validators (document structure, image alt text, table structure) map
detected conditions to issues through fixed rule tables. The tables are the
record of compliance behavior: codes, severities, criteria and suggestions
live here as data, and the validator functions only evaluate predicates and
fill in message templates.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

from .analyzer import LinkInfo, SemanticStructure, TableInfo, analyze_structure
from .config import Settings, get_settings
from .image_extractor import (
    DocumentImages,
    ImageDescriptor,
    ImageExtractionOptions,
    extract_images,
)
from .loader import ParsedDocument
from .models import Issue, IssueFactory, Severity, SeverityTally, ValidationResult

logger = logging.getLogger(__name__)

STRUCTURE_SOURCE = "pdf-structure"
ALT_TEXT_SOURCE = "pdf-alttext"
TABLE_SOURCE = "pdf-table"

MIN_ALT_TEXT_LENGTH = 3
MAX_ALT_TEXT_LENGTH = 150
RECOMMENDED_MAX_LENGTH = 125
BOOKMARK_PAGE_THRESHOLD = 10

SCORE_WEIGHTS = {
    Severity.CRITICAL: 15,
    Severity.SERIOUS: 8,
    Severity.MODERATE: 4,
    Severity.MINOR: 1,
}


# ============================================================================
# Rule records
# ============================================================================


@dataclass(frozen=True)
class Rule:
    """Condition-independent half of a rule: what gets reported."""

    code: str
    severity: Severity
    criteria: Tuple[str, ...]
    category: str
    suggestion: str
    message: str = ""


@dataclass(frozen=True)
class DocumentRule:
    """A document-level rule: fires once when its predicate holds."""

    rule: Rule
    when: Callable[["StructureFacts"], bool]
    location: str = "Document"


@dataclass(frozen=True)
class TableRule:
    rule: Rule
    when: Callable[[TableInfo, bool], bool]


@dataclass
class StructureFacts:
    """Everything the document-level predicates look at."""

    handle: ParsedDocument
    semantic: SemanticStructure

    @property
    def metadata(self):
        return self.handle.structure.metadata

    @property
    def untagged_lists(self) -> int:
        return len(self.semantic.lists) if not self.metadata.is_tagged else 0


def _issue(factory: IssueFactory, rule: Rule, message: str, location: Optional[str], **extra) -> Issue:
    return factory.create(
        severity=rule.severity,
        code=rule.code,
        message=message,
        wcag_criteria=rule.criteria,
        location=location,
        suggestion=extra.pop("suggestion", None) or rule.suggestion,
        category=rule.category,
        **extra,
    )


def finish(issues: List[Issue], metadata: Dict[str, Any]) -> ValidationResult:
    return ValidationResult(
        issues=issues, summary=SeverityTally.from_issues(issues), metadata=metadata
    )


# ============================================================================
# Structure rule table
# ============================================================================


STRUCTURE_DOCUMENT_RULES: List[DocumentRule] = [
    DocumentRule(
        Rule(
            "MATTERHORN-01-003",
            Severity.CRITICAL,
            ("1.3.1",),
            "structure",
            "Add structural tags to the PDF document. Tagged PDFs are essential for "
            "accessibility as they provide semantic structure for assistive technologies.",
            "PDF is not tagged",
        ),
        when=lambda f: not f.metadata.is_tagged,
    ),
    DocumentRule(
        Rule(
            "MATTERHORN-01-004",
            Severity.SERIOUS,
            ("1.3.1",),
            "structure",
            "Review and fix the tag structure. The Suspects flag indicates potential tagging problems.",
            "Document has suspect tag structure",
        ),
        when=lambda f: f.metadata.is_tagged and f.metadata.is_suspect,
    ),
    DocumentRule(
        Rule(
            "MATTERHORN-09-004",
            Severity.SERIOUS,
            ("1.3.2",),
            "reading-order",
            "Ensure the document has a logical reading order. Use tagged PDF structure to "
            "define the correct reading sequence.",
            "Document reading order may not be logical",
        ),
        when=lambda f: not f.semantic.reading_order.is_logical,
    ),
    DocumentRule(
        Rule(
            "MATTERHORN-11-001",
            Severity.SERIOUS,
            ("3.1.1",),
            "language",
            'Set the document language in the PDF metadata (e.g., "en" for English, '
            '"es" for Spanish).',
            "Document language is not specified",
        ),
        when=lambda f: not f.metadata.language,
        location="Document metadata",
    ),
    DocumentRule(
        Rule(
            "WCAG-2.4.2",
            Severity.MINOR,
            ("2.4.2",),
            "metadata",
            "Add a descriptive title to the PDF document metadata.",
            "Document title is not present in metadata",
        ),
        when=lambda f: not f.metadata.title,
        location="Document metadata",
    ),
    DocumentRule(
        Rule(
            "MATTERHORN-01-002",
            Severity.MINOR,
            ("2.4.2",),
            "metadata",
            "Set DisplayDocTitle in the viewer preferences so viewers show the document "
            "title instead of the file name.",
            "Document title is not displayed in the viewer title bar",
        ),
        when=lambda f: bool(f.metadata.title) and not f.metadata.display_doc_title,
        location="Document metadata",
    ),
    DocumentRule(
        Rule(
            "PDF-NO-BOOKMARKS",
            Severity.MINOR,
            ("2.4.5",),
            "navigation",
            "Add bookmarks that mirror the heading structure so readers can navigate "
            "long documents.",
            "Document with {page_count} pages has no bookmarks",
        ),
        when=lambda f: f.handle.structure.page_count > BOOKMARK_PAGE_THRESHOLD
        and not f.metadata.has_outline,
    ),
    DocumentRule(
        Rule(
            "LIST-NOT-TAGGED",
            Severity.MODERATE,
            ("1.3.1",),
            "lists",
            "Tag the PDF and mark lists with proper structure tags (L, LI, Lbl, LBody).",
            "Found {untagged_lists} list(s) in untagged PDF",
        ),
        when=lambda f: f.untagged_lists > 0,
    ),
    DocumentRule(
        Rule(
            "LANGUAGE-CHANGES-UNMARKED",
            Severity.MINOR,
            ("3.1.2",),
            "language",
            "Tag the document and mark passages in other languages with the Lang attribute.",
            "Multiple languages detected but language changes are not marked",
        ),
        when=lambda f: len(f.semantic.language.detected_languages) > 1
        and not f.metadata.is_tagged,
    ),
]

HEADING_CRITERIA = ("1.3.1", "2.4.6")

# heading issue type -> rule
HEADING_RULES: Dict[str, Rule] = {
    "missing-h1": Rule(
        "MATTERHORN-06-001",
        Severity.SERIOUS,
        HEADING_CRITERIA,
        "headings",
        "Add a main H1 heading at the start of the document to establish the document hierarchy.",
    ),
    "skipped-level": Rule(
        "HEADING-SKIP",
        Severity.SERIOUS,
        HEADING_CRITERIA,
        "headings",
        "Fix heading hierarchy by not skipping levels (e.g., H1 → H2 → H3, not H1 → H3).",
    ),
    "multiple-h1": Rule(
        "HEADING-MULTIPLE-H1",
        Severity.MODERATE,
        HEADING_CRITERIA,
        "headings",
        "Consider using only one H1 heading for the main document title. Use H2-H6 for subsections.",
    ),
    "improper-nesting": Rule(
        "HEADING-NESTING",
        Severity.SERIOUS,
        HEADING_CRITERIA,
        "headings",
        "Ensure headings are properly nested according to their hierarchy level.",
    ),
}
HEADING_DEFAULT_RULE = Rule(
    "HEADING-ISSUE",
    Severity.MODERATE,
    HEADING_CRITERIA,
    "headings",
    "Review and fix heading structure to ensure proper hierarchy.",
)

READING_ORDER_RULES: Dict[str, Rule] = {
    "column-confusion": Rule(
        "READING-ORDER-COLUMNS",
        Severity.MODERATE,
        ("1.3.2",),
        "reading-order",
        "Tag multi-column layouts properly to ensure correct reading order across columns.",
    ),
    "visual-order": Rule(
        "READING-ORDER-VISUAL",
        Severity.MODERATE,
        ("1.3.2",),
        "reading-order",
        "Ensure reading order matches visual layout. Adjust tag order if needed.",
    ),
    "table-reading": Rule(
        "READING-ORDER-TABLE",
        Severity.MODERATE,
        ("1.3.2",),
        "reading-order",
        "Ensure table content is read in logical order (rows, then columns).",
    ),
}
READING_ORDER_DEFAULT_RULE = Rule(
    "READING-ORDER-ISSUE",
    Severity.MODERATE,
    ("1.3.2",),
    "reading-order",
    "Review and fix reading order to ensure logical content flow.",
)

LIST_MARKUP_RULE = Rule(
    "LIST-IMPROPER-MARKUP",
    Severity.MODERATE,
    ("1.3.1",),
    "lists",
    "Ensure list is marked with proper tags: L (list), LI (list item), Lbl (label), LBody (body).",
)
STRUCTURE_TABLE_ISSUE_RULE = Rule(
    "TABLE-ACCESSIBILITY",
    Severity.SERIOUS,
    ("1.3.1",),
    "tables",
    "Ensure table has proper structure with Table, TR, TH, and TD tags. Add headers to "
    "identify row/column relationships.",
)
STRUCTURE_TABLE_INACCESSIBLE_RULE = Rule(
    "TABLE-INACCESSIBLE",
    Severity.SERIOUS,
    ("1.3.1",),
    "tables",
    "Add TH (header) tags to identify row and column headers. For complex tables, add a "
    "summary describing the table structure.",
)
FORM_FIELD_LABEL_RULE = Rule(
    "MATTERHORN-19-006",
    Severity.MODERATE,
    ("1.3.1", "4.1.2"),
    "forms",
    "Add a tooltip (TU entry) to the form field that describes its purpose.",
)
EMPTY_LINK_RULE = Rule(
    "MATTERHORN-17-001",
    Severity.SERIOUS,
    ("2.4.4",),
    "links",
    "Give the link visible text, or a Contents description, that identifies its destination.",
)
VAGUE_LINK_RULE = Rule(
    "LINK-NOT-DESCRIPTIVE",
    Severity.MODERATE,
    ("2.4.4",),
    "links",
    'Use link text that describes the destination instead of phrases like "click here".',
)


# ============================================================================
# Structure validator
# ============================================================================


def validate_structure(
    handle: ParsedDocument, semantic: Optional[SemanticStructure] = None
) -> ValidationResult:
    """Document-level, heading, reading-order, list, table, form and link checks."""
    semantic = semantic or analyze_structure(handle)
    factory = IssueFactory(STRUCTURE_SOURCE)
    facts = StructureFacts(handle=handle, semantic=semantic)
    template_values = {
        "page_count": handle.structure.page_count,
        "untagged_lists": facts.untagged_lists,
    }
    issues: List[Issue] = []

    for doc_rule in STRUCTURE_DOCUMENT_RULES:
        if doc_rule.when(facts):
            issues.append(
                _issue(
                    factory,
                    doc_rule.rule,
                    doc_rule.rule.message.format(**template_values),
                    doc_rule.location,
                )
            )

    for heading_issue in semantic.headings.issues:
        rule = HEADING_RULES.get(heading_issue.type, HEADING_DEFAULT_RULE)
        issues.append(_issue(factory, rule, heading_issue.description, heading_issue.location))

    for order_issue in semantic.reading_order.issues:
        rule = READING_ORDER_RULES.get(order_issue.type, READING_ORDER_DEFAULT_RULE)
        location = order_issue.location or f"Page {order_issue.page_number}"
        issues.append(_issue(factory, rule, order_issue.description, location))

    if handle.structure.metadata.is_tagged:
        for lst in semantic.lists:
            if not lst.is_properly_tagged:
                issues.append(
                    _issue(
                        factory,
                        LIST_MARKUP_RULE,
                        f"List on page {lst.page_number} is not properly tagged",
                        f"Page {lst.page_number}",
                    )
                )

    issues.extend(_structure_table_issues(factory, semantic.tables))

    for form_field in semantic.form_fields:
        if not form_field.has_label:
            issues.append(
                _issue(
                    factory,
                    FORM_FIELD_LABEL_RULE,
                    f'Form field "{form_field.name}" has no accessible label',
                    f"Form field {form_field.name}",
                    element=form_field.name,
                )
            )

    for link in semantic.links:
        issue = _link_issue(factory, link)
        if issue is not None:
            issues.append(issue)

    metadata = {
        "isTagged": handle.structure.metadata.is_tagged,
        "hasLanguage": semantic.language.has_document_language,
        "hasTitle": bool(handle.structure.metadata.title),
        "headingCount": len(semantic.headings.headings),
        "tableCount": len(semantic.tables),
        "listCount": len(semantic.lists),
        "linkCount": len(semantic.links),
        "formFieldCount": len(semantic.form_fields),
        "readingOrderConfidence": semantic.reading_order.confidence,
    }
    logger.info("Structure validation complete - %d issues found", len(issues))
    return finish(issues, metadata)


def _structure_table_issues(factory: IssueFactory, tables: List[TableInfo]) -> List[Issue]:
    issues = []
    for table in tables:
        location = f"Page {table.page_number}, Table {table.id}"
        for table_issue in table.issues:
            issues.append(_issue(factory, STRUCTURE_TABLE_ISSUE_RULE, table_issue, location))

        if not table.is_accessible:
            specific = []
            if not table.has_headers:
                specific.append("missing header cells")
            if table.row_count > 5 and not table.has_summary:
                specific.append("complex table without summary")
            if not specific:
                specific.append("accessibility issues")
            issues.append(
                _issue(
                    factory,
                    STRUCTURE_TABLE_INACCESSIBLE_RULE,
                    f"Table on page {table.page_number} has {' and '.join(specific)}",
                    location,
                )
            )
    return issues


def _link_issue(factory: IssueFactory, link: LinkInfo) -> Optional[Issue]:
    location = f"Page {link.page_number}"
    if not link.text:
        return _issue(
            factory,
            EMPTY_LINK_RULE,
            f"Link on page {link.page_number} has no text",
            location,
            element=link.id,
        )
    if not link.has_descriptive_text:
        return _issue(
            factory,
            VAGUE_LINK_RULE,
            f'Link text is not descriptive: "{link.text}"',
            location,
            element=link.id,
            context=link.url,
        )
    return None


# ============================================================================
# Alt-text validator
# ============================================================================


@dataclass
class JudgeVerdict:
    matches_content: bool
    suggested_alt_text: Optional[str] = None


class AltTextJudge(Protocol):
    """
    Optional content-understanding collaborator.

    Either method may return None or raise; the validator then falls back to
    vocabulary and length checks only.
    """

    def assess(self, image: ImageDescriptor) -> Optional[JudgeVerdict]:
        ...

    def suggest(self, image: ImageDescriptor) -> Optional[str]:
        ...


@dataclass
class AltTextAssessment:
    has_generic_text: bool
    has_redundant_prefix: bool
    issues: List[str] = field(default_factory=list)
    matches_content: Optional[bool] = None
    suggested_alt_text: Optional[str] = None


MISSING_ALT_RULE = Rule(
    "MATTERHORN-13-002",
    Severity.CRITICAL,
    ("1.1.1",),
    "alt-text",
    "Add descriptive alternative text to the image. Alt text should convey the same "
    "information as the image.",
)
GENERIC_ALT_RULE = Rule(
    "MATTERHORN-13-003",
    Severity.SERIOUS,
    ("1.1.1",),
    "alt-text",
    "Replace generic alt text with a meaningful description of the image content.",
)
QUALITY_ALT_RULE = Rule(
    "ALT-TEXT-QUALITY",
    Severity.MODERATE,
    ("1.1.1",),
    "alt-text",
    "Review and improve the alt text to better describe the image content.",
)
PREFIX_ALT_RULE = Rule(
    "ALT-TEXT-REDUNDANT-PREFIX",
    Severity.MINOR,
    ("1.1.1",),
    "alt-text",
    'Remove the redundant prefix. Alt text: "{alt}"',
)

# quality finding -> improvement hint
QUALITY_HINTS = {
    "too short": "Make the alt text more descriptive",
    "too long (over 150 characters)": "Shorten the alt text to under 150 characters",
    "longer than recommended (over 125 characters)": "Consider shortening the alt text to under 125 characters",
    "does not accurately describe image content": "Ensure the alt text accurately describes what is shown in the image",
}


def _ask_judge(judge: Optional[AltTextJudge], method: str, image: ImageDescriptor):
    if judge is None:
        return None
    try:
        return getattr(judge, method)(image)
    except Exception as e:
        logger.warning("Alt-text judge failed for image %s: %s", image.id, e)
        return None


def assess_alt_text(
    image: ImageDescriptor,
    settings: Optional[Settings] = None,
    judge: Optional[AltTextJudge] = None,
) -> AltTextAssessment:
    settings = settings or get_settings()
    alt = image.alt_text or ""
    lowered = alt.lower().strip()

    generic = any(lowered in (g, f"{g}.") for g in settings.generic_alt_text)
    prefixed = any(lowered.startswith(p) for p in settings.redundant_prefixes)
    assessment = AltTextAssessment(has_generic_text=generic, has_redundant_prefix=prefixed)

    if len(alt) < MIN_ALT_TEXT_LENGTH:
        assessment.issues.append("too short")
    elif len(alt) > MAX_ALT_TEXT_LENGTH:
        assessment.issues.append("too long (over 150 characters)")
    elif len(alt) > RECOMMENDED_MAX_LENGTH:
        assessment.issues.append("longer than recommended (over 125 characters)")

    if not generic:
        verdict = _ask_judge(judge, "assess", image)
        if verdict is not None:
            assessment.matches_content = verdict.matches_content
            if not verdict.matches_content or assessment.issues:
                assessment.suggested_alt_text = verdict.suggested_alt_text
            if not verdict.matches_content:
                assessment.issues.append("does not accurately describe image content")

    return assessment


def quality_suggestion(assessment: AltTextAssessment) -> str:
    hints = [QUALITY_HINTS[i] for i in assessment.issues if i in QUALITY_HINTS]
    if not hints:
        return QUALITY_ALT_RULE.suggestion
    return ". ".join(hints) + "."


def validate_image(
    factory: IssueFactory,
    image: ImageDescriptor,
    settings: Settings,
    judge: Optional[AltTextJudge] = None,
) -> List[Issue]:
    if image.is_decorative:
        return []

    location = f"Page {image.page_number}, Image {image.index + 1}"

    if not image.alt_text:
        suggestion = _ask_judge(judge, "suggest", image) if image.base64 else None
        return [
            _issue(
                factory,
                MISSING_ALT_RULE,
                f"Image on page {image.page_number} has no alternative text",
                location,
                suggestion=suggestion,
                element=image.id,
            )
        ]

    assessment = assess_alt_text(image, settings, judge)
    context = f'Current alt text: "{image.alt_text}"'
    issues = []

    if assessment.has_generic_text:
        issues.append(
            _issue(
                factory,
                GENERIC_ALT_RULE,
                f'Image on page {image.page_number} has generic alt text: "{image.alt_text}"',
                location,
                suggestion=assessment.suggested_alt_text,
                element=image.id,
                context=context,
            )
        )
    elif assessment.issues:
        issues.append(
            _issue(
                factory,
                QUALITY_ALT_RULE,
                f"Image on page {image.page_number} has alt text quality issues: "
                f"{'; '.join(assessment.issues)}",
                location,
                suggestion=assessment.suggested_alt_text or quality_suggestion(assessment),
                element=image.id,
                context=context,
            )
        )
    elif assessment.has_redundant_prefix:
        issues.append(
            _issue(
                factory,
                PREFIX_ALT_RULE,
                f"Image on page {image.page_number} has redundant prefix in alt text",
                location,
                suggestion=PREFIX_ALT_RULE.suggestion.format(alt=image.alt_text),
                element=image.id,
                context=context,
            )
        )
    return issues


def validate_alt_text(
    handle: ParsedDocument,
    images: Optional[DocumentImages] = None,
    judge: Optional[AltTextJudge] = None,
    settings: Optional[Settings] = None,
) -> ValidationResult:
    """Check every non-decorative image for missing, generic or weak alt text."""
    settings = settings or get_settings()
    if images is None:
        images = extract_images(
            handle,
            ImageExtractionOptions(include_base64=judge is not None),
            settings,
        )

    factory = IssueFactory(ALT_TEXT_SOURCE)
    issues: List[Issue] = []
    for image in images.images:
        issues.extend(validate_image(factory, image, settings, judge))

    metadata = {
        "totalImages": images.total_images,
        "imagesWithAltText": images.images_with_alt_text,
        "imagesWithoutAltText": images.images_without_alt_text,
        "decorativeImages": images.decorative_images,
        "imagesWithQualityIssues": sum(
            1 for i in issues if i.code in (GENERIC_ALT_RULE.code, QUALITY_ALT_RULE.code)
        ),
    }
    logger.info("Alt-text validation complete - %d issues found", len(issues))
    return finish(issues, metadata)


# ============================================================================
# Table validator
# ============================================================================


def _big(table: TableInfo) -> bool:
    return table.row_count >= 5 and table.column_count >= 5


DATA_TABLE_RULES: List[TableRule] = [
    TableRule(
        Rule(
            "MATTERHORN-15-001",
            Severity.CRITICAL,
            ("1.3.1",),
            "table-structure",
            "Tag the table with proper structure: Table element containing TR (rows) and "
            "TH/TD (cells).",
            "Table on page {page} is not properly tagged ({dims})",
        ),
        when=lambda t, tagged: tagged and any("not tagged" in i for i in t.issues),
    ),
    TableRule(
        Rule(
            "MATTERHORN-15-002",
            Severity.SERIOUS,
            ("1.3.1",),
            "table-headers",
            "Add header row using TH (table header) tags in the first row, or use header "
            "column with TH tags in the first column.",
            "Data table on page {page} has no headers ({dims})",
        ),
        when=lambda t, tagged: not t.has_headers,
    ),
    TableRule(
        Rule(
            "TABLE-HEADERS-INCOMPLETE",
            Severity.MODERATE,
            ("1.3.1",),
            "table-headers",
            "Consider adding header column for complex tables to improve navigation. Tables "
            "with both row and column headers are easier to understand.",
            "Complex table on page {page} only has header row ({dims})",
        ),
        when=lambda t, tagged: _big(t) and t.has_header_row and not t.has_header_column,
    ),
    TableRule(
        Rule(
            "TABLE-HEADERS-INCOMPLETE",
            Severity.MODERATE,
            ("1.3.1",),
            "table-headers",
            "Consider adding header row for complex tables to improve navigation. Tables "
            "with both row and column headers are easier to understand.",
            "Complex table on page {page} only has header column ({dims})",
        ),
        when=lambda t, tagged: _big(t) and t.has_header_column and not t.has_header_row,
    ),
    TableRule(
        Rule(
            "MATTERHORN-15-004",
            Severity.MODERATE,
            ("1.3.1",),
            "table-headers",
            'Ensure TH (header) elements have scope attribute set to "row" or "col" to '
            "indicate what cells they apply to.",
            "Table on page {page} headers may need scope attribute ({dims})",
        ),
        when=lambda t, tagged: tagged
        and t.has_headers
        and (t.row_count > 3 or t.column_count > 3),
    ),
    TableRule(
        Rule(
            "MATTERHORN-15-003",
            Severity.SERIOUS,
            ("1.3.1", "1.3.2"),
            "table-structure",
            "Ensure table has consistent structure with proper nesting: Table > TR > TH/TD. "
            "Fix any irregular cells or missing row/column tags.",
            "Table on page {page} has irregular structure ({dims})",
        ),
        when=lambda t, tagged: any("irregular" in i for i in t.issues),
    ),
    TableRule(
        Rule(
            "TABLE-MISSING-SUMMARY",
            Severity.MINOR,
            ("1.3.1",),
            "table-summary",
            "Add a summary or caption describing the table's purpose and structure. This "
            "helps screen reader users understand the table before navigating it.",
            "Complex table on page {page} lacks summary or caption ({dims})",
        ),
        when=lambda t, tagged: not t.has_summary
        and not t.caption
        and (t.row_count >= 5 or t.column_count >= 5),
    ),
]

LAYOUT_TABLE_RULE = Rule(
    "MATTERHORN-15-005",
    Severity.MODERATE,
    ("1.3.1", "1.3.2"),
    "layout-table",
    'Mark layout table as artifact or use role="presentation" to indicate it\'s used for '
    "visual layout, not data. Detected as layout table because: {reasons}.",
    "Layout table on page {page} should be marked as artifact ({dims})",
)
LEFTOVER_TABLE_RULE = Rule(
    "TABLE-ACCESSIBILITY",
    Severity.MODERATE,
    ("1.3.1",),
    "table-structure",
    "Review and fix the table accessibility issue identified.",
    "Table on page {page}: {issue} ({dims})",
)
# analyzer findings already covered by a dedicated data-table rule
COVERED_TABLE_FINDINGS = ("no header", "not tagged", "irregular")


def validate_table(factory: IssueFactory, table: TableInfo, is_tagged: bool) -> List[Issue]:
    values = {"page": table.page_number, "dims": table.dimensions}
    location = f"Page {table.page_number}, Table {table.id}"
    context = f"Table dimensions: {table.dimensions}"
    layout = table.layout

    if layout.is_layout:
        if not is_tagged:
            return []
        rule = LAYOUT_TABLE_RULE
        return [
            _issue(
                factory,
                rule,
                rule.message.format(**values),
                location,
                suggestion=rule.suggestion.format(reasons=", ".join(layout.reasons)),
                element=table.id,
                context=f"{context}, Detection confidence: {round(layout.confidence * 100)}%",
            )
        ]

    issues = []
    for table_rule in DATA_TABLE_RULES:
        if table_rule.when(table, is_tagged):
            rule = table_rule.rule
            issues.append(
                _issue(
                    factory,
                    rule,
                    rule.message.format(**values),
                    location,
                    element=table.id,
                    context=context,
                )
            )

    for finding in table.issues:
        if any(covered in finding for covered in COVERED_TABLE_FINDINGS):
            continue
        issues.append(
            _issue(
                factory,
                LEFTOVER_TABLE_RULE,
                LEFTOVER_TABLE_RULE.message.format(issue=finding, **values),
                location,
                element=table.id,
                context=context,
            )
        )
    return issues


def validate_tables(
    handle: ParsedDocument, semantic: Optional[SemanticStructure] = None
) -> ValidationResult:
    """Classify each table as layout or data and apply the matching rules."""
    semantic = semantic or analyze_structure(handle)
    is_tagged = handle.structure.metadata.is_tagged
    factory = IssueFactory(TABLE_SOURCE)
    issues: List[Issue] = []
    layout_count = 0

    for table in semantic.tables:
        if table.layout.is_layout:
            layout_count += 1
        issues.extend(validate_table(factory, table, is_tagged))

    tables = semantic.tables
    metadata = {
        "totalTables": len(tables),
        "tablesWithHeaders": sum(1 for t in tables if t.has_headers),
        "tablesWithoutHeaders": sum(1 for t in tables if not t.has_headers),
        "tablesWithSummary": sum(1 for t in tables if t.has_summary),
        "layoutTables": layout_count,
        "dataTables": len(tables) - layout_count,
    }
    logger.info("Table validation complete - %d issues found", len(issues))
    return finish(issues, metadata)


# ============================================================================
# Full audit
# ============================================================================


@dataclass
class AuditReport:
    file_name: str
    issues: List[Issue]
    summary: SeverityTally
    score: int
    results: Dict[str, ValidationResult] = field(default_factory=dict)
    validator_errors: Dict[str, str] = field(default_factory=dict)
    semantic: Optional[SemanticStructure] = None

    @property
    def passed(self) -> bool:
        return self.summary.critical == 0 and self.summary.serious == 0

    def issues_by_code(self, code: str) -> List[Issue]:
        return [i for i in self.issues if i.code == code]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fileName": self.file_name,
            "score": self.score,
            "summary": asdict(self.summary),
            "issues": [i.to_dict() for i in self.issues],
            "validators": {name: r.metadata for name, r in self.results.items()},
            "validatorErrors": dict(self.validator_errors),
        }


def deduplicate(issues: List[Issue]) -> List[Issue]:
    seen = set()
    unique = []
    for issue in issues:
        key = issue.dedup_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(issue)
    return unique


def calculate_score(summary: SeverityTally) -> int:
    penalty = sum(
        getattr(summary, severity.value) * weight for severity, weight in SCORE_WEIGHTS.items()
    )
    return max(0, 100 - penalty)


def audit(
    handle: ParsedDocument,
    judge: Optional[AltTextJudge] = None,
    settings: Optional[Settings] = None,
) -> AuditReport:
    """
    Run all three validators over one document.

    A validator that raises is recorded in ``validator_errors`` and the
    others still run. Issues are de-duplicated across validators.
    """
    settings = settings or get_settings()
    errors: Dict[str, str] = {}
    semantic: Optional[SemanticStructure] = None

    try:
        semantic = analyze_structure(handle)
    except Exception as e:
        logger.exception("Structure analysis failed")
        errors["analyzer"] = str(e)

    runners: List[Tuple[str, Callable[[], ValidationResult]]] = [
        (STRUCTURE_SOURCE, lambda: validate_structure(handle, semantic)),
        (ALT_TEXT_SOURCE, lambda: validate_alt_text(handle, judge=judge, settings=settings)),
        (TABLE_SOURCE, lambda: validate_tables(handle, semantic)),
    ]

    results: Dict[str, ValidationResult] = {}
    collected: List[Issue] = []
    for name, run in runners:
        if semantic is None and name != ALT_TEXT_SOURCE:
            continue
        try:
            result = run()
        except Exception as e:
            logger.exception("Validator %s failed", name)
            errors[name] = str(e)
            continue
        results[name] = result
        collected.extend(result.issues)

    issues = deduplicate(collected)
    summary = SeverityTally.from_issues(issues)
    report = AuditReport(
        file_name=handle.file_name,
        issues=issues,
        summary=summary,
        score=calculate_score(summary),
        results=results,
        validator_errors=errors,
        semantic=semantic,
    )
    logger.info(
        "Audit of %s: %d issues (%d critical, %d serious), score %d",
        handle.file_name,
        summary.total,
        summary.critical,
        summary.serious,
        report.score,
    )
    return report
