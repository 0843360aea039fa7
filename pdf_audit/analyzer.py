"""
Structural and semantic analyzer.

Combines the text model with the tagged structure tree into one read-only
view of headings, tables, lists, links, reading order, language, bookmarks
and form fields, plus a rough 0-100 accessibility score.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import pymupdf as fitz
import pikepdf

from .loader import OutlineItem, ParsedDocument
from .models import Box
from .structtree import (
    HEADING_TAGS,
    inherited_page,
    is_pdf_array,
    is_struct_elem,
    iter_kids,
    name_str,
    page_objgen_map,
    read_role_map,
    resolve_role,
    text_of,
    walk_struct_tree,
)
from .text_extractor import DocumentText, ExtractionOptions, TextBlock, TextLine, extract_text

logger = logging.getLogger(__name__)

COLUMN_SLACK = 50
MIN_COLUMN_LINES = 3

BULLET_PATTERN = re.compile(r"^[•‣◦⁃∙•◦‣⁃○●\-\*]\s")
NUMBER_PATTERN = re.compile(r"^(\d+[\.\)]\s|[a-z][\.\)]\s|[ivxlcdm]+[\.\)]\s)", re.IGNORECASE)

NON_DESCRIPTIVE_WORD = re.compile(r"^(click|here|link|more|read|download|learn|info)$", re.IGNORECASE)
NON_DESCRIPTIVE_PHRASE = re.compile(
    r"^(click here|read more|learn more|more info|download here)$", re.IGNORECASE
)
SHORT_ACRONYM = re.compile(r"^[A-Z0-9]{2,5}$")
LINK_TEXT_WHITELIST = {"FAQ", "PDF", "API", "URL", "RSS", "XML", "CSV", "HOME", "HELP"}

FIELD_TYPES = {"Tx": "text", "Btn": "button", "Ch": "choice", "Sig": "signature"}


# ============================================================================
# Records
# ============================================================================


@dataclass
class HeadingInfo:
    id: str
    level: int
    text: str
    page_number: int
    position: Box = field(default_factory=Box)
    is_from_tags: bool = False
    is_properly_nested: bool = True


@dataclass
class HeadingIssue:
    type: str  # missing-h1 | multiple-h1 | skipped-level | improper-nesting
    severity: str  # critical | major | minor
    description: str
    location: str
    wcag_criterion: str = "1.3.1"


@dataclass
class HeadingHierarchy:
    headings: List[HeadingInfo] = field(default_factory=list)
    has_proper_hierarchy: bool = True
    has_h1: bool = False
    multiple_h1: bool = False
    skipped_levels: List[Dict] = field(default_factory=list)
    issues: List[HeadingIssue] = field(default_factory=list)


@dataclass
class LayoutScore:
    score: int
    is_layout: bool
    confidence: float
    reasons: List[str]


@dataclass
class TableInfo:
    id: str
    page_number: int
    row_count: int
    column_count: int
    position: Box = field(default_factory=Box)
    has_header_row: bool = False
    has_header_column: bool = False
    has_summary: bool = False
    summary: Optional[str] = None
    caption: Optional[str] = None
    is_tagged: bool = False
    issues: List[str] = field(default_factory=list)
    is_accessible: bool = False

    @property
    def has_headers(self) -> bool:
        return self.has_header_row or self.has_header_column

    @property
    def dimensions(self) -> str:
        return f"{self.row_count}×{self.column_count}"

    @property
    def layout(self) -> LayoutScore:
        return layout_score(
            self.row_count,
            self.column_count,
            self.has_header_row,
            self.has_header_column,
            self.has_summary,
        )


@dataclass
class ListItem:
    text: str
    marker: str


@dataclass
class ListInfo:
    id: str
    page_number: int
    type: str  # ordered | unordered
    items: List[ListItem]
    position: Box = field(default_factory=Box)
    is_properly_tagged: bool = False

    @property
    def item_count(self) -> int:
        return len(self.items)


@dataclass
class LinkInfo:
    id: str
    page_number: int
    text: str
    url: Optional[str] = None
    destination: Optional[int] = None
    position: Box = field(default_factory=Box)
    has_descriptive_text: bool = False
    issues: List[str] = field(default_factory=list)


@dataclass
class ReadingOrderIssue:
    type: str  # column-confusion | visual-order | table-reading
    description: str
    page_number: int
    location: Optional[str] = None


@dataclass
class ReadingOrderInfo:
    is_logical: bool
    has_structure_tree: bool
    confidence: float
    issues: List[ReadingOrderIssue] = field(default_factory=list)


@dataclass
class LanguageInfo:
    document_language: Optional[str]
    has_document_language: bool
    detected_languages: List[str] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)


@dataclass
class Bookmark:
    title: str
    level: int
    page: Optional[int] = None


@dataclass
class FormField:
    name: str
    type: str
    has_label: bool
    label: Optional[str] = None


@dataclass
class StructureSummary:
    total_headings: int = 0
    total_tables: int = 0
    total_lists: int = 0
    total_links: int = 0
    total_form_fields: int = 0
    critical_issues: int = 0
    major_issues: int = 0
    minor_issues: int = 0


@dataclass
class SemanticStructure:
    is_tagged: bool
    headings: HeadingHierarchy
    tables: List[TableInfo]
    lists: List[ListInfo]
    links: List[LinkInfo]
    reading_order: ReadingOrderInfo
    language: LanguageInfo
    bookmarks: List[Bookmark]
    form_fields: List[FormField]
    summary: StructureSummary
    accessibility_score: int


@dataclass
class AnalysisOptions:
    analyze_headings: bool = True
    analyze_tables: bool = True
    analyze_lists: bool = True
    analyze_links: bool = True
    analyze_reading_order: bool = True
    analyze_language: bool = True
    page_range: Optional[tuple] = None


# ============================================================================
# Entry point
# ============================================================================


def analyze_structure(
    handle: ParsedDocument,
    options: Optional[AnalysisOptions] = None,
    text: Optional[DocumentText] = None,
) -> SemanticStructure:
    """
    Build the semantic model of a document. Never mutates the handle.

    Args:
        handle: An open parsed document.
        options: Which analyses to run and over which pages.
        text: Pre-extracted text to reuse; extracted here when omitted.
    """
    options = options or AnalysisOptions()
    is_tagged = handle.structure.metadata.is_tagged

    if text is None:
        text = extract_text(handle, ExtractionOptions(page_range=options.page_range))

    headings = (
        analyze_headings(handle, text, is_tagged)
        if options.analyze_headings
        else HeadingHierarchy()
    )
    tables = analyze_tables(handle, text, is_tagged) if options.analyze_tables else []
    lists = analyze_lists(handle, text, is_tagged) if options.analyze_lists else []
    links = analyze_links(handle) if options.analyze_links else []

    if options.analyze_reading_order:
        reading_order = analyze_reading_order(text, is_tagged)
    else:
        reading_order = ReadingOrderInfo(
            is_logical=True, has_structure_tree=is_tagged, confidence=0.9 if is_tagged else 0.5
        )

    if options.analyze_language:
        language = analyze_language(handle, text)
    else:
        language = LanguageInfo(document_language=None, has_document_language=False)

    bookmarks = flatten_outline(handle.structure.outline)
    form_fields = analyze_form_fields(handle)
    summary = calculate_summary(headings, tables, lists, links, form_fields)
    score = calculate_accessibility_score(
        is_tagged,
        headings,
        tables,
        links,
        reading_order,
        language,
        summary,
        include_reading_order=options.analyze_reading_order,
    )

    logger.info(
        "Structure analysis: %d headings, %d tables, %d lists, %d links, score=%d",
        len(headings.headings),
        len(tables),
        len(lists),
        len(links),
        score,
    )

    return SemanticStructure(
        is_tagged=is_tagged,
        headings=headings,
        tables=tables,
        lists=lists,
        links=links,
        reading_order=reading_order,
        language=language,
        bookmarks=bookmarks,
        form_fields=form_fields,
        summary=summary,
        accessibility_score=score,
    )


# ============================================================================
# Headings
# ============================================================================


def analyze_headings(
    handle: ParsedDocument, text: DocumentText, is_tagged: bool
) -> HeadingHierarchy:
    """
    Headings from the tag tree when it has any, else from font heuristics,
    then checked for a missing or duplicate H1, skipped levels and nesting.
    """
    headings: List[HeadingInfo] = []
    for page in text.pages:
        for line in page.lines:
            if line.is_heading and line.heading_level:
                headings.append(
                    HeadingInfo(
                        id=f"h_p{page.page_number}_{len(headings)}",
                        level=line.heading_level,
                        text=line.text[:200],
                        page_number=page.page_number,
                        position=Box(line.bbox.x, line.bbox.y),
                    )
                )

    issues: List[HeadingIssue] = []
    if is_tagged:
        tagged, nesting_issues = extract_tagged_headings(handle, headings)
        if tagged:
            headings = tagged
            issues.extend(nesting_issues)

    headings.sort(key=lambda h: (h.page_number, h.position.y))
    return check_heading_hierarchy(headings, issues)


def check_heading_hierarchy(
    headings: List[HeadingInfo], issues: Optional[List[HeadingIssue]] = None
) -> HeadingHierarchy:
    issues = list(issues or [])
    h1_count = sum(1 for h in headings if h.level == 1)
    has_h1 = h1_count > 0

    # The missing/multiple checks go first in the issue list
    head: List[HeadingIssue] = []
    if not has_h1 and headings:
        head.append(
            HeadingIssue(
                type="missing-h1",
                severity="major",
                description="Document has no H1 heading. Every document should have a main heading.",
                location="Document",
            )
        )
    if h1_count > 1:
        head.append(
            HeadingIssue(
                type="multiple-h1",
                severity="minor",
                description=f"Document has {h1_count} H1 headings. Consider using only one main heading.",
                location="Document",
            )
        )

    skipped = []
    previous_level = 0
    for heading in headings:
        if previous_level > 0 and heading.level > previous_level + 1:
            location = f"Page {heading.page_number}"
            skipped.append({"from": previous_level, "to": heading.level, "location": location})
            heading.is_properly_nested = False
            issues.append(
                HeadingIssue(
                    type="skipped-level",
                    severity="major",
                    description=(
                        f"Heading level skipped from H{previous_level} to H{heading.level}: "
                        f'"{heading.text[:50]}..."'
                    ),
                    location=location,
                )
            )
        previous_level = heading.level

    issues = head + issues
    return HeadingHierarchy(
        headings=headings,
        has_proper_hierarchy=not any(i.severity != "minor" for i in issues),
        has_h1=has_h1,
        multiple_h1=h1_count > 1,
        skipped_levels=skipped,
        issues=issues,
    )


def extract_tagged_headings(
    handle: ParsedDocument, detected: Optional[List[HeadingInfo]] = None
):
    """
    Return (headings, nesting issues) from /H and /H1-/H6 structure elements.

    Most heading elements point at marked content rather than carrying text,
    so the title comes from /K, /ActualText or /T, then from the next unused
    font-detected heading on the same page, then a numbered placeholder.
    """
    headings: List[HeadingInfo] = []
    issues: List[HeadingIssue] = []
    pdf = handle.pdf
    if "/StructTreeRoot" not in pdf.Root:
        return headings, issues

    page_map = page_objgen_map(pdf)
    # page -> detected heading texts not yet claimed by a tagged heading
    unused: Dict[int, List[str]] = {}
    for info in detected or []:
        unused.setdefault(info.page_number, []).append(info.text)

    try:
        for elem, tag, ancestors in walk_struct_tree(pdf):
            if tag not in HEADING_TAGS:
                continue
            level = 1 if tag == "H" else int(tag[1:])
            page_number = inherited_page(elem, page_map) or 1
            title = (
                _own_title(elem)
                or _next_detected(unused, page_number)
                or f"Heading {len(headings) + 1}"
            )

            heading = HeadingInfo(
                id=f"h_tagged_{len(headings)}",
                level=level,
                text=title[:200],
                page_number=page_number,
                is_from_tags=True,
            )
            if any(a in HEADING_TAGS for a in ancestors):
                heading.is_properly_nested = False
                issues.append(
                    HeadingIssue(
                        type="improper-nesting",
                        severity="major",
                        description=f'Heading "{title[:50]}" is nested inside another heading element.',
                        location=f"Page {page_number}",
                    )
                )
            headings.append(heading)
    except Exception as e:
        logger.warning("Failed to extract tagged headings: %s", e)

    return headings, issues


def _is_pdf_string(value) -> bool:
    return isinstance(value, (str, pikepdf.String))


def _own_title(elem) -> Optional[str]:
    kids = elem.get("/K")
    for value in (
        kids if _is_pdf_string(kids) else None,
        elem.get("/ActualText"),
        elem.get("/T"),
    ):
        text = text_of(value)
        if text and text.strip():
            return text.strip()
    return None


def _next_detected(unused: Dict[int, List[str]], page_number: int) -> Optional[str]:
    texts = unused.get(page_number)
    return texts.pop(0) if texts else None


# ============================================================================
# Tables
# ============================================================================


def layout_score(
    row_count: int,
    column_count: int,
    has_header_row: bool,
    has_header_column: bool,
    has_summary: bool,
) -> LayoutScore:
    """Score how likely a table is used for visual layout rather than data."""
    reasons = []
    score = 0
    has_headers = has_header_row or has_header_column

    if column_count == 1:
        reasons.append("single column")
        score += 30
    if row_count == 1:
        reasons.append("single row")
        score += 30
    if not has_headers:
        reasons.append("no headers")
        score += 20
    if row_count <= 2 and column_count <= 2 and not has_header_row:
        reasons.append("small table without headers")
        score += 15
    if has_headers:
        score -= 40
    if has_summary:
        score -= 50
    if row_count >= 5 and column_count >= 3:
        score -= 20

    is_layout = score >= 30
    return LayoutScore(
        score=score,
        is_layout=is_layout,
        confidence=min(100, max(0, score)) / 100,
        reasons=reasons if is_layout else [],
    )


def analyze_tables(
    handle: ParsedDocument, text: DocumentText, is_tagged: bool
) -> List[TableInfo]:
    tables: List[TableInfo] = []
    for page in text.pages:
        tables.extend(detect_tabular_content(page.blocks, page.page_number))

    if is_tagged and tables:
        enhance_tables_from_tags(handle, tables)
        for table in tables:
            if not table.is_tagged:
                table.issues.append("Table content is not tagged as a Table structure element.")

    for table in tables:
        validate_table_accessibility(table)
    return tables


def detect_tabular_content(blocks: List[TextBlock], page_number: int) -> List[TableInfo]:
    tables = []
    for block in blocks:
        if len(block.lines) < 2:
            continue
        columns = detect_column_positions(block.lines)
        if len(columns) < 2:
            continue

        table = TableInfo(
            id=f"table_p{page_number}_{len(tables)}",
            page_number=page_number,
            row_count=len(block.lines),
            column_count=len(columns),
            position=block.bbox,
        )
        table.has_header_row = any(i.font.is_bold for i in block.lines[0].items)
        table.has_header_column = all(
            line.items and line.items[0].font.is_bold for line in block.lines
        )
        tables.append(table)
    return tables


def detect_column_positions(lines: List[TextLine]) -> List[int]:
    """x positions (rounded to 10) shared by at least half the lines."""
    counts: Dict[int, int] = {}
    for line in lines:
        for item in line.items:
            x = int(round(item.position.x / 10.0)) * 10
            counts[x] = counts.get(x, 0) + 1
    threshold = len(lines) * 0.5
    return sorted(x for x, n in counts.items() if n >= threshold)


def enhance_tables_from_tags(handle: ParsedDocument, tables: List[TableInfo]) -> None:
    """Match /Table elements to detected tables, page queue first, then globally."""
    pdf = handle.pdf
    page_map = page_objgen_map(pdf)
    role_map = read_role_map(pdf.Root.get("/StructTreeRoot"))

    page_queues: Dict[int, List[TableInfo]] = {}
    for table in tables:
        page_queues.setdefault(table.page_number, []).append(table)
    global_queue = list(tables)

    try:
        for elem, tag, _ancestors in walk_struct_tree(pdf):
            if tag != "Table":
                continue
            page_number = inherited_page(elem, page_map) or 1
            table = _consume_next_table(page_number, page_queues, global_queue)
            if table is None:
                return
            table.is_tagged = True
            _read_table_node(elem, table, role_map)
    except Exception as e:
        logger.warning("Failed to enhance tables from tags: %s", e)


def _consume_next_table(
    page_number: int, page_queues: Dict[int, List[TableInfo]], global_queue: List[TableInfo]
) -> Optional[TableInfo]:
    queue = page_queues.get(page_number)
    if queue:
        table = queue.pop(0)
        global_queue.remove(table)
        return table
    if global_queue:
        table = global_queue.pop(0)
        page_queues[table.page_number].remove(table)
        return table
    return None


def _table_attribute(elem, key: str):
    value = elem.get(key)
    if value is not None:
        return value
    attrs = elem.get("/A")
    if attrs is None:
        return None
    for attr in attrs if is_pdf_array(attrs) else [attrs]:
        if hasattr(attr, "get") and attr.get(key) is not None:
            return attr.get(key)
    return None


def _read_table_node(elem, table: TableInfo, role_map: Dict[str, str]) -> None:
    summary = _table_attribute(elem, "/Summary")
    if summary is not None and _is_pdf_string(summary):
        table.has_summary = True
        table.summary = text_of(summary)

    caption = elem.get("/Caption")
    if caption is not None and _is_pdf_string(caption):
        table.caption = text_of(caption)

    for kid in iter_kids(elem):
        if not is_struct_elem(kid):
            continue
        kid_tag = resolve_role(name_str(kid.get("/S")), role_map)
        if kid_tag in ("THead", "TH"):
            table.has_header_row = True
        elif kid_tag == "TR":
            if _row_has_header(kid, role_map):
                table.has_header_row = True
        elif kid_tag == "Caption" and table.caption is None:
            table.caption = text_of(kid.get("/ActualText")) or "Caption"


def _row_has_header(row, role_map: Dict[str, str]) -> bool:
    for cell in iter_kids(row):
        if is_struct_elem(cell) and resolve_role(name_str(cell.get("/S")), role_map) == "TH":
            return True
    return False


def validate_table_accessibility(table: TableInfo) -> None:
    if not table.has_headers:
        table.issues.append("Table has no header cells (TH). Add row or column headers.")
    if table.row_count > 5 and not table.has_summary:
        table.issues.append("Complex table should have a summary describing its structure.")
    table.is_accessible = not table.issues and table.has_headers


# ============================================================================
# Lists and links
# ============================================================================


def _has_list_tags(handle: ParsedDocument) -> bool:
    if "/StructTreeRoot" not in handle.pdf.Root:
        return False
    return any(tag == "L" for _elem, tag, _a in walk_struct_tree(handle.pdf))


def analyze_lists(
    handle: ParsedDocument, text: DocumentText, is_tagged: bool
) -> List[ListInfo]:
    lists: List[ListInfo] = []
    properly_tagged = is_tagged and _has_list_tags(handle)

    for page in text.pages:
        for block in page.blocks:
            if block.type != "list":
                continue
            items = []
            list_type = "unordered"
            for line in block.lines:
                line_text = line.text.strip()
                marker = ""
                item_text = line_text
                bullet = BULLET_PATTERN.match(line_text)
                number = NUMBER_PATTERN.match(line_text)
                if bullet:
                    marker = bullet.group(0)
                    item_text = line_text[bullet.end():]
                    list_type = "unordered"
                elif number:
                    marker = number.group(0)
                    item_text = line_text[number.end():]
                    list_type = "ordered"
                items.append(ListItem(text=item_text, marker=marker))

            if items:
                lists.append(
                    ListInfo(
                        id=f"list_p{page.page_number}_{len(lists)}",
                        page_number=page.page_number,
                        type=list_type,
                        items=items,
                        position=Box(block.bbox.x, block.bbox.y),
                        is_properly_tagged=properly_tagged,
                    )
                )
    return lists


def is_descriptive_link_text(text: str) -> bool:
    text = (text or "").strip()
    if not text:
        return False
    if NON_DESCRIPTIVE_WORD.match(text) or NON_DESCRIPTIVE_PHRASE.match(text):
        return False
    is_whitelisted = text.upper() in LINK_TEXT_WHITELIST
    is_acronym = bool(SHORT_ACRONYM.match(text)) and text == text.upper()
    return len(text) > 3 or is_whitelisted or is_acronym


def _annotation_contents(doc: fitz.Document, xref: Optional[int]) -> str:
    if not xref:
        return ""
    kind, value = doc.xref_get_key(xref, "Contents")
    if kind == "string":
        return value
    return ""


def analyze_links(handle: ParsedDocument) -> List[LinkInfo]:
    links: List[LinkInfo] = []
    for page_index in range(handle.structure.page_count):
        page_number = page_index + 1
        try:
            page = handle.doc[page_index]
            for link in page.get_links():
                rect = link.get("from") or fitz.Rect()
                text = page.get_textbox(rect).strip() if not rect.is_empty else ""
                if not text:
                    text = _annotation_contents(handle.doc, link.get("xref"))
                text = " ".join(text.split())

                destination = None
                if link.get("kind") == fitz.LINK_GOTO and link.get("page", -1) >= 0:
                    destination = link["page"] + 1

                info = LinkInfo(
                    id=f"link_p{page_number}_{len(links)}",
                    page_number=page_number,
                    text=text,
                    url=link.get("uri") or None,
                    destination=destination,
                    position=Box(rect.x0, rect.y0, rect.width, rect.height),
                )
                if is_descriptive_link_text(text):
                    info.has_descriptive_text = True
                else:
                    info.issues.append("Link text is not descriptive (WCAG 2.4.4)")
                links.append(info)
        except Exception as e:
            logger.warning("Failed to extract links from page %d: %s", page_number, e)
    return links


# ============================================================================
# Reading order and language
# ============================================================================


def detect_columns(lines: List[TextLine]) -> List[List[int]]:
    """Group lines into x-ranges; only groups of 3+ lines count as columns."""
    ranges: List[Dict] = []
    for index, line in enumerate(lines):
        min_x, max_x = line.bbox.x, line.bbox.right
        for group in ranges:
            if min_x < group["max_x"] + COLUMN_SLACK and max_x > group["min_x"] - COLUMN_SLACK:
                group["min_x"] = min(group["min_x"], min_x)
                group["max_x"] = max(group["max_x"], max_x)
                group["lines"].append(index)
                break
        else:
            ranges.append({"min_x": min_x, "max_x": max_x, "lines": [index]})
    return [g["lines"] for g in ranges if len(g["lines"]) >= MIN_COLUMN_LINES]


def analyze_reading_order(text: DocumentText, is_tagged: bool) -> ReadingOrderInfo:
    issues = []
    confidence = 0.9 if is_tagged else 0.5

    for page in text.pages:
        if not is_tagged and len(detect_columns(page.lines)) > 1:
            issues.append(
                ReadingOrderIssue(
                    type="column-confusion",
                    description=(
                        "Multi-column layout detected without proper tagging. "
                        "Reading order may be incorrect."
                    ),
                    page_number=page.page_number,
                )
            )
            confidence -= 0.2

    return ReadingOrderInfo(
        is_logical=not issues and (is_tagged or text.reading_order == "left-to-right"),
        has_structure_tree=is_tagged,
        confidence=max(0.0, min(1.0, confidence)),
        issues=issues,
    )


def analyze_language(handle: ParsedDocument, text: DocumentText) -> LanguageInfo:
    metadata = handle.structure.metadata
    info = LanguageInfo(
        document_language=metadata.language,
        has_document_language=bool(metadata.language),
        detected_languages=[lang for lang in text.languages if lang != "unknown"],
    )
    if not info.has_document_language:
        info.issues.append(
            "Document language is not specified (WCAG 3.1.1). Specify the primary language."
        )
    if len(info.detected_languages) > 1 and not metadata.is_tagged:
        info.issues.append(
            "Multiple languages detected but document is not tagged. "
            "Language changes may not be marked (WCAG 3.1.2)."
        )
    return info


# ============================================================================
# Bookmarks, forms, summary
# ============================================================================


def flatten_outline(outline: Optional[List[OutlineItem]], level: int = 1) -> List[Bookmark]:
    bookmarks: List[Bookmark] = []
    for item in outline or []:
        bookmarks.append(Bookmark(title=item.title, level=level, page=item.destination))
        bookmarks.extend(flatten_outline(item.children, level + 1))
    return bookmarks


def analyze_form_fields(handle: ParsedDocument) -> List[FormField]:
    fields: List[FormField] = []
    if not handle.structure.metadata.has_acroform:
        return fields

    try:
        acroform = handle.pdf.Root.get("/AcroForm")
        raw_fields = acroform.get("/Fields") if acroform is not None else None
        for index, field_obj in enumerate(raw_fields or []):
            if not hasattr(field_obj, "get"):
                continue
            name = field_obj.get("/T")
            label = field_obj.get("/TU")
            fields.append(
                FormField(
                    name=text_of(name) if name is not None else f"field_{index}",
                    type=FIELD_TYPES.get(name_str(field_obj.get("/FT")), "unknown"),
                    has_label=label is not None,
                    label=text_of(label),
                )
            )
    except Exception as e:
        logger.warning("Failed to extract form fields: %s", e)
    return fields


def calculate_summary(
    headings: HeadingHierarchy,
    tables: List[TableInfo],
    lists: List[ListInfo],
    links: List[LinkInfo],
    form_fields: List[FormField],
) -> StructureSummary:
    summary = StructureSummary(
        total_headings=len(headings.headings),
        total_tables=len(tables),
        total_lists=len(lists),
        total_links=len(links),
        total_form_fields=len(form_fields),
    )
    for issue in headings.issues:
        if issue.severity == "critical":
            summary.critical_issues += 1
        elif issue.severity == "major":
            summary.major_issues += 1
        else:
            summary.minor_issues += 1
    summary.major_issues += sum(len(t.issues) for t in tables)
    summary.minor_issues += sum(len(link.issues) for link in links)
    return summary


def calculate_accessibility_score(
    is_tagged: bool,
    headings: HeadingHierarchy,
    tables: List[TableInfo],
    links: List[LinkInfo],
    reading_order: ReadingOrderInfo,
    language: LanguageInfo,
    summary: StructureSummary,
    include_reading_order: bool = True,
) -> int:
    score = 100
    if not is_tagged:
        score -= 30
    if not language.has_document_language:
        score -= 10
    if not headings.has_h1 and headings.headings:
        score -= 10

    score -= summary.critical_issues * 15
    score -= summary.major_issues * 5
    score -= summary.minor_issues * 2
    score -= sum(1 for t in tables if not t.is_accessible) * 5

    if include_reading_order:
        score -= len(reading_order.issues) * 5
        if not reading_order.is_logical:
            score -= 10

    score -= min(sum(1 for link in links if not link.has_descriptive_text), 5) * 2
    return max(0, min(100, score))
