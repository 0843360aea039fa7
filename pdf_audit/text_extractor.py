"""
Text extraction engine.

Turns PyMuPDF text spans into items, lines and blocks; detects headings,
block types, reading direction and script-based language guesses.
"""

from __future__ import annotations

import functools
import logging
import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from .errors import InvalidRange
from .loader import ParsedDocument
from .models import Box

logger = logging.getLogger(__name__)

LINE_THRESHOLD = 5
BLOCK_THRESHOLD = 20
HEADING_SIZE_MULTIPLIER = 1.2
DEFAULT_FONT_SIZE = 12.0
READING_ORDER_SAMPLE_PAGES = 3

LIST_PATTERN = re.compile(
    r"^[•‣◦⁃∙•◦‣⁃○●\-\*]\s|^\d+[\.\)]\s|^[a-z][\.\)]\s",
    re.IGNORECASE | re.MULTILINE,
)
CAPTION_PATTERN = re.compile(r"^(figure|fig\.|table|image|photo)", re.IGNORECASE)

# (language, pattern) checked in this order
SCRIPT_RANGES = [
    ("en", re.compile(r"[\u0000-\u007F]")),
    ("ru", re.compile(r"[Ѐ-ӿ]")),
    ("zh", re.compile(r"[一-鿿]")),
    ("ja", re.compile(r"[぀-ゟ゠-ヿ]")),
    ("ko", re.compile(r"[가-힯]")),
    ("ar", re.compile(r"[؀-ۿ]")),
    ("hi", re.compile(r"[ऀ-ॿ]")),
]

BOLD_FLAG = 2**4
ITALIC_FLAG = 2**1


# ============================================================================
# Records
# ============================================================================


@dataclass
class FontInfo:
    name: str = ""
    size: float = 0.0
    is_bold: bool = False
    is_italic: bool = False


@dataclass
class TextItem:
    text: str
    page_number: int
    position: Box
    font: FontInfo


@dataclass
class TextLine:
    text: str
    page_number: int
    items: List[TextItem]
    bbox: Box
    is_heading: bool = False
    heading_level: Optional[int] = None

    @property
    def average_font_size(self) -> float:
        return sum(i.font.size for i in self.items) / len(self.items)


@dataclass
class TextBlock:
    text: str
    page_number: int
    lines: List[TextLine]
    bbox: Box
    type: str = "paragraph"  # paragraph|heading|list|caption|footer|header|unknown


@dataclass
class PageText:
    page_number: int
    width: float
    height: float
    text: str
    items: List[TextItem] = field(default_factory=list)
    lines: List[TextLine] = field(default_factory=list)
    blocks: List[TextBlock] = field(default_factory=list)
    word_count: int = 0
    character_count: int = 0


@dataclass
class DocumentText:
    pages: List[PageText]
    full_text: str
    total_words: int
    total_characters: int
    total_pages: int
    languages: List[str]
    reading_order: str  # left-to-right|right-to-left|mixed


@dataclass
class ExtractionOptions:
    page_range: Optional[tuple] = None  # (start, end), 1-based inclusive
    group_into_lines: bool = True
    group_into_blocks: bool = True
    normalize_whitespace: bool = True


# ============================================================================
# Public API
# ============================================================================


def extract_text(
    handle: ParsedDocument, options: Optional[ExtractionOptions] = None
) -> DocumentText:
    """
    Extract lines, blocks and headings from a page range.

    Two passes: the first averages every span size over the requested range
    (heading threshold = average * 1.2); the second groups items per page.

    Raises:
        InvalidRange: start or end outside [1, page_count], or start > end.
    """
    options = options or ExtractionOptions()
    page_count = handle.structure.page_count
    start, end = options.page_range or (1, page_count)
    validate_page_range(start, end, page_count)

    page_numbers = list(range(start, end + 1))
    pages = _extract_pages(handle, page_numbers, options)

    full_text = "".join(p.text + "\n\n" for p in pages)
    languages = detect_languages(full_text.strip())
    reading_order = detect_reading_order(pages[:READING_ORDER_SAMPLE_PAGES])

    logger.debug(
        "Extracted text from pages %d-%d: %d lines, order=%s",
        start,
        end,
        sum(len(p.lines) for p in pages),
        reading_order,
    )

    return DocumentText(
        pages=pages,
        full_text=normalize_text(full_text) if options.normalize_whitespace else full_text,
        total_words=sum(p.word_count for p in pages),
        total_characters=sum(p.character_count for p in pages),
        total_pages=len(pages),
        languages=languages,
        reading_order=reading_order,
    )


def extract_pages(
    handle: ParsedDocument,
    page_numbers: Sequence[int],
    options: Optional[ExtractionOptions] = None,
) -> List[PageText]:
    """Extract an arbitrary list of pages; the font average covers only those pages."""
    page_count = handle.structure.page_count
    for page_number in page_numbers:
        if page_number < 1 or page_number > page_count:
            raise InvalidRange(
                f"Invalid page number: {page_number}. Document has {page_count} pages."
            )
    return _extract_pages(handle, list(page_numbers), options or ExtractionOptions())


def validate_page_range(start: int, end: int, page_count: int) -> None:
    if start < 1 or start > page_count:
        raise InvalidRange(
            f"Invalid start page: {start}. Document has {page_count} pages."
        )
    if end < 1 or end > page_count:
        raise InvalidRange(f"Invalid end page: {end}. Document has {page_count} pages.")
    if start > end:
        raise InvalidRange(
            f"Start page ({start}) cannot be greater than end page ({end})."
        )


# ============================================================================
# Page processing
# ============================================================================


def _extract_pages(
    handle: ParsedDocument, page_numbers: List[int], options: ExtractionOptions
) -> List[PageText]:
    raw_items = {n: read_page_items(handle, n) for n in page_numbers}

    sizes = [i.font.size for items in raw_items.values() for i in items if i.font.size > 0]
    avg_font_size = sum(sizes) / len(sizes) if sizes else DEFAULT_FONT_SIZE
    heading_threshold = avg_font_size * HEADING_SIZE_MULTIPLIER

    pages = []
    for page_number in page_numbers:
        page_info = handle.structure.pages[page_number - 1]
        pages.append(
            build_page_text(
                raw_items[page_number],
                page_number,
                page_info.width,
                page_info.height,
                heading_threshold,
                avg_font_size,
                options,
            )
        )
    return pages


def read_page_items(handle: ParsedDocument, page_number: int) -> List[TextItem]:
    """Collect non-blank spans of one page as TextItems (y is the baseline, top-origin)."""
    page = handle.doc[page_number - 1]
    items: List[TextItem] = []

    for block in page.get_text("dict")["blocks"]:
        if block.get("type") != 0:
            continue
        for line in block.get("lines", []):
            for span in line.get("spans", []):
                text = span.get("text", "")
                if not text.strip():
                    continue
                items.append(span_to_item(span, page_number))
    return items


def span_to_item(span: Dict, page_number: int) -> TextItem:
    size = abs(span.get("size", 0.0)) or DEFAULT_FONT_SIZE
    bbox = span.get("bbox", (0, 0, 0, 0))
    origin = span.get("origin", (bbox[0], bbox[3]))
    font_name = span.get("font", "") or "unknown"
    flags = span.get("flags", 0)

    # Font flags are unreliable for synthetic bold, so also check the name
    lowered = font_name.lower()
    is_bold = bool(flags & BOLD_FLAG) or "bold" in lowered or "black" in lowered
    is_italic = bool(flags & ITALIC_FLAG) or "italic" in lowered or "oblique" in lowered

    width = bbox[2] - bbox[0]
    if width <= 0:
        width = len(span["text"]) * size * 0.6

    return TextItem(
        text=span["text"],
        page_number=page_number,
        position=Box(origin[0], origin[1], width, size),
        font=FontInfo(font_name, size, is_bold, is_italic),
    )


def _compare_items(a: TextItem, b: TextItem) -> int:
    y_diff = a.position.y - b.position.y
    if abs(y_diff) > LINE_THRESHOLD:
        return -1 if y_diff < 0 else 1
    x_diff = a.position.x - b.position.x
    return -1 if x_diff < 0 else (1 if x_diff > 0 else 0)


def build_page_text(
    items: List[TextItem],
    page_number: int,
    width: float,
    height: float,
    heading_threshold: float,
    avg_font_size: float,
    options: ExtractionOptions,
) -> PageText:
    items = sorted(items, key=functools.cmp_to_key(_compare_items))

    lines = (
        group_into_lines(items, heading_threshold, avg_font_size)
        if options.group_into_lines
        else []
    )
    blocks = group_into_blocks(lines) if options.group_into_blocks and lines else []

    if lines:
        page_text = "\n".join(line.text for line in lines)
    else:
        page_text = " ".join(item.text for item in items)
    if options.normalize_whitespace:
        page_text = normalize_text(page_text)

    return PageText(
        page_number=page_number,
        width=width,
        height=height,
        text=page_text,
        items=items,
        lines=lines,
        blocks=blocks,
        word_count=count_words(page_text),
        character_count=len(page_text),
    )


def group_into_lines(
    items: List[TextItem], heading_threshold: float, avg_font_size: float
) -> List[TextLine]:
    if not items:
        return []

    lines = []
    current = [items[0]]
    current_y = items[0].position.y

    for item in items[1:]:
        if abs(item.position.y - current_y) <= LINE_THRESHOLD:
            current.append(item)
        else:
            lines.append(create_line(current, heading_threshold, avg_font_size))
            current = [item]
            current_y = item.position.y

    lines.append(create_line(current, heading_threshold, avg_font_size))
    return lines


def create_line(
    items: List[TextItem], heading_threshold: float, avg_font_size: float
) -> TextLine:
    items = sorted(items, key=lambda i: i.position.x)
    line_size = sum(i.font.size for i in items) / len(items)
    is_heading = line_size >= heading_threshold or any(i.font.is_bold for i in items)

    return TextLine(
        text=" ".join(i.text for i in items),
        page_number=items[0].page_number,
        items=items,
        bbox=Box.enclosing(i.position for i in items),
        is_heading=is_heading,
        heading_level=detect_heading_level(line_size, avg_font_size) if is_heading else None,
    )


def detect_heading_level(font_size: float, avg_font_size: float) -> int:
    """Map the size ratio onto H1-H5. Larger ratios never map to deeper levels."""
    ratio = font_size / avg_font_size if avg_font_size else 1.0
    if ratio >= 2.0:
        return 1
    if ratio >= 1.7:
        return 2
    if ratio >= 1.4:
        return 3
    if ratio >= 1.2:
        return 4
    return 5


def group_into_blocks(lines: List[TextLine]) -> List[TextBlock]:
    if not lines:
        return []

    blocks = []
    current = [lines[0]]

    for line in lines[1:]:
        prev = current[-1]
        gap = line.bbox.y - prev.bbox.bottom
        if gap <= BLOCK_THRESHOLD and not prev.is_heading:
            current.append(line)
        else:
            blocks.append(create_block(current))
            current = [line]

    blocks.append(create_block(current))
    return blocks


def create_block(lines: List[TextLine]) -> TextBlock:
    text = "\n".join(line.text for line in lines)
    return TextBlock(
        text=text,
        page_number=lines[0].page_number,
        lines=lines,
        bbox=Box.enclosing(line.bbox for line in lines),
        type=detect_block_type(lines, text),
    )


def detect_block_type(lines: List[TextLine], text: str) -> str:
    if not lines:
        return "unknown"

    if len(lines) == 1 and lines[0].is_heading:
        return "heading"

    if LIST_PATTERN.search(text):
        return "list"

    avg_size = sum(line.average_font_size for line in lines) / len(lines)
    first_y = lines[0].bbox.y
    if avg_size < 10 and first_y > 700:
        return "footer"
    if avg_size < 10 and first_y < 50:
        return "header"

    if len(text) < 200 and CAPTION_PATTERN.match(text):
        return "caption"

    return "paragraph"


# ============================================================================
# Document-level heuristics
# ============================================================================


def detect_reading_order(pages: List[PageText]) -> str:
    ltr = 0
    rtl = 0
    for page in pages:
        for line in page.lines:
            if len(line.items) > 1:
                if line.items[0].position.x < line.items[-1].position.x:
                    ltr += 1
                else:
                    rtl += 1

    if ltr > rtl * 2:
        return "left-to-right"
    if rtl > ltr * 2:
        return "right-to-left"
    return "mixed"


def detect_languages(text: str) -> List[str]:
    languages = [lang for lang, pattern in SCRIPT_RANGES if pattern.search(text)]
    return languages or ["unknown"]


def normalize_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    return text.strip()


def count_words(text: str) -> int:
    return len(text.split())
