import pytest

from pdf_audit import text_extractor
from pdf_audit.conftest import make_text_pdf
from pdf_audit.errors import InvalidRange
from pdf_audit.loader import parse
from pdf_audit.models import Box
from pdf_audit.text_extractor import ExtractionOptions, FontInfo, TextItem


def make_item(text, x, y, size=12.0, bold=False, page=1):
    return TextItem(
        text=text,
        page_number=page,
        position=Box(x, y, len(text) * size * 0.5, size),
        font=FontInfo("Helvetica", size, bold, False),
    )


# ============================================================================
# Unit Tests - Heuristics
# ============================================================================


def test_detect_heading_level():
    assert text_extractor.detect_heading_level(24, 12) == 1
    assert text_extractor.detect_heading_level(21, 12) == 2
    assert text_extractor.detect_heading_level(17, 12) == 3
    assert text_extractor.detect_heading_level(14.5, 12) == 4
    assert text_extractor.detect_heading_level(12, 12) == 5


def test_heading_level_never_deepens_as_size_grows():
    levels = [text_extractor.detect_heading_level(size, 10) for size in range(10, 40)]
    assert levels == sorted(levels, reverse=True)


def test_validate_page_range():
    text_extractor.validate_page_range(1, 3, 3)
    with pytest.raises(InvalidRange):
        text_extractor.validate_page_range(0, 1, 3)
    with pytest.raises(InvalidRange):
        text_extractor.validate_page_range(1, 4, 3)
    with pytest.raises(InvalidRange):
        text_extractor.validate_page_range(3, 2, 3)


def test_group_into_lines_merges_same_baseline():
    items = [make_item("Right", 300, 100.5), make_item("Left", 72, 100)]
    items.sort(key=lambda i: (i.position.y, i.position.x))
    lines = text_extractor.group_into_lines(items, heading_threshold=20, avg_font_size=12)
    assert len(lines) == 1
    assert lines[0].text == "Left Right"
    assert lines[0].is_heading is False


def test_bold_line_is_heading():
    line = text_extractor.create_line([make_item("Summary", 72, 100, bold=True)], 20, 12)
    assert line.is_heading is True
    assert line.heading_level == 5


def test_group_into_blocks_splits_on_gap_and_after_heading():
    heading = text_extractor.create_line([make_item("Title", 72, 80, size=24)], 20, 12)
    first = text_extractor.create_line([make_item("one", 72, 120)], 20, 12)
    second = text_extractor.create_line([make_item("two", 72, 135)], 20, 12)
    far = text_extractor.create_line([make_item("three", 72, 300)], 20, 12)

    blocks = text_extractor.group_into_blocks([heading, first, second, far])
    assert [b.text for b in blocks] == ["Title", "one\ntwo", "three"]
    assert blocks[0].type == "heading"
    assert blocks[1].type == "paragraph"


def test_detect_block_type():
    lines = [text_extractor.create_line([make_item("x", 72, 100)], 20, 12)]
    assert text_extractor.detect_block_type(lines, "1. Apples\n2. Pears") == "list"
    assert text_extractor.detect_block_type(lines, "Figure 3: Revenue by region") == "caption"
    assert text_extractor.detect_block_type([], "") == "unknown"

    small = [text_extractor.create_line([make_item("Page 4", 72, 760, size=8)], 20, 12)]
    assert text_extractor.detect_block_type(small, "Page 4") == "footer"


def test_detect_languages():
    assert text_extractor.detect_languages("Hello Привет") == ["en", "ru"]
    assert text_extractor.detect_languages("") == ["unknown"]


def test_normalize_text():
    assert text_extractor.normalize_text("a  \t b\r\n\n\n\nc ") == "a b\n\nc"


# ============================================================================
# Integration Tests - Extraction
# ============================================================================


def _report_pdf():
    lines = [(0, (72, 72), "Annual Report", 30)]
    for n in range(5):
        lines.append((0, (72, 120 + n * 15), f"Body line number {n}", 12))
    lines.append((1, (72, 72), "Second page text", 12))
    return make_text_pdf(lines, pages=2)


def test_extract_text_detects_heading(settings):
    with parse(_report_pdf(), settings=settings) as handle:
        text = text_extractor.extract_text(handle)

    assert text.total_pages == 2
    first = text.pages[0]
    assert first.lines[0].text == "Annual Report"
    assert first.lines[0].is_heading is True
    assert first.lines[0].heading_level == 1
    assert all(not line.is_heading for line in first.lines[1:])
    assert "Second page text" in text.full_text
    assert text.total_words == sum(p.word_count for p in text.pages)


def test_extract_text_page_range(settings):
    with parse(_report_pdf(), settings=settings) as handle:
        text = text_extractor.extract_text(handle, ExtractionOptions(page_range=(2, 2)))
        assert [p.page_number for p in text.pages] == [2]

        with pytest.raises(InvalidRange):
            text_extractor.extract_text(handle, ExtractionOptions(page_range=(1, 5)))


def test_extract_pages_validates_each_page(settings):
    with parse(_report_pdf(), settings=settings) as handle:
        pages = text_extractor.extract_pages(handle, [2, 1])
        assert [p.page_number for p in pages] == [2, 1]
        with pytest.raises(InvalidRange):
            text_extractor.extract_pages(handle, [3])


def test_empty_page(settings):
    with parse(make_text_pdf(), settings=settings) as handle:
        text = text_extractor.extract_text(handle)
    assert text.pages[0].lines == []
    assert text.total_words == 0
    assert text.languages == ["unknown"]
