from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from pdf_audit import loader
from pdf_audit.config import Settings
from pdf_audit.conftest import make_text_pdf, save, tag_document
from pdf_audit.errors import InvalidFormat, TooLarge

# ============================================================================
# Unit Tests - Helpers
# ============================================================================


def test_parse_keywords():
    assert loader.parse_keywords("pdf, accessibility; ;wcag") == ["pdf", "accessibility", "wcag"]
    assert loader.parse_keywords("") is None
    assert loader.parse_keywords(" , ;") is None


def test_parse_pdf_date():
    assert loader.parse_pdf_date("D:20240102030405Z") == datetime(
        2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc
    )
    assert loader.parse_pdf_date("D:2024") == datetime(2024, 1, 1, tzinfo=timezone.utc)
    assert loader.parse_pdf_date("not a date") is None
    assert loader.parse_pdf_date(None) is None


# ============================================================================
# Integration Tests - Parsing
# ============================================================================


def test_parse_bytes(simple_pdf, settings):
    with loader.parse(simple_pdf, settings=settings) as handle:
        assert handle.page_count == 1
        assert handle.file_name == "document.pdf"
        assert handle.file_size == len(simple_pdf)
        assert handle.structure.pages[0].width == 612
        assert handle.structure.metadata.is_tagged is False
        assert handle.structure.outline is None
    assert handle.closed is True


def test_parse_path_uses_file_name(tmp_path, simple_pdf, settings):
    path = tmp_path / "annual-report.pdf"
    path.write_bytes(simple_pdf)
    with loader.parse(path, settings=settings) as handle:
        assert handle.file_name == "annual-report.pdf"
    with loader.parse(str(path), file_name="override.pdf", settings=settings) as handle:
        assert handle.file_name == "override.pdf"


def test_parse_rejects_garbage(settings):
    with pytest.raises(InvalidFormat):
        loader.parse(b"this is not a pdf", settings=settings)


def test_parse_rejects_oversized_input(simple_pdf):
    settings = Settings(_env_file=None, max_file_size_mb=0.0001)
    with pytest.raises(TooLarge) as exc:
        loader.parse(simple_pdf, settings=settings)
    assert exc.value.actual == len(simple_pdf)


def test_parse_rejects_too_many_pages():
    data = make_text_pdf(pages=3)
    settings = Settings(_env_file=None, max_pages=2)
    with pytest.raises(TooLarge) as exc:
        loader.parse(data, settings=settings)
    assert exc.value.limit == 2
    assert exc.value.actual == 3


def test_metadata_and_outline(settings):
    data = make_text_pdf(
        [(0, (72, 72), "Intro", 12), (1, (72, 72), "Details", 12)],
        pages=2,
        metadata={"title": "Quarterly Report", "author": "Finance", "keywords": "q1, revenue"},
        toc=[[1, "Intro", 1], [2, "Details", 2]],
    )
    with loader.parse(data, settings=settings) as handle:
        meta = handle.structure.metadata
        assert meta.title == "Quarterly Report"
        assert meta.author == "Finance"
        assert meta.keywords == ["q1", "revenue"]
        assert meta.has_outline is True

        outline = handle.structure.outline
        assert [item.title for item in outline] == ["Intro"]
        assert outline[0].destination == 1
        assert outline[0].children[0].title == "Details"
        assert outline[0].children[0].destination == 2


def test_tagged_flags_and_language(simple_pdf, settings):
    data = tag_document(simple_pdf, lang="en-US", suspects=True)
    with loader.parse(data, settings=settings) as handle:
        meta = handle.structure.metadata
        assert meta.is_tagged is True
        assert meta.is_suspect is True
        assert meta.language == "en-US"


def test_resave_preserves_pages_and_tagging(settings):
    data = tag_document(make_text_pdf(pages=3))
    with loader.parse(data, settings=settings) as handle:
        assert handle.structure.page_count == handle.doc.page_count == 3
        resaved = save(handle.pdf)

    with loader.parse(resaved, settings=settings) as handle:
        assert handle.structure.page_count == 3
        assert handle.structure.metadata.is_tagged is True


# ============================================================================
# Mocked Integration Tests - Failure Paths
# ============================================================================


def test_parse_content_view_failure_closes_object_model(simple_pdf, settings):
    with patch("pdf_audit.loader.fitz.open", side_effect=RuntimeError("broken")):
        with pytest.raises(InvalidFormat) as exc:
            loader.parse(simple_pdf, settings=settings)
    assert exc.value.view == "fitz"


def test_malformed_catalog_is_invalid_format(simple_pdf, settings):
    with patch(
        "pdf_audit.loader.extract_structure", side_effect=AttributeError("/Pages is not a dict")
    ):
        with pytest.raises(InvalidFormat) as exc:
            loader.parse(simple_pdf, settings=settings)
    assert exc.value.view == "pikepdf"
    assert "Malformed document structure" in str(exc.value)


def test_close_twice_is_harmless(simple_pdf, settings):
    handle = loader.parse(simple_pdf, settings=settings)
    loader.close(handle)
    loader.close(handle)
    assert handle.closed is True
