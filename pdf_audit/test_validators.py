from unittest.mock import MagicMock, patch

from pdf_audit import validators
from pdf_audit.analyzer import LinkInfo, TableInfo
from pdf_audit.conftest import make_form_pdf, make_image_pdf, make_text_pdf, tag_document
from pdf_audit.image_extractor import ImageDescriptor
from pdf_audit.loader import parse
from pdf_audit.models import Box, IssueFactory, Severity, SeverityTally
from pdf_audit.validators import JudgeVerdict


def make_image(alt_text=None, decorative=False, base64=None):
    return ImageDescriptor(
        id="img_p1_0_Im0",
        page_number=1,
        index=0,
        name="Im0",
        position=Box(0, 0, 100, 50),
        pixel_width=40,
        pixel_height=30,
        format="png",
        mime_type="image/png",
        colorspace="DeviceRGB",
        bits_per_component=8,
        has_alpha=False,
        file_size_bytes=3600,
        alt_text=alt_text,
        is_decorative=decorative,
        base64=base64,
    )


def codes(issues):
    return [i.code for i in issues]


# ============================================================================
# Unit Tests - Alt Text
# ============================================================================


def test_decorative_image_is_exempt(settings):
    factory = IssueFactory("pdf-alttext")
    assert validators.validate_image(factory, make_image(decorative=True), settings) == []


def test_missing_and_generic_alt_text(settings):
    factory = IssueFactory("pdf-alttext")
    missing = validators.validate_image(factory, make_image(), settings)
    generic = validators.validate_image(factory, make_image("Image."), settings)

    assert codes(missing) == ["MATTERHORN-13-002"]
    assert missing[0].severity is Severity.CRITICAL
    assert missing[0].location == "Page 1, Image 1"
    assert codes(generic) == ["MATTERHORN-13-003"]
    assert generic[0].severity is Severity.SERIOUS
    assert [i.id for i in missing + generic] == ["pdf-alttext-1", "pdf-alttext-2"]


def test_alt_text_quality_and_prefix(settings):
    factory = IssueFactory("pdf-alttext")
    long_alt = validators.validate_image(factory, make_image("x" * 160), settings)
    assert codes(long_alt) == ["ALT-TEXT-QUALITY"]
    assert "too long" in long_alt[0].message
    assert long_alt[0].suggestion == "Shorten the alt text to under 150 characters."

    prefixed = validators.validate_image(factory, make_image("Image of a cat on a mat"), settings)
    assert codes(prefixed) == ["ALT-TEXT-REDUNDANT-PREFIX"]
    assert prefixed[0].severity is Severity.MINOR

    good = validators.validate_image(factory, make_image("Bar chart of 2024 sales"), settings)
    assert good == []


def test_vocabulary_is_configurable(settings):
    settings.generic_alt_text = ["bild"]
    factory = IssueFactory("pdf-alttext")
    assert codes(validators.validate_image(factory, make_image("Bild"), settings)) == [
        "MATTERHORN-13-003"
    ]


# ============================================================================
# Mocked Tests - Alt Text Judge
# ============================================================================


def test_judge_mismatch_is_quality_issue(settings):
    judge = MagicMock()
    judge.assess.return_value = JudgeVerdict(matches_content=False, suggested_alt_text="A bar chart")
    factory = IssueFactory("pdf-alttext")

    issues = validators.validate_image(factory, make_image("Quarterly results"), settings, judge)

    assert codes(issues) == ["ALT-TEXT-QUALITY"]
    assert issues[0].suggestion == "A bar chart"
    judge.assess.assert_called_once()


def test_judge_failure_degrades_gracefully(settings):
    judge = MagicMock()
    judge.assess.side_effect = RuntimeError("service down")
    factory = IssueFactory("pdf-alttext")
    assert validators.validate_image(factory, make_image("Quarterly results"), settings, judge) == []


def test_judge_suggestion_for_missing_alt_needs_payload(settings):
    judge = MagicMock()
    judge.suggest.return_value = "Company logo"
    factory = IssueFactory("pdf-alttext")

    without_payload = validators.validate_image(factory, make_image(), settings, judge)
    with_payload = validators.validate_image(factory, make_image(base64="AAAA"), settings, judge)

    assert without_payload[0].suggestion == validators.MISSING_ALT_RULE.suggestion
    assert with_payload[0].suggestion == "Company logo"
    judge.suggest.assert_called_once()


# ============================================================================
# Unit Tests - Tables
# ============================================================================


def test_single_column_table_is_layout():
    table = TableInfo(id="table_p1_0", page_number=1, row_count=5, column_count=1)
    assert table.layout.score == 50
    assert table.layout.is_layout is True

    tagged = validators.validate_table(IssueFactory("pdf-table"), table, is_tagged=True)
    assert codes(tagged) == ["MATTERHORN-15-005"]
    assert tagged[0].severity is Severity.MODERATE
    assert "single column" in tagged[0].suggestion

    assert validators.validate_table(IssueFactory("pdf-table"), table, is_tagged=False) == []


def test_data_table_without_headers():
    table = TableInfo(
        id="table_p1_0",
        page_number=1,
        row_count=4,
        column_count=3,
        issues=["Table has no header cells (TH). Add row or column headers."],
    )
    issues = validators.validate_table(IssueFactory("pdf-table"), table, is_tagged=False)
    assert codes(issues) == ["MATTERHORN-15-002"]
    assert issues[0].message == "Data table on page 1 has no headers (4×3)"


def test_big_tagged_table_with_header_row_only():
    table = TableInfo(
        id="table_p2_0",
        page_number=2,
        row_count=6,
        column_count=6,
        has_header_row=True,
        issues=["Complex table should have a summary describing its structure."],
    )
    issues = validators.validate_table(IssueFactory("pdf-table"), table, is_tagged=True)
    assert codes(issues) == [
        "TABLE-HEADERS-INCOMPLETE",
        "MATTERHORN-15-004",
        "TABLE-MISSING-SUMMARY",
        "TABLE-ACCESSIBILITY",
    ]


def test_untagged_table_in_tagged_document():
    table = TableInfo(
        id="table_p1_0",
        page_number=1,
        row_count=4,
        column_count=3,
        has_header_row=True,
        issues=["Table content is not tagged as a Table structure element."],
    )
    issues = validators.validate_table(IssueFactory("pdf-table"), table, is_tagged=True)
    assert codes(issues) == ["MATTERHORN-15-001", "MATTERHORN-15-004"]
    assert issues[0].severity is Severity.CRITICAL


# ============================================================================
# Integration Tests - Structure
# ============================================================================


def test_untagged_long_document(settings):
    data = make_text_pdf([(0, (72, 72), "Report body", 12)], pages=12)
    with parse(data, settings=settings) as handle:
        result = validators.validate_structure(handle)

    by_code = {i.code: i for i in result.issues}
    assert by_code["MATTERHORN-01-003"].severity is Severity.CRITICAL
    assert by_code["MATTERHORN-11-001"].severity is Severity.SERIOUS
    assert by_code["WCAG-2.4.2"].severity is Severity.MINOR
    assert by_code["PDF-NO-BOOKMARKS"].severity is Severity.MINOR
    assert by_code["PDF-NO-BOOKMARKS"].message == "Document with 12 pages has no bookmarks"
    assert by_code["MATTERHORN-11-001"].location == "Document metadata"
    assert result.metadata["isTagged"] is False
    assert result.summary.total == len(result.issues)


def test_tagged_document_with_title_and_language(settings):
    base = make_text_pdf([(0, (72, 72), "Body", 12)], metadata={"title": "Guide"})
    data = tag_document(base, lang="en", suspects=True)
    with parse(data, settings=settings) as handle:
        result = validators.validate_structure(handle)

    found = codes(result.issues)
    assert "MATTERHORN-01-003" not in found
    assert "MATTERHORN-11-001" not in found
    assert "WCAG-2.4.2" not in found
    assert "MATTERHORN-01-004" in found
    assert "MATTERHORN-01-002" in found
    assert "PDF-NO-BOOKMARKS" not in found


def test_link_rules(simple_pdf, settings):
    with parse(simple_pdf, settings=settings) as handle:
        semantic = validators.analyze_structure(handle)
        semantic.links = [
            LinkInfo(id="link_p1_0", page_number=1, text=""),
            LinkInfo(id="link_p1_1", page_number=1, text="here", url="https://example.com"),
        ]
        result = validators.validate_structure(handle, semantic)

    assert "MATTERHORN-17-001" in codes(result.issues)
    vague = result.issues[codes(result.issues).index("LINK-NOT-DESCRIPTIVE")]
    assert vague.context == "https://example.com"


def test_issue_ids_are_deterministic(settings):
    data = make_text_pdf(pages=12)
    with parse(data, settings=settings) as handle:
        first = [i.id for i in validators.validate_structure(handle).issues]
        second = [i.id for i in validators.validate_structure(handle).issues]
    assert first == second
    assert first[0] == "pdf-structure-1"


def test_alt_text_validator_on_document(settings):
    content = b"q 100 0 0 50 10 20 cm /Im0 Do Q q 100 0 0 50 10 200 cm /Im1 Do Q"
    data = make_image_pdf(
        content,
        {"Im0": (40, 30), "Im1": (40, 30)},
        figures=[{"alt": "image", "obj": "Im0"}],
    )
    with parse(data, settings=settings) as handle:
        result = validators.validate_alt_text(handle, settings=settings)

    assert codes(result.issues) == ["MATTERHORN-13-003", "MATTERHORN-13-002"]
    assert result.metadata["totalImages"] == 2
    assert result.metadata["imagesWithoutAltText"] == 1
    assert result.metadata["imagesWithQualityIssues"] == 1


def test_image_inside_form_needs_alt_text(settings):
    data = make_form_pdf(b"/Fm0 Do", b"q 40 0 0 30 0 0 cm /Im0 Do Q")
    with parse(data, settings=settings) as handle:
        result = validators.validate_alt_text(handle, settings=settings)

    assert codes(result.issues) == ["MATTERHORN-13-002"]
    assert result.metadata["totalImages"] == 1


# ============================================================================
# Integration Tests - Full Audit
# ============================================================================


def test_calculate_score():
    assert validators.calculate_score(SeverityTally(1, 1, 1, 1, 4)) == 72
    assert validators.calculate_score(SeverityTally(critical=10, total=10)) == 0


def test_deduplicate_keeps_first():
    factory = IssueFactory("pdf-structure")
    a = factory.create(Severity.MINOR, "X", "same", location="Page 1")
    b = factory.create(Severity.MINOR, "X", "same", location="Page 1")
    c = factory.create(Severity.MINOR, "X", "other", location="Page 1")
    assert validators.deduplicate([a, b, c]) == [a, c]


def test_audit_report(settings):
    data = make_text_pdf([(0, (72, 72), "Body", 12)], pages=12)
    with parse(data, settings=settings) as handle:
        report = validators.audit(handle, settings=settings)

    assert set(report.results) == {"pdf-structure", "pdf-alttext", "pdf-table"}
    assert report.validator_errors == {}
    assert report.passed is False
    assert report.summary.total == len(report.issues)
    assert report.score == validators.calculate_score(report.summary)
    assert report.to_dict()["fileName"] == "document.pdf"


def test_failing_validator_is_isolated(simple_pdf, settings):
    with parse(simple_pdf, settings=settings) as handle:
        with patch("pdf_audit.validators.validate_tables", side_effect=RuntimeError("boom")):
            report = validators.audit(handle, settings=settings)

    assert report.validator_errors == {"pdf-table": "boom"}
    assert "pdf-structure" in report.results
    assert "pdf-alttext" in report.results


def test_analysis_failure_still_runs_alt_text(simple_pdf, settings):
    with parse(simple_pdf, settings=settings) as handle:
        with patch("pdf_audit.validators.analyze_structure", side_effect=RuntimeError("bad tree")):
            report = validators.audit(handle, settings=settings)

    assert report.validator_errors == {"analyzer": "bad tree"}
    assert set(report.results) == {"pdf-alttext"}
    assert report.semantic is None
