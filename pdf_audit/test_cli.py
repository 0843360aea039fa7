import json

import pytest

from pdf_audit import cli
from pdf_audit.conftest import make_text_pdf, tag_document
from pdf_audit.models import IssueFactory, Severity, SeverityTally
from pdf_audit.validators import AuditReport


@pytest.fixture
def pdf_file(tmp_path, simple_pdf):
    path = tmp_path / "letter.pdf"
    path.write_bytes(simple_pdf)
    return path


# ============================================================================
# Unit Tests - Report Formatting
# ============================================================================


def test_format_audit_report_groups_by_category():
    factory = IssueFactory("pdf")
    issues = [
        factory.create(
            Severity.CRITICAL, "MATTERHORN-01-003", "PDF is not tagged", category="structure"
        ),
        factory.create(
            Severity.MINOR,
            "WCAG-2.4.2",
            "Document title is not present in metadata",
            location="Document metadata",
            category="metadata",
        ),
        factory.create(Severity.MODERATE, "CUSTOM-1", "Something odd"),
    ]
    summary = SeverityTally.from_issues(issues)
    report = AuditReport(file_name="a.pdf", issues=issues, summary=summary, score=60)

    text = cli.format_audit_report(report, page_count=2)

    assert "Pages: 2" in text
    assert "Score: 60/100" in text
    assert text.index("Document Structure:") < text.index("Metadata:") < text.index("Other:")
    assert "[CRITICAL] MATTERHORN-01-003: PDF is not tagged" in text
    assert "(Document metadata)" in text
    assert "  Critical: 1" in text
    assert text.endswith("This PDF has blocking accessibility issues.")


def test_format_clean_report_with_symbols():
    report = AuditReport(file_name="a.pdf", issues=[], summary=SeverityTally(), score=100)
    text = cli.format_audit_report(report, page_count=1, use_symbols=True)
    assert text.endswith("No accessibility issues found.")


# ============================================================================
# Mocked Integration Tests - Command Line
# ============================================================================


def test_audit_untagged_document(pdf_file, capsys):
    assert cli.main([str(pdf_file)]) == 1
    out = capsys.readouterr().out
    assert "Document: letter.pdf" in out
    assert "MATTERHORN-01-003" in out
    assert "Remediation:" not in out


def test_json_output(pdf_file, capsys):
    assert cli.main(["--json", str(pdf_file)]) == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["fileName"] == "letter.pdf"
    assert payload["pages"] == 1
    assert "MATTERHORN-01-003" in [i["code"] for i in payload["issues"]]


def test_fix_writes_remediated_copy(pdf_file, capsys):
    cli.main(["--fix", str(pdf_file)])
    out = capsys.readouterr().out

    output = pdf_file.with_name("letter_remediated.pdf")
    assert output.exists()
    assert output.read_bytes().startswith(b"%PDF-")
    assert "Remediation:" in out
    assert f"Written: {output}" in out


def test_fix_json_reports_remediation(pdf_file, capsys):
    cli.main(["-j", "-f", str(pdf_file)])
    payload = json.loads(capsys.readouterr().out)
    assert payload["remediation"]["success"] is True
    assert payload["remediation"]["output"].endswith("letter_remediated.pdf")


def test_tagged_titled_document_passes(tmp_path, capsys):
    data = tag_document(make_text_pdf([(0, (72, 72), "Hello", 12)]), lang="en", title="Hi")
    path = tmp_path / "ok.pdf"
    path.write_bytes(data)
    assert cli.main([str(path)]) == 0


@pytest.mark.parametrize(
    "argv,message",
    [
        ([], "Error: no PDF file given"),
        (["missing.pdf"], "Error: File not found: missing.pdf"),
    ],
)
def test_argument_errors(argv, message, capsys):
    assert cli.main(argv) == 1
    assert message in capsys.readouterr().out


def test_rejects_non_pdf(tmp_path, capsys):
    path = tmp_path / "notes.txt"
    path.write_text("hello")
    assert cli.main([str(path)]) == 1
    assert "Unsupported file type: .txt" in capsys.readouterr().out


def test_reports_unreadable_pdf(tmp_path, capsys):
    path = tmp_path / "broken.pdf"
    path.write_bytes(b"this is not a pdf")
    assert cli.main([str(path)]) == 1
    assert "Error:" in capsys.readouterr().out


def test_help(capsys):
    assert cli.main(["--help"]) == 0
    assert "Usage:" in capsys.readouterr().out
