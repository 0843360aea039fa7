"""
Document loader.

Opens raw PDF bytes with two views of the same file:

  * pikepdf, the object model (catalog, MarkInfo, structure tree, XObjects)
  * PyMuPDF (fitz), the content view (pages, text spans, links, outline)

and computes the DocumentStructure snapshot once, eagerly.
"""

from __future__ import annotations

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pymupdf as fitz
import pikepdf

from .config import Settings, get_settings
from .errors import InvalidFormat, TooLarge

logger = logging.getLogger(__name__)

PdfSource = Union[bytes, bytearray, str, Path]

PDF_DATE_RE = re.compile(
    r"D:(\d{4})(\d{2})?(\d{2})?(\d{2})?(\d{2})?(\d{2})?"
)


# ============================================================================
# Structure snapshot
# ============================================================================


@dataclass
class PageInfo:
    page_number: int
    width: float
    height: float
    rotation: int = 0
    has_annotations: bool = False
    annotation_count: int = 0


@dataclass
class OutlineItem:
    title: str
    destination: Optional[int] = None
    children: List["OutlineItem"] = field(default_factory=list)


@dataclass
class DocumentMetadata:
    title: Optional[str] = None
    author: Optional[str] = None
    subject: Optional[str] = None
    keywords: Optional[List[str]] = None
    creator: Optional[str] = None
    producer: Optional[str] = None
    creation_date: Optional[datetime] = None
    modification_date: Optional[datetime] = None
    language: Optional[str] = None
    pdf_version: str = "1.4"
    is_encrypted: bool = False
    is_linearized: bool = False
    is_tagged: bool = False
    is_suspect: bool = False
    has_outline: bool = False
    has_acroform: bool = False
    has_xfa: bool = False
    display_doc_title: bool = False


@dataclass
class DocumentStructure:
    page_count: int
    pages: List[PageInfo]
    metadata: DocumentMetadata
    outline: Optional[List[OutlineItem]] = None


# ============================================================================
# Parsed handle
# ============================================================================


class ParsedDocument:
    """
    Both views of one document plus its structure snapshot.

    Owned by the caller for one pipeline run. Close it exactly once, or use it
    as a context manager.
    """

    def __init__(
        self,
        data: bytes,
        pdf: pikepdf.Pdf,
        doc: fitz.Document,
        structure: DocumentStructure,
        file_name: str = "document.pdf",
    ):
        self.data = data
        self.pdf = pdf
        self.doc = doc
        self.structure = structure
        self.file_name = file_name
        self.closed = False

    @property
    def file_size(self) -> int:
        return len(self.data)

    @property
    def page_count(self) -> int:
        return self.structure.page_count

    def close(self) -> None:
        if self.closed:
            logger.debug("Handle for %s already closed", self.file_name)
            return
        self.closed = True
        try:
            self.doc.close()
        finally:
            self.pdf.close()

    def __enter__(self) -> "ParsedDocument":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


# ============================================================================
# Parsing
# ============================================================================


def _read_source(source: PdfSource, settings: Settings) -> tuple:
    """Return (bytes, file_name), enforcing the size ceiling before any parse."""
    limit = settings.max_file_size_bytes

    if isinstance(source, (bytes, bytearray)):
        data = bytes(source)
        if len(data) > limit:
            raise TooLarge(
                f"PDF file exceeds maximum size of {settings.max_file_size_mb}MB",
                limit=limit,
                actual=len(data),
            )
        return data, "document.pdf"

    path = Path(source)
    size = path.stat().st_size
    if size > limit:
        raise TooLarge(
            f"PDF file exceeds maximum size of {settings.max_file_size_mb}MB",
            limit=limit,
            actual=size,
        )
    return path.read_bytes(), path.name


def parse(
    source: PdfSource,
    file_name: Optional[str] = None,
    settings: Optional[Settings] = None,
) -> ParsedDocument:
    """
    Open a PDF and compute its structure snapshot.

    Args:
        source: Raw bytes, or a path to a PDF file.
        file_name: Display name; defaults to the path name or "document.pdf".
        settings: Ceilings to enforce; defaults to the environment settings.

    Raises:
        TooLarge: byte size or page count exceeds the configured ceiling.
        InvalidFormat: either view cannot open the bytes.
    """
    settings = settings or get_settings()
    data, default_name = _read_source(source, settings)
    file_name = file_name or default_name

    try:
        pdf = pikepdf.open(io.BytesIO(data))
    except Exception as e:
        raise InvalidFormat(f"Failed to parse PDF object model: {e}", view="pikepdf") from e

    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        pdf.close()
        raise InvalidFormat(f"Failed to parse PDF content: {e}", view="fitz") from e

    try:
        structure = extract_structure(pdf, doc)
    except Exception as e:
        doc.close()
        pdf.close()
        raise InvalidFormat(f"Malformed document structure: {e}", view="pikepdf") from e

    if structure.page_count > settings.max_pages:
        doc.close()
        pdf.close()
        raise TooLarge(
            f"PDF exceeds maximum page count of {settings.max_pages}",
            limit=settings.max_pages,
            actual=structure.page_count,
        )

    logger.info(
        "Parsed %s: %d pages, %d bytes, tagged=%s",
        file_name,
        structure.page_count,
        len(data),
        structure.metadata.is_tagged,
    )
    return ParsedDocument(data, pdf, doc, structure, file_name=file_name)


def close(handle: ParsedDocument) -> None:
    handle.close()


# ============================================================================
# Structure extraction
# ============================================================================


def extract_structure(pdf: pikepdf.Pdf, doc: fitz.Document) -> DocumentStructure:
    metadata = extract_metadata(pdf, doc)
    pages = extract_page_info(pdf, doc)
    outline = extract_outline(doc)

    return DocumentStructure(
        page_count=len(doc),
        pages=pages,
        metadata=metadata,
        outline=outline or None,
    )


def _info_value(pdf: pikepdf.Pdf, fitz_meta: Dict[str, Any], key: str, info_key: str):
    value = fitz_meta.get(key) if fitz_meta else None
    if value:
        return str(value)
    info = pdf.trailer.get("/Info")
    if info is None:
        return None
    info_value = info.get(info_key)
    if info_value is not None and str(info_value):
        return str(info_value)
    return None


def extract_metadata(pdf: pikepdf.Pdf, doc: fitz.Document) -> DocumentMetadata:
    fitz_meta = doc.metadata or {}
    root = pdf.Root

    mark_info = root.get("/MarkInfo")
    is_tagged = bool(mark_info is not None and mark_info.get("/Marked", False))
    is_suspect = bool(mark_info is not None and mark_info.get("/Suspects", False))

    lang = root.get("/Lang")
    language = str(lang) if lang is not None and str(lang).strip() else None

    acroform = root.get("/AcroForm")
    has_acroform = acroform is not None
    has_xfa = bool(has_acroform and "/XFA" in acroform)

    viewer_prefs = root.get("/ViewerPreferences")
    display_doc_title = bool(
        viewer_prefs is not None and viewer_prefs.get("/DisplayDocTitle", False)
    )

    creation = _info_value(pdf, fitz_meta, "creationDate", "/CreationDate")
    modified = _info_value(pdf, fitz_meta, "modDate", "/ModDate")

    return DocumentMetadata(
        title=_info_value(pdf, fitz_meta, "title", "/Title"),
        author=_info_value(pdf, fitz_meta, "author", "/Author"),
        subject=_info_value(pdf, fitz_meta, "subject", "/Subject"),
        keywords=parse_keywords(_info_value(pdf, fitz_meta, "keywords", "/Keywords")),
        creator=_info_value(pdf, fitz_meta, "creator", "/Creator"),
        producer=_info_value(pdf, fitz_meta, "producer", "/Producer"),
        creation_date=parse_pdf_date(creation),
        modification_date=parse_pdf_date(modified),
        language=language,
        pdf_version=str(pdf.pdf_version or "1.4"),
        is_encrypted=bool(pdf.is_encrypted),
        is_linearized=bool(pdf.is_linearized),
        is_tagged=is_tagged,
        is_suspect=is_suspect,
        has_outline=len(doc.get_toc(simple=True)) > 0,
        has_acroform=has_acroform,
        has_xfa=has_xfa,
        display_doc_title=display_doc_title,
    )


def extract_page_info(pdf: pikepdf.Pdf, doc: fitz.Document) -> List[PageInfo]:
    pages = []
    for index, page in enumerate(doc):
        annots = None
        if index < len(pdf.pages):
            annots = pdf.pages[index].obj.get("/Annots")
        annotation_count = len(annots) if annots is not None else 0

        pages.append(
            PageInfo(
                page_number=index + 1,
                width=page.rect.width,
                height=page.rect.height,
                rotation=page.rotation,
                has_annotations=annotation_count > 0,
                annotation_count=annotation_count,
            )
        )
    return pages


def extract_outline(doc: fitz.Document) -> List[OutlineItem]:
    """Rebuild the outline tree from PyMuPDF's flat [level, title, page] list."""
    roots: List[OutlineItem] = []
    stack: List[tuple] = []  # (level, item)

    for entry in doc.get_toc(simple=True):
        level, title, page = entry[0], entry[1], entry[2]
        item = OutlineItem(
            title=title or "Untitled",
            destination=page if page and page > 0 else None,
        )

        while stack and stack[-1][0] >= level:
            stack.pop()

        if stack:
            stack[-1][1].children.append(item)
        else:
            roots.append(item)

        stack.append((level, item))

    return roots


def parse_keywords(keywords: Optional[str]) -> Optional[List[str]]:
    if not keywords:
        return None
    parts = [k.strip() for k in re.split(r"[,;]", keywords)]
    return [k for k in parts if k] or None


def parse_pdf_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a PDF date string (D:YYYYMMDDHHmmSS) or ISO timestamp; None if unparsable."""
    if not value:
        return None

    match = PDF_DATE_RE.search(value)
    if match:
        year, month, day, hour, minute, second = match.groups()
        try:
            return datetime(
                int(year),
                int(month or 1),
                int(day or 1),
                int(hour or 0),
                int(minute or 0),
                int(second or 0),
                tzinfo=timezone.utc,
            )
        except ValueError:
            return None

    try:
        return datetime.fromisoformat(value)
    except ValueError:
        return None
