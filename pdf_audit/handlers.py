"""
Deterministic fix handlers, keyed by issue code.

Every handler takes (pdf, task, context), edits the shared pikepdf document in
place, and returns a ModificationResult describing what changed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import pikepdf
from pikepdf import OutlineItem

from .config import Settings, get_settings
from .errors import HandlerMissing

logger = logging.getLogger(__name__)

BOOKMARK_TITLE_LIMIT = 80


@dataclass
class ModificationResult:
    success: bool
    description: str
    before: Optional[str] = None
    after: Optional[str] = None
    error: Optional[str] = None


@dataclass
class HandlerContext:
    """Per-run inputs handlers may need beyond the document itself."""

    file_name: str = "document.pdf"
    settings: Settings = field(default_factory=get_settings)
    # (level, title, 0-based page index), in reading order
    headings: List[Tuple[int, str, int]] = field(default_factory=list)


Handler = Callable[[pikepdf.Pdf, Any, HandlerContext], ModificationResult]

_HANDLERS: Dict[str, Handler] = {}


def register(*codes: str):
    """Register a handler function for one or more issue codes."""

    def decorator(func: Handler) -> Handler:
        for code in codes:
            _HANDLERS[code] = func
            logger.debug("Registered handler %s for %s", func.__name__, code)
        return func

    return decorator


def get_handler(code: str) -> Handler:
    try:
        return _HANDLERS[code]
    except KeyError:
        raise HandlerMissing(code) from None


def has_handler(code: str) -> bool:
    return code in _HANDLERS


def registered_codes() -> List[str]:
    return sorted(_HANDLERS)


def _text(value) -> Optional[str]:
    return str(value) if value is not None else None


def _info(pdf: pikepdf.Pdf) -> pikepdf.Dictionary:
    info = pdf.trailer.get("/Info")
    if info is None:
        info = pdf.make_indirect(pikepdf.Dictionary())
        pdf.trailer.Info = info
    return info


# ============================================================================
# Catalog flags
# ============================================================================


@register("MATTERHORN-01-003", "MATTERHORN-01-001")
def set_marked_flag(pdf: pikepdf.Pdf, task, context: HandlerContext) -> ModificationResult:
    """
    Declare the document tagged: MarkInfo /Marked true, and an empty
    structure tree root with a Document element when none exists.
    """
    mark_info = pdf.Root.get("/MarkInfo")
    before = bool(mark_info.get("/Marked", False)) if mark_info is not None else False

    if mark_info is None:
        pdf.Root.MarkInfo = pikepdf.Dictionary(Marked=True)
    else:
        mark_info.Marked = True

    if "/StructTreeRoot" not in pdf.Root:
        struct_root = pdf.make_indirect(
            pikepdf.Dictionary(
                Type=pikepdf.Name.StructTreeRoot,
                ParentTree=pdf.make_indirect(pikepdf.Dictionary(Nums=pikepdf.Array())),
            )
        )
        document = pdf.make_indirect(
            pikepdf.Dictionary(
                Type=pikepdf.Name.StructElem,
                S=pikepdf.Name.Document,
                P=struct_root,
                K=pikepdf.Array(),
            )
        )
        struct_root.K = document
        pdf.Root.StructTreeRoot = struct_root

    return ModificationResult(
        success=True,
        description="Set MarkInfo Marked flag",
        before=str(before).lower(),
        after="true",
    )


@register("MATTERHORN-01-004", "MATTERHORN-01-005")
def set_suspects_flag(pdf: pikepdf.Pdf, task, context: HandlerContext) -> ModificationResult:
    mark_info = pdf.Root.get("/MarkInfo")
    before = bool(mark_info.get("/Suspects", False)) if mark_info is not None else False

    if mark_info is None:
        pdf.Root.MarkInfo = pikepdf.Dictionary(Suspects=False)
    else:
        mark_info.Suspects = False

    return ModificationResult(
        success=True,
        description="Cleared MarkInfo Suspects flag",
        before=str(before).lower(),
        after="false",
    )


@register("MATTERHORN-01-002")
def set_display_doc_title(pdf: pikepdf.Pdf, task, context: HandlerContext) -> ModificationResult:
    if "/ViewerPreferences" not in pdf.Root:
        pdf.Root.ViewerPreferences = pikepdf.Dictionary()
    prefs = pdf.Root.ViewerPreferences
    before = bool(prefs.get("/DisplayDocTitle", False))
    prefs.DisplayDocTitle = True

    return ModificationResult(
        success=True,
        description="Enabled DisplayDocTitle viewer preference",
        before=str(before).lower(),
        after="true",
    )


# ============================================================================
# Metadata
# ============================================================================


@register("MATTERHORN-11-001", "PDF-NO-LANGUAGE")
def add_language(pdf: pikepdf.Pdf, task, context: HandlerContext) -> ModificationResult:
    before = _text(pdf.Root.get("/Lang"))
    language = context.settings.default_language
    pdf.Root.Lang = pikepdf.String(language)

    with pdf.open_metadata() as meta:
        meta["dc:language"] = {language}

    return ModificationResult(
        success=True,
        description=f"Set document language to {language}",
        before=before,
        after=language,
    )


def _xmp_title(pdf: pikepdf.Pdf) -> Optional[str]:
    with pdf.open_metadata(set_pikepdf_as_editor=False, update_docinfo=False) as meta:
        title = meta.get("dc:title")
    return str(title).strip() if title else None


@register("WCAG-2.4.2", "PDF-NO-TITLE")
def add_title(pdf: pikepdf.Pdf, task, context: HandlerContext) -> ModificationResult:
    """Title from existing XMP, then the file name stem, then a placeholder."""
    info = pdf.trailer.get("/Info")
    before = _text(info.get("/Title")) if info is not None else None

    title = _xmp_title(pdf) or Path(context.file_name).stem.strip() or "Untitled Document"

    _info(pdf)["/Title"] = pikepdf.String(title)
    with pdf.open_metadata() as meta:
        meta["dc:title"] = title

    return ModificationResult(
        success=True,
        description=f'Set document title to "{title}"',
        before=before,
        after=title,
    )


@register("PDF-NO-CREATOR")
def add_creator(pdf: pikepdf.Pdf, task, context: HandlerContext) -> ModificationResult:
    info = _info(pdf)
    before = _text(info.get("/Creator"))
    creator = context.settings.default_creator
    info["/Creator"] = pikepdf.String(creator)

    return ModificationResult(
        success=True,
        description=f"Set creator to {creator}",
        before=before,
        after=creator,
    )


@register("PDF-NO-METADATA", "MATTERHORN-07-001")
def add_metadata(pdf: pikepdf.Pdf, task, context: HandlerContext) -> ModificationResult:
    """Write an XMP packet mirroring the Info dictionary plus the PDF/UA identifier."""
    before = "present" if "/Metadata" in pdf.Root else None

    with pdf.open_metadata() as meta:
        meta.load_from_docinfo(pdf.docinfo)
        meta["pdfuaid:part"] = "1"

    return ModificationResult(
        success=True,
        description="Added XMP metadata with PDF/UA identifier",
        before=before,
        after="present",
    )


# ============================================================================
# Navigation
# ============================================================================


@register("PDF-NO-BOOKMARKS")
def generate_bookmarks(pdf: pikepdf.Pdf, task, context: HandlerContext) -> ModificationResult:
    """Rebuild the outline from detected headings (H1-H3)."""
    headings = [
        (level, title, page) for level, title, page in context.headings if level <= 3
    ]
    if not headings:
        return ModificationResult(
            success=False,
            description="No headings available to build bookmarks from",
            error="no headings",
        )

    page_limit = len(pdf.pages) - 1
    with pdf.open_outline() as outline:
        outline.root.clear()

        stack: List[Tuple[int, OutlineItem]] = []
        for level, title, page_idx in headings:
            if len(title) > BOOKMARK_TITLE_LIMIT:
                title = title[: BOOKMARK_TITLE_LIMIT - 3] + "..."
            item = OutlineItem(title, min(max(page_idx, 0), page_limit))

            while stack and stack[-1][0] >= level:
                stack.pop()

            if stack:
                stack[-1][1].children.append(item)
            else:
                outline.root.append(item)

            stack.append((level, item))

    return ModificationResult(
        success=True,
        description=f"Generated {len(headings)} bookmarks from headings",
        before="0",
        after=str(len(headings)),
    )
