"""
Image extraction engine.

Three passes per document:

  1. Geometry: replay each page's content stream with a transform stack,
     descending into Form XObjects, and record a placement for every image
     paint (``Do``) together with the image stream it resolved to.
  2. Resources: decode pixel metadata for each image stream, in order of
     first paint, then any unpainted page images sorted by name.
  3. Accessibility: walk the structure tree once, collecting Figure nodes and
     the images they point at, by object identity or marked-content id.

The three are joined into one ImageDescriptor per placed image.
"""

from __future__ import annotations

import base64
import logging
import math
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Tuple

import pymupdf as fitz
import pikepdf

from .config import Settings, get_settings
from .errors import InvalidRange, ResourceCorrupt
from .loader import ParsedDocument
from .models import Box
from .structtree import (
    FIGURE_TAGS,
    ObjGen,
    has_artifact_placement,
    inherited_page,
    is_mcid_value,
    is_struct_elem,
    iter_kids,
    name_str,
    objgen_of,
    page_objgen_map,
    resolve_page,
    text_of,
    walk_struct_tree,
)
from .text_extractor import validate_page_range

logger = logging.getLogger(__name__)

IDENTITY = (1.0, 0.0, 0.0, 1.0, 0.0, 0.0)
IMAGE_ID_RE = re.compile(r"^img_p(\d+)_(\d+)_(.+)$")

# filter name -> (format, mime type); first match in the filter chain wins
FILTER_FORMATS = [
    ("DCTDecode", "jpeg", "image/jpeg"),
    ("JPXDecode", "jpx", "image/jp2"),
    ("JBIG2Decode", "jbig2", "image/jbig2"),
    ("FlateDecode", "png", "image/png"),
    ("LZWDecode", "png", "image/png"),
]


# ============================================================================
# Records
# ============================================================================


@dataclass
class ImagePlacement:
    """One paint of an image resource on a page, in top-left-origin units."""

    name: str
    x: float
    y: float
    width: float
    height: float
    mcid: Optional[int] = None
    is_artifact: bool = False
    # image XObject the name resolved to in its scope, None when unknown
    stream: Any = field(default=None, repr=False, compare=False)


@dataclass
class FigureInfo:
    alt_text: Optional[str]
    is_decorative: bool
    page_number: Optional[int]
    # the structure element itself, for callers that edit it
    node: Any = field(default=None, repr=False, compare=False)


@dataclass
class ImageDescriptor:
    id: str
    page_number: int
    index: int
    name: str
    position: Box
    pixel_width: int
    pixel_height: int
    format: str
    mime_type: str
    colorspace: str
    bits_per_component: int
    has_alpha: bool
    file_size_bytes: int
    alt_text: Optional[str] = None
    is_decorative: bool = False
    base64: Optional[str] = None
    payload_mime_type: Optional[str] = None
    objgen: Optional[ObjGen] = None
    mcid: Optional[int] = None

    @property
    def has_alt_text(self) -> bool:
        return bool(self.alt_text and self.alt_text.strip())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "pageNumber": self.page_number,
            "index": self.index,
            "name": self.name,
            "position": {"x": self.position.x, "y": self.position.y},
            "dimensions": {"width": self.position.width, "height": self.position.height},
            "pixelWidth": self.pixel_width,
            "pixelHeight": self.pixel_height,
            "format": self.format,
            "mimeType": self.mime_type,
            "colorspace": self.colorspace,
            "bitsPerComponent": self.bits_per_component,
            "hasAlpha": self.has_alpha,
            "fileSizeBytes": self.file_size_bytes,
            "altText": self.alt_text,
            "isDecorative": self.is_decorative,
        }


@dataclass
class PageImages:
    page_number: int
    images: List[ImageDescriptor] = field(default_factory=list)

    @property
    def image_count(self) -> int:
        return len(self.images)


@dataclass
class DocumentImages:
    pages: List[PageImages]
    total_images: int = 0
    images_with_alt_text: int = 0
    images_without_alt_text: int = 0
    decorative_images: int = 0
    format_histogram: Dict[str, int] = field(default_factory=dict)

    @property
    def images(self) -> List[ImageDescriptor]:
        return [img for page in self.pages for img in page.images]


@dataclass
class ImageExtractionOptions:
    page_range: Optional[tuple] = None  # (start, end), 1-based inclusive
    include_base64: bool = False
    max_size: Optional[int] = None
    min_size: Optional[int] = None
    formats: Optional[List[str]] = None


# ============================================================================
# Public API
# ============================================================================


def extract_images(
    handle: ParsedDocument,
    options: Optional[ImageExtractionOptions] = None,
    settings: Optional[Settings] = None,
) -> DocumentImages:
    """
    Extract every placed image in the page range with its accessibility data.

    Raises:
        InvalidRange: the page range falls outside the document.
    """
    options = options or ImageExtractionOptions()
    settings = settings or get_settings()
    page_count = handle.structure.page_count
    start, end = options.page_range or (1, page_count)
    validate_page_range(start, end, page_count)

    figures_by_obj, figures_by_mcid = collect_figures(handle.pdf)

    pages = []
    for page_number in range(start, end + 1):
        images = extract_page_images(
            handle, page_number, options, settings, figures_by_obj, figures_by_mcid
        )
        pages.append(PageImages(page_number=page_number, images=images))

    result = summarize(pages)
    logger.info(
        "Extracted %d images (%d with alt text, %d decorative)",
        result.total_images,
        result.images_with_alt_text,
        result.decorative_images,
    )
    return result


def get_image_by_id(
    handle: ParsedDocument,
    image_id: str,
    include_base64: bool = False,
    settings: Optional[Settings] = None,
) -> Optional[ImageDescriptor]:
    """Re-extract the page named in an ``img_p{page}_{index}_{name}`` id and return that image."""
    match = IMAGE_ID_RE.match(image_id)
    if not match:
        return None
    page_number = int(match.group(1))
    options = ImageExtractionOptions(
        page_range=(page_number, page_number),
        include_base64=include_base64,
        min_size=0,
    )
    for image in extract_images(handle, options, settings).images:
        if image.id == image_id:
            return image
    return None


def summarize(pages: List[PageImages]) -> DocumentImages:
    result = DocumentImages(pages=pages)
    for page in pages:
        for image in page.images:
            result.total_images += 1
            result.format_histogram[image.format] = (
                result.format_histogram.get(image.format, 0) + 1
            )
            if image.is_decorative:
                result.decorative_images += 1
            elif image.has_alt_text:
                result.images_with_alt_text += 1
            else:
                result.images_without_alt_text += 1
    return result


# ============================================================================
# Per-page extraction
# ============================================================================


def extract_page_images(
    handle: ParsedDocument,
    page_number: int,
    options: ImageExtractionOptions,
    settings: Settings,
    figures_by_obj: Dict[ObjGen, List[FigureInfo]],
    figures_by_mcid: Dict[Tuple[Optional[int], int], FigureInfo],
) -> List[ImageDescriptor]:
    if page_number < 1 or page_number > len(handle.pdf.pages):
        raise InvalidRange(f"Invalid page number: {page_number}")

    page = handle.pdf.pages[page_number - 1]
    page_height = handle.structure.pages[page_number - 1].height
    xobjects = page_xobjects(page.obj)

    try:
        placements = replay_content_stream(page, page_height, xobjects)
    except (pikepdf.PdfError, ValueError, TypeError) as e:
        logger.warning("Page %d: content stream unreadable, no geometry: %s", page_number, e)
        placements = []

    min_size = settings.image_min_size if options.min_size is None else options.min_size
    max_size = options.max_size or settings.image_max_size
    formats = {f.lower() for f in options.formats} if options.formats else None

    images: List[ImageDescriptor] = []
    # index counts every readable placement so ids survive filtering
    next_index = 0
    for name, stream, instances in group_placements(placements, xobjects):
        try:
            info = read_image_stream(stream)
        except ResourceCorrupt as e:
            logger.warning("Page %d: skipping image %s: %s", page_number, name, e)
            continue
        except Exception as e:
            logger.warning("Page %d: unexpected error reading image %s: %s", page_number, name, e)
            continue

        first_index = next_index
        next_index += len(instances)

        if info["pixel_width"] < min_size or info["pixel_height"] < min_size:
            continue
        if formats is not None and info["format"] not in formats:
            continue

        objgen = objgen_of(stream)
        for offset, placement in enumerate(instances):
            index = first_index + offset
            mcid = placement.mcid if placement is not None else None
            figure = match_figure(page_number, objgen, mcid, figures_by_obj, figures_by_mcid)
            is_decorative = bool(
                (placement is not None and placement.is_artifact)
                or (figure is not None and figure.is_decorative)
            )
            descriptor = ImageDescriptor(
                id=f"img_p{page_number}_{index}_{name}",
                page_number=page_number,
                index=index,
                name=name,
                position=_placement_box(placement),
                alt_text=figure.alt_text if figure else None,
                is_decorative=is_decorative,
                objgen=objgen,
                mcid=mcid,
                **info,
            )
            if options.include_base64 and objgen is not None:
                descriptor.base64, descriptor.payload_mime_type = encode_payload(
                    handle.doc, objgen[0], stream, descriptor, max_size
                )
            images.append(descriptor)

    logger.debug("Page %d: %d images", page_number, len(images))
    return images


def _placement_box(placement: Optional[ImagePlacement]) -> Box:
    if placement is None:
        return Box()
    return Box(
        round(placement.x, 2),
        round(placement.y, 2),
        round(placement.width, 2),
        round(placement.height, 2),
    )


def group_placements(
    placements: List[ImagePlacement], xobjects: Dict[str, Any]
) -> List[Tuple[str, Any, List[Optional[ImagePlacement]]]]:
    """
    Pair each image stream with its placements: [(name, stream, placements)].

    Streams come in order of first paint, so indices follow the content
    stream. Page images that are never painted follow, sorted by name, and
    take any placement whose name resolved to nothing, in paint order.
    """
    groups: List[Tuple[str, Any, List[Optional[ImagePlacement]]]] = []
    position: Dict[Any, int] = {}
    orphans: List[ImagePlacement] = []

    for placement in placements:
        if placement.stream is None:
            orphans.append(placement)
            continue
        key = objgen_of(placement.stream) or placement.name
        if key not in position:
            position[key] = len(groups)
            groups.append((placement.name, placement.stream, []))
        groups[position[key]][2].append(placement)

    for name, xobj in xobjects.items():
        if _subtype(xobj) != "Image":
            continue
        key = objgen_of(xobj) or name
        if key in position:
            continue
        position[key] = len(groups)
        groups.append((name, xobj, [orphans.pop(0)] if orphans else [None]))

    return groups


def match_figure(
    page_number: int,
    objgen: Optional[ObjGen],
    mcid: Optional[int],
    figures_by_obj: Dict[ObjGen, List[FigureInfo]],
    figures_by_mcid: Dict[Tuple[Optional[int], int], FigureInfo],
) -> Optional[FigureInfo]:
    """
    Find the Figure node for one image on one page.

    Object references only count when the referenced object is a resource of
    this page; the caller guarantees that by passing this page's objgen. A
    node pinned to another page never matches. Otherwise the marked-content
    id around the paint is looked up on this page.
    """
    if objgen is not None and objgen in figures_by_obj:
        candidates = figures_by_obj[objgen]
        for figure in candidates:
            if figure.page_number == page_number:
                return figure
        for figure in candidates:
            if figure.page_number is None:
                return figure

    if mcid is not None:
        return figures_by_mcid.get((page_number, mcid))
    return None


# ============================================================================
# Geometry: content stream replay
# ============================================================================


def multiply(t1, t2) -> tuple:
    """Compose two affine matrices [a b c d e f]; t2 is applied first."""
    return (
        t1[0] * t2[0] + t1[2] * t2[1],
        t1[1] * t2[0] + t1[3] * t2[1],
        t1[0] * t2[2] + t1[2] * t2[3],
        t1[1] * t2[2] + t1[3] * t2[3],
        t1[0] * t2[4] + t1[2] * t2[5] + t1[4],
        t1[1] * t2[4] + t1[3] * t2[5] + t1[5],
    )


def placement_from_matrix(name: str, ctm, page_height: float) -> ImagePlacement:
    """Map the unit square through the CTM and flip into top-left-origin units."""
    a, b, c, d, e, f = ctm
    width = math.hypot(a, b)
    height = math.hypot(c, d)
    return ImagePlacement(
        name=name,
        x=e,
        y=page_height - f - height,
        width=width,
        height=height,
    )


def _mcid_of(operands) -> Optional[int]:
    if len(operands) < 2:
        return None
    props = operands[1]
    if not hasattr(props, "get"):
        return None
    mcid = props.get("/MCID")
    return int(mcid) if mcid is not None and is_mcid_value(mcid) else None


def replay_content_stream(
    page, page_height: float, xobjects: Dict[str, Any]
) -> List[ImagePlacement]:
    """
    Walk the page's instructions and return one placement per image paint.

    Tracks q/Q (transform stack), cm (transform), and BDC/BMC/EMC (marked
    content stack) so each placement knows its MCID and artifact status.
    Form XObjects are replayed in place under their /Matrix with their own
    resources; a form that paints itself, directly or not, is skipped.
    """
    placements: List[ImagePlacement] = []
    _replay(
        pikepdf.parse_content_stream(page), IDENTITY, xobjects, page_height, [], placements, set()
    )
    return placements


def _replay(instructions, ctm, xobjects, page_height, marked, placements, active_forms) -> None:
    # marked holds (tag, mcid) per open marked-content sequence
    base = ctm
    ctm_stack: List[tuple] = []

    for operands, operator in instructions:
        op = str(operator)

        if op == "q":
            ctm_stack.append(ctm)
        elif op == "Q":
            # unbalanced Q in broken streams resets to the stream's starting transform
            ctm = ctm_stack.pop() if ctm_stack else base
        elif op == "cm" and len(operands) == 6:
            ctm = multiply(ctm, [float(v) for v in operands])
        elif op == "BDC":
            marked.append((name_str(operands[0]) if operands else "", _mcid_of(operands)))
        elif op == "BMC":
            marked.append((name_str(operands[0]) if operands else "", None))
        elif op == "EMC":
            if marked:
                marked.pop()
        elif op == "Do" and operands:
            name = name_str(operands[0])
            xobj = xobjects.get(name)
            subtype = _subtype(xobj)
            if subtype == "Form":
                _replay_form(
                    name, xobj, ctm, xobjects, page_height, marked, placements, active_forms
                )
                continue
            placement = placement_from_matrix(name, ctm, page_height)
            placement.is_artifact = any(tag == "Artifact" for tag, _ in marked)
            for _, mcid in reversed(marked):
                if mcid is not None:
                    placement.mcid = mcid
                    break
            placement.stream = xobj if subtype == "Image" else None
            placements.append(placement)


def _replay_form(name, form, ctm, xobjects, page_height, marked, placements, active_forms) -> None:
    key = objgen_of(form) or ("name", name)
    if key in active_forms:
        logger.warning("Form XObject %s paints itself, not descending again", name)
        return

    matrix = form.get("/Matrix")
    if matrix is not None and len(matrix) == 6:
        ctm = multiply(ctm, [float(v) for v in matrix])

    resources = form.get("/Resources")
    # forms without /Resources borrow the resources of the stream painting them
    if resources is None:
        scope = xobjects
    else:
        own = resources.get("/XObject")
        scope = _xobject_dict(own) if own is not None else {}

    try:
        instructions = pikepdf.parse_content_stream(form)
    except pikepdf.PdfError as e:
        logger.warning("Form XObject %s unreadable, skipping: %s", name, e)
        return

    active_forms.add(key)
    try:
        _replay(instructions, ctm, scope, page_height, list(marked), placements, active_forms)
    finally:
        active_forms.discard(key)


# ============================================================================
# Resources: pixel metadata
# ============================================================================


def _subtype(xobj) -> str:
    return name_str(xobj.get("/Subtype")) if hasattr(xobj, "get") else ""


def _xobject_dict(xobjects) -> Dict[str, Any]:
    # Dictionary.keys() is a set; sort so resource order never depends on hashing
    names = sorted(name_str(k) for k in xobjects.keys())
    return {name: xobjects.get("/" + name) for name in names}


def page_xobjects(page_obj) -> Dict[str, Any]:
    """
    XObjects visible to a page by name, following /Parent for inherited resources.

    A name defined closer to the page shadows the same name further up the
    tree. Names are in sorted order within each level.
    """
    result: Dict[str, Any] = {}
    visited: Set[ObjGen] = set()

    node = page_obj
    while node is not None:
        key = objgen_of(node)
        if key is not None:
            if key in visited:
                break
            visited.add(key)

        resources = node.get("/Resources")
        xobjects = resources.get("/XObject") if resources is not None else None
        if xobjects is not None:
            for name, xobj in _xobject_dict(xobjects).items():
                result.setdefault(name, xobj)
        node = node.get("/Parent")

    return result


def _filters(stream) -> List[str]:
    raw = stream.get("/Filter")
    if raw is None:
        return []
    if isinstance(raw, pikepdf.Array):
        return [name_str(f) for f in raw]
    return [name_str(raw)]


def detect_format(filters: List[str]) -> Tuple[str, str]:
    for filter_name, fmt, mime in FILTER_FORMATS:
        if filter_name in filters:
            return fmt, mime
    if not filters:
        return "png", "image/png"
    return "unknown", "application/octet-stream"


def _colorspace(stream) -> str:
    cs = stream.get("/ColorSpace")
    if cs is None:
        return "DeviceRGB"
    if isinstance(cs, pikepdf.Array):
        return name_str(cs[0]) if len(cs) else "DeviceRGB"
    return name_str(cs)


def read_image_stream(stream) -> Dict[str, Any]:
    """
    Pixel metadata of one image XObject.

    Raises:
        ResourceCorrupt: dimensions are missing or the stream data is unreadable.
    """
    width = stream.get("/Width")
    height = stream.get("/Height")
    if width is None or height is None:
        raise ResourceCorrupt("image has no /Width or /Height")

    try:
        file_size = len(stream.read_raw_bytes())
    except pikepdf.PdfError as e:
        raise ResourceCorrupt(f"unreadable image data: {e}") from e

    fmt, mime = detect_format(_filters(stream))
    bpc = stream.get("/BitsPerComponent")

    return {
        "pixel_width": int(width),
        "pixel_height": int(height),
        "format": fmt,
        "mime_type": mime,
        "colorspace": _colorspace(stream),
        "bits_per_component": int(bpc) if bpc is not None else 8,
        "has_alpha": stream.get("/SMask") is not None,
        "file_size_bytes": file_size,
    }


def encode_payload(
    doc: fitz.Document, xref: int, stream, image: ImageDescriptor, max_size: int
) -> Tuple[Optional[str], Optional[str]]:
    """
    Base64 pixel payload for JPEG/PNG images.

    JPEGs within the size limit are passed through untouched; everything else
    is decoded with PyMuPDF, converted to RGB if needed, downscaled to fit
    max_size and re-encoded as PNG. Failures leave the payload empty.
    """
    if image.format not in ("jpeg", "png"):
        return None, None

    try:
        if image.format == "jpeg" and max(image.pixel_width, image.pixel_height) <= max_size:
            return base64.b64encode(stream.read_raw_bytes()).decode("ascii"), "image/jpeg"

        pix = fitz.Pixmap(doc, xref)
        if pix.n - pix.alpha >= 4:
            pix = fitz.Pixmap(fitz.csRGB, pix)

        longest = max(pix.width, pix.height)
        if longest > max_size:
            scale = max_size / longest
            pix = fitz.Pixmap(
                pix, max(1, int(pix.width * scale)), max(1, int(pix.height * scale)), None
            )
        return base64.b64encode(pix.tobytes("png")).decode("ascii"), "image/png"
    except Exception as e:
        logger.warning("Could not encode payload for %s: %s", image.id, e)
        return None, None


# ============================================================================
# Accessibility: structure tree figures
# ============================================================================


def collect_figures(
    pdf: pikepdf.Pdf,
) -> Tuple[Dict[ObjGen, List[FigureInfo]], Dict[Tuple[Optional[int], int], FigureInfo]]:
    """
    Walk the structure tree once and index Figure nodes by their targets.

    Returns (by_objgen, by_page_and_mcid). For both, the first node in
    document order wins.
    """
    by_obj: Dict[ObjGen, List[FigureInfo]] = {}
    by_mcid: Dict[Tuple[Optional[int], int], FigureInfo] = {}
    if "/StructTreeRoot" not in pdf.Root:
        return by_obj, by_mcid

    page_map = page_objgen_map(pdf)

    for elem, tag, _ancestors in walk_struct_tree(pdf):
        if tag not in FIGURE_TAGS:
            continue
        try:
            _index_figure(elem, page_map, by_obj, by_mcid)
        except Exception as e:
            logger.warning("Skipping malformed Figure node: %s", e)

    logger.debug("Indexed %d object and %d MCID figure targets", len(by_obj), len(by_mcid))
    return by_obj, by_mcid


def figure_targets(
    elem, page_map: Dict[ObjGen, int]
) -> Tuple[List[Tuple[ObjGen, Optional[int]]], List[Tuple[Optional[int], int]]]:
    """
    What one Figure node points at: ([(objgen, page)], [(page, mcid)]).

    Pages come from the kid's own /Pg when it has one, else from the node
    and its ancestors. An image stream placed directly in /K has no page of
    its own.

    Raises:
        ResourceCorrupt: an object reference has no indirect /Obj.
    """
    page = inherited_page(elem, page_map)
    objects: List[Tuple[ObjGen, Optional[int]]] = []
    mcids: List[Tuple[Optional[int], int]] = []

    for kid in iter_kids(elem):
        if is_mcid_value(kid):
            mcids.append((page, int(kid)))
            continue
        if is_struct_elem(kid) or not hasattr(kid, "get"):
            continue

        kid_type = name_str(kid.get("/Type"))
        if kid_type == "OBJR":
            target = objgen_of(kid.get("/Obj"))
            if target is None:
                raise ResourceCorrupt("OBJR without an indirect /Obj")
            objects.append((target, resolve_page(kid, page_map, page)))
        elif kid_type == "MCR" or kid.get("/MCID") is not None:
            mcid = kid.get("/MCID")
            if mcid is not None and is_mcid_value(mcid):
                mcids.append((resolve_page(kid, page_map, page), int(mcid)))
        elif _subtype(kid) == "Image":
            target = objgen_of(kid)
            if target is not None:
                objects.append((target, page))

    return objects, mcids


def _index_figure(elem, page_map, by_obj, by_mcid) -> None:
    alt = text_of(elem.get("/Alt"))
    if alt is None:
        alt = text_of(elem.get("/ActualText"))
    is_decorative = has_artifact_placement(elem)
    objects, mcids = figure_targets(elem, page_map)

    for target, page in objects:
        by_obj.setdefault(target, []).append(FigureInfo(alt, is_decorative, page, node=elem))
    for page, mcid in mcids:
        by_mcid.setdefault((page, mcid), FigureInfo(alt, is_decorative, page, node=elem))
