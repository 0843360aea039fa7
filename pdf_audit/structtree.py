"""
pikepdf helpers for walking the logical structure tree.

Every object is identified by its (object number, generation) pair, never by
Python identity or dictionary equality, so traversal stays cycle-safe and
two equal-looking resources on different pages are never confused.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

import pikepdf

logger = logging.getLogger(__name__)

ObjGen = Tuple[int, int]

HEADING_TAGS = {"H", "H1", "H2", "H3", "H4", "H5", "H6"}
FIGURE_TAGS = {"Figure", "Image"}


# ============================================================================
# Type checks
# ============================================================================


def is_mcid_value(val) -> bool:
    """A marked-content id as it appears in /K or /MCID: a non-negative integer."""
    return isinstance(val, int) and not isinstance(val, bool) and val >= 0


def is_pdf_array(val) -> bool:
    """/K, /A and friends hold either one entry or an array of them."""
    return isinstance(val, (pikepdf.Array, list, tuple))


def is_struct_elem(elem) -> bool:
    """Structure elements carry /S; MCR and OBJR kids and bare MCIDs do not."""
    return isinstance(elem, pikepdf.Dictionary) and "/S" in elem


def objgen_of(obj) -> Optional[ObjGen]:
    """(num, gen) of an indirect object, None for direct objects."""
    try:
        objgen = obj.objgen
    except AttributeError:
        return None
    if not objgen or objgen == (0, 0):
        return None
    return tuple(objgen)


def name_str(value) -> str:
    """'/Figure' -> 'Figure'."""
    if value is None:
        return ""
    return str(value).lstrip("/")


def text_of(value) -> Optional[str]:
    """Decode a PDF text string (literal or hex, PDFDocEncoding or UTF-16)."""
    if value is None:
        return None
    try:
        text = str(value)
    except (TypeError, ValueError) as e:
        logger.warning("Undecodable text string: %s", e)
        return None
    return text


# ============================================================================
# Role map and tree walking
# ============================================================================


def read_role_map(struct_tree) -> Dict[str, str]:
    role_map: Dict[str, str] = {}
    if struct_tree is None:
        return role_map
    raw = struct_tree.get("/RoleMap")
    if raw is None or not hasattr(raw, "keys"):
        return role_map
    for key in raw.keys():
        role_map[name_str(key)] = name_str(raw.get(key))
    return role_map


def resolve_role(tag: str, role_map: Dict[str, str]) -> str:
    """Follow RoleMap entries until a standard type or a cycle is reached."""
    seen: Set[str] = set()
    while tag in role_map and tag not in seen:
        seen.add(tag)
        tag = role_map[tag]
    return tag


def iter_kids(elem) -> Iterator[Any]:
    """Yield the entries of /K whether it is a single value or an array."""
    try:
        kids = elem.get("/K")
    except (TypeError, ValueError):
        return
    if kids is None:
        return
    if is_pdf_array(kids):
        for kid in kids:
            yield kid
    else:
        yield kids


def walk_struct_tree(pdf: pikepdf.Pdf):
    """
    Depth-first walk of the structure tree.

    Yields (elem, resolved_tag, ancestors) for every structure element, where
    ancestors is the list of resolved tags above it. Elements already visited
    (by objgen) are skipped.
    """
    struct_tree = pdf.Root.get("/StructTreeRoot")
    if struct_tree is None:
        return
    role_map = read_role_map(struct_tree)
    visited: Set[ObjGen] = set()

    def visit(elem, ancestors: List[str]):
        if not is_struct_elem(elem):
            return
        key = objgen_of(elem)
        if key is not None:
            if key in visited:
                return
            visited.add(key)

        tag = resolve_role(name_str(elem.get("/S")), role_map)
        yield elem, tag, ancestors

        child_ancestors = ancestors + [tag]
        for kid in iter_kids(elem):
            if is_struct_elem(kid):
                yield from visit(kid, child_ancestors)

    for top in iter_kids(struct_tree):
        yield from visit(top, [])


def page_objgen_map(pdf: pikepdf.Pdf) -> Dict[ObjGen, int]:
    """Map page object identity to 1-based page number."""
    mapping: Dict[ObjGen, int] = {}
    for idx, page in enumerate(pdf.pages):
        key = objgen_of(page.obj)
        if key is not None:
            mapping[key] = idx + 1
    return mapping


def resolve_page(elem, page_map: Dict[ObjGen, int], current: Optional[int]) -> Optional[int]:
    pg = elem.get("/Pg") if hasattr(elem, "get") else None
    if pg is None:
        return current
    return page_map.get(objgen_of(pg), current)


def has_artifact_placement(elem) -> bool:
    """True when an attached attribute object declares /Placement /Artifact."""
    attrs = elem.get("/A")
    if attrs is None:
        return False
    candidates = list(attrs) if is_pdf_array(attrs) else [attrs]
    for attr in candidates:
        if not hasattr(attr, "get"):
            continue  # revision numbers sit between attribute dicts
        if name_str(attr.get("/Placement")) == "Artifact":
            return True
    return False


def inherited_page(elem, page_map: Dict[ObjGen, int]) -> Optional[int]:
    """/Pg of the element or of its nearest ancestor (via /P) that has one."""
    visited: Set[ObjGen] = set()
    node = elem
    while node is not None and hasattr(node, "get"):
        page = resolve_page(node, page_map, None)
        if page is not None:
            return page
        key = objgen_of(node)
        if key is not None:
            if key in visited:
                break
            visited.add(key)
        node = node.get("/P")
    return None
