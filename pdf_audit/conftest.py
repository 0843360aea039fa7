"""Shared fixtures: documents are synthesized in memory, never read from disk."""

import io

import pymupdf as fitz
import pikepdf
import pytest
from pikepdf import Array, Dictionary, Name, String

from pdf_audit.config import Settings


def save(pdf: pikepdf.Pdf) -> bytes:
    buffer = io.BytesIO()
    pdf.save(buffer)
    return buffer.getvalue()


def make_text_pdf(lines=(), pages=1, metadata=None, toc=None) -> bytes:
    """
    Build a PDF with PyMuPDF.

    lines: (page_index, (x, y), text, font_size) tuples, y is the baseline.
    """
    doc = fitz.open()
    for _ in range(pages):
        doc.new_page(width=612, height=792)
    for page_index, point, text, size in lines:
        doc[page_index].insert_text(point, text, fontsize=size)
    if metadata:
        doc.set_metadata(metadata)
    if toc:
        doc.set_toc(toc)
    data = doc.tobytes()
    doc.close()
    return data


def add_image(pdf: pikepdf.Pdf, width: int = 40, height: int = 30) -> pikepdf.Stream:
    """An uncompressed RGB image XObject."""
    return pdf.make_indirect(
        pikepdf.Stream(
            pdf,
            b"\x80" * (width * height * 3),
            Type=Name.XObject,
            Subtype=Name.Image,
            Width=width,
            Height=height,
            ColorSpace=Name.DeviceRGB,
            BitsPerComponent=8,
        )
    )


def make_image_pdf(content: bytes, images: dict, figures=None, pages: int = 1) -> bytes:
    """
    Build a pikepdf document whose first page paints ``images`` with ``content``.

    images: resource name -> (width, height)
    figures: list of dicts describing Figure nodes:
        {"alt": str or None, "obj": resource name, "mcid": int, "artifact": bool}
    """
    pdf = pikepdf.new()
    for _ in range(pages):
        pdf.add_blank_page(page_size=(612, 792))
    page = pdf.pages[0]

    streams = {name: add_image(pdf, *size) for name, size in images.items()}
    page.obj.Resources = Dictionary(
        XObject=Dictionary({f"/{name}": stream for name, stream in streams.items()})
    )
    page.obj.Contents = pdf.make_stream(content)

    if figures is not None:
        struct_root = pdf.make_indirect(Dictionary(Type=Name.StructTreeRoot))
        document = pdf.make_indirect(
            Dictionary(Type=Name.StructElem, S=Name.Document, P=struct_root)
        )
        kids = []
        for entry in figures:
            figure = pdf.make_indirect(
                Dictionary(Type=Name.StructElem, S=Name.Figure, P=document, Pg=page.obj)
            )
            if entry.get("alt") is not None:
                figure.Alt = String(entry["alt"])
            if entry.get("artifact"):
                figure.A = Dictionary(O=Name.Layout, Placement=Name.Artifact)
            if "obj" in entry:
                figure.K = Array(
                    [Dictionary(Type=Name.OBJR, Obj=streams[entry["obj"]], Pg=page.obj)]
                )
            elif "mcid" in entry:
                figure.K = entry["mcid"]
            kids.append(figure)
        document.K = Array(kids)
        struct_root.K = document
        pdf.Root.StructTreeRoot = struct_root
        pdf.Root.MarkInfo = Dictionary(Marked=True)

    return save(pdf)


def make_form_pdf(page_content: bytes, form_content: bytes, matrix=None, recursive=False) -> bytes:
    """
    A page that paints Form XObject /Fm0; the form holds a 40x30 image /Im0.

    The image is only in the form's resources. With ``recursive`` the form
    also lists itself as /Fm0.
    """
    pdf = pikepdf.new()
    pdf.add_blank_page(page_size=(612, 792))
    page = pdf.pages[0]

    form = pdf.make_indirect(
        pikepdf.Stream(
            pdf,
            form_content,
            Type=Name.XObject,
            Subtype=Name.Form,
            BBox=Array([0, 0, 612, 792]),
        )
    )
    if matrix is not None:
        form.Matrix = Array(matrix)
    form_xobjects = Dictionary(Im0=add_image(pdf))
    if recursive:
        form_xobjects.Fm0 = form
    form.Resources = Dictionary(XObject=form_xobjects)

    page.obj.Resources = Dictionary(XObject=Dictionary(Fm0=form))
    page.obj.Contents = pdf.make_stream(page_content)
    return save(pdf)


def tag_document(data: bytes, elements=(), lang=None, title=None, suspects=False) -> bytes:
    """
    Mark a document tagged and attach a flat structure tree.

    elements: (tag, page_index, extra dict) tuples appended under Document.
    """
    with pikepdf.open(io.BytesIO(data)) as pdf:
        struct_root = pdf.make_indirect(Dictionary(Type=Name.StructTreeRoot))
        document = pdf.make_indirect(
            Dictionary(Type=Name.StructElem, S=Name.Document, P=struct_root)
        )
        kids = []
        for tag, page_index, extra in elements:
            elem = pdf.make_indirect(
                Dictionary(
                    Type=Name.StructElem,
                    S=Name(f"/{tag}"),
                    P=document,
                    Pg=pdf.pages[page_index].obj,
                )
            )
            for key, value in (extra or {}).items():
                elem[key] = value
            kids.append(elem)
        document.K = Array(kids)
        struct_root.K = document
        pdf.Root.StructTreeRoot = struct_root
        pdf.Root.MarkInfo = Dictionary(Marked=True, Suspects=suspects)
        if lang:
            pdf.Root.Lang = String(lang)
        if title:
            pdf.docinfo["/Title"] = String(title)
        return save(pdf)


@pytest.fixture
def settings():
    return Settings(_env_file=None)


@pytest.fixture
def simple_pdf():
    return make_text_pdf([(0, (72, 72), "Hello world", 12)])
