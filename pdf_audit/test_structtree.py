import io

import pikepdf
from pikepdf import Array, Dictionary, Name

from pdf_audit import structtree
from pdf_audit.conftest import save

# ============================================================================
# Unit Tests - Kid Classification
# ============================================================================


def test_mcid_kids():
    assert structtree.is_mcid_value(0) is True
    assert structtree.is_mcid_value(17) is True
    assert structtree.is_mcid_value(-1) is False
    assert structtree.is_mcid_value(True) is False
    assert structtree.is_mcid_value(None) is False
    assert structtree.is_mcid_value(Dictionary(Type=Name.MCR, MCID=0)) is False


def test_mcid_read_back_from_saved_tree():
    pdf = pikepdf.new()
    pdf.Root.Sample = Dictionary(K=Array([3, Dictionary(Type=Name.MCR, MCID=4)]))
    with pikepdf.open(io.BytesIO(save(pdf))) as reopened:
        kids = list(reopened.Root.Sample.K)
        assert [structtree.is_mcid_value(k) for k in kids] == [True, False]
        assert structtree.is_mcid_value(kids[1].MCID) is True


def test_single_or_array_values():
    assert structtree.is_pdf_array(Array([1, 2])) is True
    assert structtree.is_pdf_array([Dictionary()]) is True
    assert structtree.is_pdf_array(Dictionary(O=Name.Layout)) is False
    assert structtree.is_pdf_array(5) is False
    assert structtree.is_pdf_array("K") is False


def test_struct_elem_vs_content_references():
    assert structtree.is_struct_elem(Dictionary(S=Name.P)) is True
    assert structtree.is_struct_elem(Dictionary(Type=Name.OBJR, Obj=Dictionary())) is False
    assert structtree.is_struct_elem(Dictionary(Type=Name.MCR, MCID=0)) is False
    assert structtree.is_struct_elem(0) is False
    assert structtree.is_struct_elem(None) is False


def test_name_str():
    assert structtree.name_str(Name.Figure) == "Figure"
    assert structtree.name_str("/H1") == "H1"
    assert structtree.name_str(None) == ""


def test_resolve_role_follows_chain_and_stops_on_cycle():
    role_map = {"Chart": "Diagram", "Diagram": "Figure", "A": "B", "B": "A"}
    assert structtree.resolve_role("Chart", role_map) == "Figure"
    assert structtree.resolve_role("P", role_map) == "P"
    assert structtree.resolve_role("A", role_map) in ("A", "B")


def test_iter_kids_single_and_array():
    assert list(structtree.iter_kids(Dictionary(S=Name.P, K=5))) == [5]
    assert list(structtree.iter_kids(Dictionary(S=Name.P, K=Array([1, 2])))) == [1, 2]
    assert list(structtree.iter_kids(Dictionary(S=Name.P))) == []


# ============================================================================
# Integration Tests - Tree Walking
# ============================================================================


def _tree_pdf(cycle=False):
    pdf = pikepdf.new()
    pdf.add_blank_page()
    root = pdf.make_indirect(Dictionary(Type=Name.StructTreeRoot))
    root.RoleMap = Dictionary(Chart=Name.Figure)
    doc = pdf.make_indirect(Dictionary(S=Name.Document, P=root))
    sect = pdf.make_indirect(Dictionary(S=Name.Sect, P=doc, Pg=pdf.pages[0].obj))
    chart = pdf.make_indirect(Dictionary(S=Name("/Chart"), P=sect))
    sect.K = Array([chart])
    if cycle:
        chart.K = Array([sect])
    doc.K = Array([sect])
    root.K = doc
    pdf.Root.StructTreeRoot = root
    return pdf, chart


def test_walk_struct_tree_resolves_roles_and_ancestors():
    pdf, _chart = _tree_pdf()
    walked = [(tag, ancestors) for _elem, tag, ancestors in structtree.walk_struct_tree(pdf)]
    assert walked == [
        ("Document", []),
        ("Sect", ["Document"]),
        ("Figure", ["Document", "Sect"]),
    ]


def test_walk_struct_tree_survives_cycles():
    pdf, _chart = _tree_pdf(cycle=True)
    tags = [tag for _elem, tag, _a in structtree.walk_struct_tree(pdf)]
    assert tags == ["Document", "Sect", "Figure"]


def test_walk_struct_tree_without_tree():
    pdf = pikepdf.new()
    pdf.add_blank_page()
    assert list(structtree.walk_struct_tree(pdf)) == []


def test_inherited_page_walks_parents():
    pdf, chart = _tree_pdf()
    page_map = structtree.page_objgen_map(pdf)
    assert structtree.inherited_page(chart, page_map) == 1


def test_page_objgen_map_survives_save_and_reopen():
    pdf = pikepdf.new()
    pdf.add_blank_page()
    pdf.add_blank_page()
    with pikepdf.open(io.BytesIO(save(pdf))) as reopened:
        page_map = structtree.page_objgen_map(reopened)
        assert sorted(page_map.values()) == [1, 2]


def test_has_artifact_placement():
    elem = Dictionary(S=Name.Figure, A=Dictionary(Placement=Name.Artifact))
    assert structtree.has_artifact_placement(elem) is True

    # revision numbers interleaved with attribute dicts
    elem = Dictionary(S=Name.Figure, A=Array([Dictionary(O=Name.Layout), 0]))
    assert structtree.has_artifact_placement(elem) is False
