import io
import zipfile

import pytest
from docx import Document
from lxml import etree

from cotizador.services.errors import (
    PackageFormatError,
    ResourceReconciliationError,
    StructuralMergeError,
)
from cotizador.services.ooxml_merger import PackageMerger, merge_packages

from conftest import PNG_1X1, docx_paragraphs, make_docx, replace_members, zip_members

W = "http://schemas.openxmlformats.org/wordprocessingml/2006/main"
A_BLIP = "{http://schemas.openxmlformats.org/drawingml/2006/main}blip"
R_EMBED = "{http://schemas.openxmlformats.org/officeDocument/2006/relationships}embed"
REL = "{http://schemas.openxmlformats.org/package/2006/relationships}Relationship"
CT = "http://schemas.openxmlformats.org/package/2006/content-types"
RELS = "word/_rels/document.xml.rels"


def _rels(members):
    return {r.get("Id"): r for r in etree.fromstring(members[RELS]).iter(REL)}


def _embeds(members):
    return [b.get(R_EMBED) for b in etree.fromstring(members["word/document.xml"]).iter(A_BLIP)]


def _drop_image_relationship(data: bytes) -> bytes:
    root = etree.fromstring(zip_members(data)[RELS])
    for r in list(root.iter(REL)):
        if r.get("Type", "").endswith("/image"):
            root.remove(r)
    return replace_members(data, {RELS: etree.tostring(root, xml_declaration=True, encoding="UTF-8")})


def test_secondary_content_comes_first():
    static = make_docx(["1. Alcance", "texto fijo"])
    dynamic = make_docx(["2. Costos", "100 USD"])
    result = merge_packages(dynamic, static)
    assert result.data[:4] == b"PK\x03\x04"
    assert zipfile.ZipFile(io.BytesIO(result.data)).testzip() is None
    assert docx_paragraphs(result.data) == ["1. Alcance", "texto fijo", "2. Costos", "100 USD"]


def test_paragraph_count_at_least_inputs():
    a = make_docx(["uno", "dos", "tres"])
    b = make_docx(["cuatro"])
    result = merge_packages(a, b)
    assert result.paragraphs >= max(len(docx_paragraphs(a)), len(docx_paragraphs(b)))
    assert len(docx_paragraphs(result.data)) == 4


def test_single_trailing_sectpr():
    primary = make_docx(["principal"])
    secondary = make_docx(["antes"], extra_section=True)
    members = zip_members(merge_packages(primary, secondary).data)
    root = etree.fromstring(members["word/document.xml"])
    body = root.find(f"{{{W}}}body")
    assert len(list(root.iter(f"{{{W}}}sectPr"))) == 1
    assert body[-1].tag == f"{{{W}}}sectPr"
    assert docx_paragraphs(merge_packages(primary, secondary).data)[-1] == "principal"


def test_image_from_secondary_is_reconciled():
    primary = make_docx(["principal"])
    secondary = make_docx(["con imagen"], image=True)
    prim_ids = set(_rels(zip_members(primary)))

    result = merge_packages(primary, secondary)
    members = zip_members(result.data)
    rels = _rels(members)
    embeds = _embeds(members)

    assert len(embeds) == 1
    rid = embeds[0]
    assert rid not in prim_ids
    assert rels[rid].get("Target") == "media/image1.png"
    assert members["word/media/image1.png"] == PNG_1X1
    assert result.relationships_added == 1
    assert result.parts_copied == ["word/media/image1.png"]
    assert len(Document(io.BytesIO(result.data)).inline_shapes) == 1


def test_identical_media_is_reused():
    primary = make_docx(["principal"], image=True)
    secondary = make_docx(["secundario"], image=True)
    result = merge_packages(primary, secondary)
    members = zip_members(result.data)
    rels = _rels(members)
    embeds = _embeds(members)

    assert result.parts_copied == []
    assert len(embeds) == 2 and len(set(embeds)) == 2
    assert {rels[e].get("Target") for e in embeds} == {"media/image1.png"}


def test_colliding_media_is_renamed():
    other_png = PNG_1X1 + b"\x00trailing"
    primary = make_docx(["principal"], image=True)
    secondary = replace_members(make_docx(["secundario"], image=True), {"word/media/image1.png": other_png})

    result = merge_packages(primary, secondary)
    members = zip_members(result.data)
    rels = _rels(members)
    targets = {rels[e].get("Target") for e in _embeds(members)}

    assert targets == {"media/image1.png", "media/image1_m1.png"}
    assert members["word/media/image1.png"] == PNG_1X1
    assert members["word/media/image1_m1.png"] == other_png
    assert result.parts_copied == ["word/media/image1_m1.png"]


def test_relationship_ids_stay_unique():
    primary = make_docx(["a"], image=True)
    secondary = make_docx(["b"], image=True)
    members = zip_members(merge_packages(primary, secondary).data)
    ids = [r.get("Id") for r in etree.fromstring(members[RELS]).iter(REL)]
    assert len(ids) == len(set(ids))
    rels = _rels(members)
    assert all(e in rels for e in _embeds(members))


def _with_extra_content_types(data: bytes) -> bytes:
    root = etree.fromstring(zip_members(data)["[Content_Types].xml"])
    d = etree.SubElement(root, f"{{{CT}}}Default")
    d.set("Extension", "xyz")
    d.set("ContentType", "application/x-cotizador-test")
    o = etree.SubElement(root, f"{{{CT}}}Override")
    o.set("PartName", "/word/custom.xml")
    o.set("ContentType", "application/vnd.cotizador.custom+xml")
    return replace_members(data, {"[Content_Types].xml": etree.tostring(root, xml_declaration=True, encoding="UTF-8")})


def _declared_types(members):
    root = etree.fromstring(members["[Content_Types].xml"])
    return {el.get("ContentType") for el in root}


def test_content_types_union():
    primary = make_docx(["a"])
    secondary = _with_extra_content_types(make_docx(["b"], image=True))
    merged = zip_members(merge_packages(primary, secondary).data)
    expected = _declared_types(zip_members(primary)) | _declared_types(zip_members(secondary))
    assert expected <= _declared_types(merged)

    root = etree.fromstring(merged["[Content_Types].xml"])
    extensions = [d.get("Extension").lower() for d in root.iter(f"{{{CT}}}Default")]
    assert len(extensions) == len(set(extensions))


def test_markers_stripped_and_marker_only_paragraphs_dropped():
    secondary = make_docx(["1. Alcance [ESTÁTICO]", "[ESTÁTICO]", "texto"])
    primary = make_docx(["2. Plan (DINAMICO)", "nuevo"])
    result = merge_packages(primary, secondary)
    assert docx_paragraphs(result.data) == ["1. Alcance", "texto", "2. Plan", "nuevo"]


def test_marker_stripping_can_be_disabled():
    secondary = make_docx(["1. Alcance [ESTÁTICO]", "[ESTÁTICO]"])
    primary = make_docx(["2. Plan"])
    result = merge_packages(primary, secondary, strip_marker_text=False)
    assert docx_paragraphs(result.data) == ["1. Alcance [ESTÁTICO]", "[ESTÁTICO]", "2. Plan"]


def test_uncompressed_output():
    result = PackageMerger(compress_level=0).merge(make_docx(["a"]), make_docx(["b"]))
    assert docx_paragraphs(result.data) == ["b", "a"]


@pytest.mark.parametrize("bad", [b"", b"not a zip", b"PK\x03\x04garbage"])
def test_non_zip_input(bad):
    with pytest.raises(PackageFormatError):
        merge_packages(make_docx(["a"]), bad)
    with pytest.raises(PackageFormatError):
        merge_packages(bad, make_docx(["a"]))


def test_missing_body_is_structural():
    empty = b'<?xml version="1.0" encoding="UTF-8"?><w:document xmlns:w="%s"/>' % W.encode()
    secondary = replace_members(make_docx(["b"]), {"word/document.xml": empty})
    with pytest.raises(StructuralMergeError):
        merge_packages(make_docx(["a"]), secondary)


def test_missing_primary_relationships_is_structural():
    primary = replace_members(make_docx(["a"]), {RELS: None})
    with pytest.raises(StructuralMergeError):
        merge_packages(primary, make_docx(["b"]))


def test_dangling_relationship_rejected():
    secondary = _drop_image_relationship(make_docx(["b"], image=True))
    with pytest.raises(ResourceReconciliationError):
        merge_packages(make_docx(["a"]), secondary)


def test_secondary_without_relationship_part():
    secondary = replace_members(make_docx(["b"], image=True), {RELS: None})
    with pytest.raises(ResourceReconciliationError):
        merge_packages(make_docx(["a"]), secondary)


def test_marker_only_table_cell_keeps_a_paragraph():
    secondary = make_docx(["1. Alcance"], table=[["[ESTÁTICO]", "fijo"]])
    result = merge_packages(make_docx(["2. Plan"]), secondary)
    root = etree.fromstring(zip_members(result.data)["word/document.xml"])
    cells = list(root.iter(f"{{{W}}}tc"))
    assert len(cells) == 2
    assert all(tc.find(f"{{{W}}}p") is not None for tc in cells)
    table = Document(io.BytesIO(result.data)).tables[0]
    assert [c.text for c in table.rows[0].cells] == ["", "fijo"]


def test_cell_without_paragraph_is_structural():
    secondary = make_docx(["b"], table=[["x"]])
    root = etree.fromstring(zip_members(secondary)["word/document.xml"])
    tc = next(root.iter(f"{{{W}}}tc"))
    for p in tc.findall(f"{{{W}}}p"):
        tc.remove(p)
    secondary = replace_members(secondary, {"word/document.xml": etree.tostring(root, xml_declaration=True, encoding="UTF-8")})
    with pytest.raises(StructuralMergeError):
        merge_packages(make_docx(["a"]), secondary)


def test_stored_archive_when_compression_fails():
    # zlib rejects levels above 9 on the first compressed write
    result = PackageMerger(compress_level=42).merge(make_docx(["a"]), make_docx(["b"]))
    with zipfile.ZipFile(io.BytesIO(result.data)) as zf:
        assert zf.testzip() is None
        assert {i.compress_type for i in zf.infolist()} == {zipfile.ZIP_STORED}
        assert zf.namelist()[0] == "[Content_Types].xml"
    assert docx_paragraphs(result.data) == ["b", "a"]


def test_unreferenced_secondary_media_is_left_behind():
    buf = io.BytesIO(make_docx(["b"]))
    with zipfile.ZipFile(buf, "a") as zf:
        zf.writestr("word/media/unused.png", PNG_1X1)
    result = merge_packages(make_docx(["a"]), buf.getvalue())
    assert "word/media/unused.png" not in zip_members(result.data)
    assert result.parts_copied == [] and result.relationships_added == 0
