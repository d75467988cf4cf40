from __future__ import annotations
import io
from docx import Document
from docx.shared import Pt, RGBColor
from docx.enum.text import WD_ALIGN_PARAGRAPH
from docx.enum.table import WD_TABLE_ALIGNMENT as _WD_TABLE_ALIGNMENT
from docx.oxml import OxmlElement
from docx.oxml.ns import qn

ACCENT = RGBColor(59, 118, 166)
ACCENT_HEX = "3b76a6"


def set_base_font(doc: Document, name: str = "Calibri", size: int = 11) -> None:
    normal = doc.styles["Normal"]
    normal.font.name = name
    normal.font.size = Pt(size)
    # East-Asian font slot, otherwise Word keeps its own default there
    rpr = normal.element.get_or_add_rPr()
    fonts = rpr.find(qn("w:rFonts"))
    if fonts is None:
        fonts = OxmlElement("w:rFonts"); rpr.append(fonts)
    fonts.set(qn("w:eastAsia"), name)


def shade_cell(cell, fill: str) -> None:
    tcPr = cell._tc.get_or_add_tcPr()
    shd = OxmlElement("w:shd"); shd.set(qn("w:val"), "clear"); shd.set(qn("w:fill"), fill); tcPr.append(shd)


def add_title_block(doc: Document, title: str, logger=None) -> None:
    """
    Single shaded cell with the document title, centered.
    Styling failures are logged and the plain title is kept.
    """
    table = doc.add_table(rows=1, cols=1)
    table.alignment = _WD_TABLE_ALIGNMENT.CENTER
    cell = table.rows[0].cells[0]
    try:
        shade_cell(cell, ACCENT_HEX)
    except Exception as ex:
        if logger: logger.warning(f"Failed to style title cell: {ex}")
    p = cell.paragraphs[0]
    p.alignment = WD_ALIGN_PARAGRAPH.CENTER
    r = p.add_run(title); r.bold = True; r.font.size = Pt(24); r.font.color.rgb = RGBColor(255, 255, 255)
    spacer = doc.add_paragraph(); spacer.paragraph_format.space_after = Pt(12)


def add_section_heading(doc: Document, text: str):
    h = doc.add_heading(text, level=1)
    for r in h.runs:
        r.font.color.rgb = ACCENT
    return h


def document_bytes(document: Document) -> bytes:
    buf = io.BytesIO()
    document.save(buf)
    return buf.getvalue()
