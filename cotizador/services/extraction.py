# cotizador/services/extraction.py
from __future__ import annotations

import io
import html
import logging
import zipfile
from dataclasses import dataclass, field
from typing import List

from docx import Document
from docx.opc.exceptions import PackageNotFoundError
from docx.oxml.ns import qn
from docx.table import Table
from docx.text.paragraph import Paragraph

from cotizador.models.schemas import DocumentNode
from cotizador.services.errors import ExtractionError

logger = logging.getLogger(__name__)


@dataclass
class ExtractedDocument:
    text: str
    html: str
    nodes: List[DocumentNode] = field(default_factory=list)

    @property
    def lines(self) -> List[str]:
        return self.text.split("\n") if self.text else []


def _table_text(table: Table) -> str:
    rows: List[str] = []
    for row in table.rows:
        cells = []
        for cell in row.cells:
            t = cell.text.strip()
            # merged cells repeat the same cell object across the row
            if t and (not cells or cells[-1] != t):
                cells.append(t)
        if cells:
            rows.append("\t".join(cells))
    return "\n".join(rows)


def extract_document(data: bytes) -> ExtractedDocument:
    """
    Read a Word package and linearize its body in document order.
    Paragraphs become paragraph nodes; tables become a single table node whose
    text is tab-separated cells, one row per line.
    """
    if not data:
        raise ExtractionError("Empty document")
    try:
        doc = Document(io.BytesIO(data))
    except (zipfile.BadZipFile, PackageNotFoundError, KeyError, ValueError) as e:
        raise ExtractionError(f"Not a readable Word package: {e}") from e

    nodes: List[DocumentNode] = []
    for child in doc.element.body.iterchildren():
        if child.tag == qn("w:p"):
            nodes.append(DocumentNode(kind="paragraph", text=Paragraph(child, doc).text))
        elif child.tag == qn("w:tbl"):
            t = _table_text(Table(child, doc))
            if t:
                nodes.append(DocumentNode(kind="table", text=t))

    text = "\n".join(n.text for n in nodes)
    html_parts = []
    for n in nodes:
        if not n.text.strip():
            continue
        body = "<br/>".join(html.escape(line) for line in n.text.split("\n"))
        html_parts.append(f"<p>{body}</p>")
    logger.debug("Extracted %d nodes (%d chars)", len(nodes), len(text))
    return ExtractedDocument(text=text, html="\n".join(html_parts), nodes=nodes)
