# cotizador/services/fallback_builder.py
from __future__ import annotations

import logging
from typing import Iterable, Optional

from docx import Document

from cotizador.config import DEFAULT_DOCUMENT_TITLE
from cotizador.models.schemas import Section
from cotizador.utils.doc_helpers import add_section_heading, add_title_block, document_bytes, set_base_font

logger = logging.getLogger(__name__)


def build_fallback_document(sections: Iterable[Section], title: Optional[str] = None) -> bytes:
    """
    Degraded generation path: render merged sections as plain paragraphs.
    Source formatting, images and page setup are lost.
    """
    doc = Document()
    set_base_font(doc)
    add_title_block(doc, title or DEFAULT_DOCUMENT_TITLE, logger=logger)

    count = 0
    for s in sections:
        add_section_heading(doc, f"{s.order}. {s.title}")
        for line in (s.content or "").split("\n"):
            if line.strip():
                doc.add_paragraph(line.strip())
        count += 1

    data = document_bytes(doc)
    logger.info("Fallback document built: %d sections, %d bytes", count, len(data))
    return data
