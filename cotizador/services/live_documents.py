# cotizador/services/live_documents.py
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from cotizador.models.schemas import Section, TemplateSectionDeclaration
from cotizador.services.classifier import resolve_classification
from cotizador.services.docs_client import DocumentApi, body_end_index, document_nodes
from cotizador.services.errors import SectionNotFoundError
from cotizador.services.order_merge import merge_by_order, merge_with_empty_dynamic
from cotizador.services.section_parser import parse_nodes

logger = logging.getLogger(__name__)

# Document-level fields copied from a format template
DOCUMENT_STYLE_FIELDS = (
    "marginTop",
    "marginBottom",
    "marginLeft",
    "marginRight",
    "pageNumberStart",
    "pageSize",
)
_READ_ONLY_STYLE_KEYS = {"namedStyleType", "headingId"}


async def read_sections(api: DocumentApi, document_id: str) -> List[Section]:
    document = await api.get_document(document_id)
    return parse_nodes(document_nodes(document))


def render_sections(sections: Iterable[Section]) -> str:
    """Plain-text rendering, one "N. Title" paragraph then the body per section."""
    parts = [f"{s.order}. {s.title}\n{s.content}\n" for s in sections]
    return "".join(parts)


async def write_merged_sections(
    api: DocumentApi,
    target_id: str,
    static_id: str,
    dynamic_id: str,
    declarations: Optional[Iterable[TemplateSectionDeclaration]] = None,
    empty_dynamic: bool = True,
) -> List[Section]:
    """
    Merge a static and a dynamic source document and write the result into the
    target, replacing its body. With empty_dynamic the dynamic sections are
    written as empty placeholders for the live updater to fill later.
    """
    declarations = list(declarations or [])
    static_sections = await read_sections(api, static_id)
    dynamic_sections = await read_sections(api, dynamic_id)

    if empty_dynamic:
        merged = merge_with_empty_dynamic(static_sections, dynamic_sections, declarations)
    else:
        merged = resolve_classification(merge_by_order(static_sections, dynamic_sections), declarations)

    target = await api.get_document(target_id)
    end = body_end_index(target)

    requests: List[Dict[str, Any]] = []
    if end - 1 > 1:
        requests.append({"deleteContentRange": {"range": {"startIndex": 1, "endIndex": end - 1}}})
    text = render_sections(merged)
    # the target's own final newline closes the last paragraph
    if text.endswith("\n"):
        text = text[:-1]
    if text:
        requests.append({"insertText": {"location": {"index": 1}, "text": text}})

    await api.batch_update(target_id, requests)
    logger.info(
        "Wrote %d sections into %s (static=%s dynamic=%s empty_dynamic=%s)",
        len(merged), target_id, static_id, dynamic_id, empty_dynamic,
    )
    return merged


async def get_section_content(api: DocumentApi, document_id: str, order: int) -> Section:
    sections = await read_sections(api, document_id)
    for s in sections:
        if s.order == order:
            return s
    raise SectionNotFoundError(order, [s.order for s in sections])


def _normal_text_style(template: Dict[str, Any]) -> Dict[str, Any]:
    for style in (template.get("namedStyles") or {}).get("styles", []):
        if style.get("namedStyleType") == "NORMAL_TEXT":
            return style
    return {}


async def apply_format_template(api: DocumentApi, document_id: str, template_id: str) -> List[Dict[str, Any]]:
    """
    Copy page setup and the NORMAL_TEXT paragraph/text style of a format
    template onto a document. Returns the requests applied.
    """
    template = await api.get_document(template_id)
    target = await api.get_document(document_id)

    requests: List[Dict[str, Any]] = []
    doc_style = template.get("documentStyle") or {}
    fields = [f for f in DOCUMENT_STYLE_FIELDS if f in doc_style]
    if fields:
        requests.append({
            "updateDocumentStyle": {
                "documentStyle": {f: doc_style[f] for f in fields},
                "fields": ",".join(fields),
            }
        })

    end = body_end_index(target)
    if end - 1 > 1:
        body_range = {"startIndex": 1, "endIndex": end - 1}
        normal = _normal_text_style(template)

        paragraph_style = {
            k: v for k, v in (normal.get("paragraphStyle") or {}).items() if k not in _READ_ONLY_STYLE_KEYS
        }
        if paragraph_style:
            requests.append({
                "updateParagraphStyle": {
                    "range": body_range,
                    "paragraphStyle": paragraph_style,
                    "fields": ",".join(sorted(paragraph_style)),
                }
            })

        text_style = normal.get("textStyle") or {}
        if text_style:
            requests.append({
                "updateTextStyle": {
                    "range": body_range,
                    "textStyle": text_style,
                    "fields": ",".join(sorted(text_style)),
                }
            })

    if requests:
        await api.batch_update(document_id, requests)
    logger.info("Format template %s applied to %s: %d requests", template_id, document_id, len(requests))
    return requests
