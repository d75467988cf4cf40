# cotizador/services/order_merge.py
from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from cotizador.models.schemas import Section, TemplateSectionDeclaration
from cotizador.services.classifier import resolve_classification
from cotizador.utils.text import collapse_spaces

logger = logging.getLogger(__name__)


def _same_title(a: str, b: str) -> bool:
    return collapse_spaces(a).casefold() == collapse_spaces(b).casefold()


def merge_by_order(
    static_sections: Iterable[Section],
    dynamic_sections: Iterable[Section],
) -> List[Section]:
    """
    Merge two section sequences keyed by order.
    - static sections go in first, tagged source="static"
    - dynamic sections overwrite any entry with the same order, tagged source="dynamic"
    - result is ascending by order, no duplicates
    A section missing from one side is kept from the other.
    """
    static_list = list(static_sections)
    dynamic_list = list(dynamic_sections)
    by_order: Dict[int, Section] = {}

    for s in static_list:
        by_order[s.order] = s.model_copy(update={"source": "static"})

    for s in dynamic_list:
        existing = by_order.get(s.order)
        if existing is not None and existing.source == "static" and not _same_title(existing.title, s.title):
            # titles are not validated on collision; surface it instead
            logger.warning(
                "Order %d collision with different titles: static=%r dynamic=%r (dynamic wins)",
                s.order, existing.title, s.title,
            )
        by_order[s.order] = s.model_copy(update={"source": "dynamic"})

    merged = [by_order[k] for k in sorted(by_order)]
    logger.info(
        "Merged sections: %d (%d static, %d dynamic)",
        len(merged), len(static_list), len(dynamic_list),
    )
    return merged


def merge_with_empty_dynamic(
    static_sections: Iterable[Section],
    dynamic_sections: Iterable[Section],
    declarations: Optional[Iterable[TemplateSectionDeclaration]] = None,
) -> List[Section]:
    """
    Skeleton variant used when creating a fresh in-progress document.
    Static sections keep their content; every section classified dynamic
    (by declaration, marker or default) has its content cleared.
    """
    merged = resolve_classification(merge_by_order(static_sections, dynamic_sections), declarations)
    out: List[Section] = []
    for s in merged:
        if s.is_dynamic:
            s = s.model_copy(update={"content": ""})
        out.append(s)
    logger.info(
        "Skeleton sections: %d (%d left empty)",
        len(out), sum(1 for s in out if s.is_dynamic),
    )
    return out
