"""
Static/dynamic classification of parsed sections.

Precedence: template declaration for the same order, then the in-text marker,
then the dynamic default. A section is never both static and dynamic.
"""
import logging
from typing import Dict, Iterable, List, Optional

from cotizador.models.schemas import Section, TemplateSectionDeclaration

logger = logging.getLogger(__name__)


def declarations_by_order(
    declarations: Optional[Iterable[TemplateSectionDeclaration]],
) -> Dict[int, TemplateSectionDeclaration]:
    by_order: Dict[int, TemplateSectionDeclaration] = {}
    for decl in declarations or []:
        # last declaration for an order wins, mirroring a map build
        by_order[decl.order] = decl
    return by_order


def classify(section: Section, declaration: Optional[TemplateSectionDeclaration] = None) -> Section:
    """Return a copy of section with is_static / is_dynamic finalized."""
    if declaration is not None:
        is_dynamic = declaration.declares_dynamic
    elif section.marker is not None:
        is_dynamic = section.marker == "dynamic"
    else:
        is_dynamic = True
    return section.model_copy(update={"is_dynamic": is_dynamic, "is_static": not is_dynamic})


def resolve_classification(
    sections: Iterable[Section],
    declarations: Optional[Iterable[TemplateSectionDeclaration]] = None,
) -> List[Section]:
    by_order = declarations_by_order(declarations)
    out = [classify(s, by_order.get(s.order)) for s in sections]
    if by_order:
        overridden = sum(
            1 for s in out
            if s.order in by_order and s.marker is not None and (s.marker == "dynamic") != s.is_dynamic
        )
        if overridden:
            logger.info("Template declarations overrode %d in-text markers", overridden)
    return out
