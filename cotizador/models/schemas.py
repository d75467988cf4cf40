from typing import List, Optional, Dict, Any, Literal
from pydantic import BaseModel, Field, ConfigDict

# ---------- Section models ----------
#
# Notes:
# - Section is created fresh on every parse pass and never persisted.
# - Merge stages work on copies (model_copy); inputs are never mutated.
# - start_index / end_index only exist for documents parsed with offsets and go
#   stale after any edit to that document.
#

Marker = Literal["static", "dynamic"]
Source = Literal["static", "dynamic"]


class Section(BaseModel):
    # Sequence number as found in the title ("3. Arquitectura" -> 3).
    # Not unique inside one document; unique only after an order merge.
    order: int
    title: str
    content: str = ""

    is_static: bool = False
    is_dynamic: bool = True

    # Explicit in-text marker, if any. The resolver uses this to tell a marked
    # section from a defaulted one.
    marker: Optional[Marker] = None

    # Offsets in the current state of a live document.
    start_index: Optional[int] = None
    end_index: Optional[int] = None

    # True for the synthesized "Introducción" section that has no title node.
    implicit: bool = False

    # Set by the order merge.
    source: Optional[Source] = None


class DocumentNode(BaseModel):
    # A body element of an index-addressed document, linearized to text.
    kind: Literal["paragraph", "table"] = "paragraph"
    text: str
    start_index: Optional[int] = None
    end_index: Optional[int] = None


class TemplateSectionDeclaration(BaseModel):
    # Persisted template declaration; accepted in both snake and camel case
    # because the persistence layer stores camelCase JSON.
    order: int
    title: str = ""
    is_static: bool = Field(False, alias="isStatic")
    is_dynamic: bool = Field(False, alias="isDynamic")

    model_config = ConfigDict(populate_by_name=True)

    @property
    def declares_dynamic(self) -> bool:
        return self.is_dynamic or not self.is_static


class DynamicSectionUpdate(BaseModel):
    order: int
    title: str = ""
    content: str = ""


# ---------- Live-document results ----------

class SkippedSection(BaseModel):
    order: int
    reason: str


class UpdateReport(BaseModel):
    document_id: str
    updated: List[int] = Field(default_factory=list)
    skipped: List[SkippedSection] = Field(default_factory=list)
    # number of remote batches issued; one per updated section
    batches: int = 0


# ---------- Requests ----------

class ParseTextRequest(BaseModel):
    text: str
    template_sections: List[TemplateSectionDeclaration] = Field(
        default_factory=list, alias="templateSections"
    )

    model_config = ConfigDict(populate_by_name=True)


class UpdateDynamicSectionsRequest(BaseModel):
    dynamic_sections: List[DynamicSectionUpdate] = Field(..., alias="dynamicSections")

    model_config = ConfigDict(populate_by_name=True)


class SkeletonRequest(BaseModel):
    static_document_id: str = Field(..., alias="staticDocumentId")
    dynamic_document_id: str = Field(..., alias="dynamicDocumentId")
    template_sections: List[TemplateSectionDeclaration] = Field(
        default_factory=list, alias="templateSections"
    )
    # False reproduces the plain merge (dynamic content kept)
    empty_dynamic: bool = Field(True, alias="emptyDynamic")

    model_config = ConfigDict(populate_by_name=True)


class FormatTemplateRequest(BaseModel):
    format_template_id: str = Field(..., alias="formatTemplateId")

    model_config = ConfigDict(populate_by_name=True)


# ---------- Responses ----------

class SectionsResponse(BaseModel):
    count: int
    sections: List[Section]


class SectionContentResponse(BaseModel):
    order: int
    title: str
    content: str
    is_static: bool
    is_dynamic: bool


class FormatTemplateResponse(BaseModel):
    document_id: str
    format_template_id: str
    requests_applied: int
    debug: Optional[Dict[str, Any]] = None
