# cotizador/routers/merge.py
import asyncio
import logging
from typing import List, Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import Response

from cotizador.config import DEFAULT_DOCUMENT_TITLE
from cotizador.models.schemas import Section, TemplateSectionDeclaration
from cotizador.services.classifier import resolve_classification
from cotizador.services.errors import ExtractionError, MergeError
from cotizador.services.fallback_builder import build_fallback_document
from cotizador.services.ooxml_merger import merge_packages
from cotizador.services.order_merge import merge_by_order
from cotizador.services.section_parser import parse_docx
from cotizador.utils.text import sanitize_filename
from cotizador.utils.timeit import timeit
from cotizador.utils.uploads import parse_declarations, read_upload

router = APIRouter(prefix="/merge", tags=["merge"])
logger = logging.getLogger("merge")

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"


def _fallback_sections(
    static_blob: bytes,
    dynamic_blob: bytes,
    declarations: List[TemplateSectionDeclaration],
) -> List[Section]:
    merged = merge_by_order(parse_docx(static_blob), parse_docx(dynamic_blob))
    return resolve_classification(merged, declarations)


def _build_fallback(static_blob: bytes, dynamic_blob: bytes, declarations, title: str) -> bytes:
    return build_fallback_document(_fallback_sections(static_blob, dynamic_blob, declarations), title)


@router.post("/docx")
async def merge_docx(
    static_file: UploadFile = File(...),
    dynamic_file: UploadFile = File(...),
    template_sections: Optional[str] = Form("[]"),
    title: Optional[str] = Form(None),
    strip_markers: Optional[str] = Form("true"),
):
    """
    Merge a static (boilerplate) and a dynamic (per-client) Word document.
    The dynamic package keeps its styles and page setup; static content is
    placed first. If the package merge fails the sections are rebuilt as a
    plain document instead, and X-Merge-Strategy says so.
    """
    try:
        static_blob = await read_upload(static_file, "static_file")
        dynamic_blob = await read_upload(dynamic_file, "dynamic_file")
        declarations = parse_declarations(template_sections)
        strip = str(strip_markers).lower() in ("1", "true", "yes", "on")
        doc_title = (title or DEFAULT_DOCUMENT_TITLE).strip() or DEFAULT_DOCUMENT_TITLE

        strategy = "ooxml"
        try:
            with timeit("merge_docx.ooxml"):
                result = await asyncio.to_thread(merge_packages, dynamic_blob, static_blob, strip)
            data = result.data
        except MergeError as e:
            logger.warning("Package merge failed (%s: %s); using fallback builder", type(e).__name__, e)
            strategy = "fallback"
            try:
                with timeit("merge_docx.fallback"):
                    data = await asyncio.to_thread(
                        _build_fallback, static_blob, dynamic_blob, declarations, doc_title
                    )
            except ExtractionError as ex:
                raise HTTPException(status_code=400, detail=f"Unreadable Word document: {ex}")

        filename = f"{sanitize_filename(doc_title)}.docx"
        return Response(
            content=data,
            media_type=DOCX_MEDIA_TYPE,
            headers={
                "Content-Disposition": f'attachment; filename="{filename}"',
                "X-Merge-Strategy": strategy,
            },
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error in merge_docx endpoint: %s", str(e))
        raise HTTPException(status_code=500, detail=f"Server error: {str(e)}")
