# cotizador/routers/documents.py
import logging

from fastapi import APIRouter, Depends, HTTPException

from cotizador.deps import get_docs_client
from cotizador.models.schemas import (
    FormatTemplateRequest,
    FormatTemplateResponse,
    SectionContentResponse,
    SectionsResponse,
    SkeletonRequest,
    UpdateDynamicSectionsRequest,
    UpdateReport,
)
from cotizador.services.docs_client import DocumentApi
from cotizador.services.errors import RemoteDocumentError, SectionNotFoundError
from cotizador.services.live_documents import (
    apply_format_template,
    get_section_content,
    write_merged_sections,
)
from cotizador.services.live_updater import update_dynamic_sections

router = APIRouter(prefix="/documents", tags=["documents"])
logger = logging.getLogger("documents")


def _remote_failure(e: RemoteDocumentError) -> HTTPException:
    logger.error("Remote document API failure: %s", e)
    return HTTPException(status_code=502, detail=f"Remote document API error: {e}")


@router.post("/{document_id}/dynamic-sections", response_model=UpdateReport)
async def update_sections(
    document_id: str,
    req: UpdateDynamicSectionsRequest,
    api: DocumentApi = Depends(get_docs_client),
):
    """
    Replace the body of each listed section in a live document.
    Sections that cannot be located are reported as skipped, not failed.
    A remote failure aborts the pass; re-run the whole request.
    """
    if not req.dynamic_sections:
        raise HTTPException(status_code=400, detail="dynamicSections is empty")
    try:
        return await update_dynamic_sections(api, document_id, req.dynamic_sections)
    except RemoteDocumentError as e:
        raise _remote_failure(e)
    except Exception as e:
        logger.exception("Error updating dynamic sections of %s: %s", document_id, str(e))
        raise HTTPException(status_code=500, detail=f"Server error: {str(e)}")


@router.post("/{document_id}/skeleton", response_model=SectionsResponse)
async def write_skeleton(
    document_id: str,
    req: SkeletonRequest,
    api: DocumentApi = Depends(get_docs_client),
):
    try:
        sections = await write_merged_sections(
            api,
            document_id,
            req.static_document_id,
            req.dynamic_document_id,
            req.template_sections,
            empty_dynamic=req.empty_dynamic,
        )
        return SectionsResponse(count=len(sections), sections=sections)
    except RemoteDocumentError as e:
        raise _remote_failure(e)
    except Exception as e:
        logger.exception("Error writing skeleton into %s: %s", document_id, str(e))
        raise HTTPException(status_code=500, detail=f"Server error: {str(e)}")


@router.get("/{document_id}/sections/{order}/content", response_model=SectionContentResponse)
async def section_content(
    document_id: str,
    order: int,
    api: DocumentApi = Depends(get_docs_client),
):
    try:
        s = await get_section_content(api, document_id, order)
    except SectionNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except RemoteDocumentError as e:
        raise _remote_failure(e)
    except Exception as e:
        logger.exception("Error reading section %s of %s: %s", order, document_id, str(e))
        raise HTTPException(status_code=500, detail=f"Server error: {str(e)}")
    return SectionContentResponse(
        order=s.order,
        title=s.title,
        content=s.content,
        is_static=s.is_static,
        is_dynamic=s.is_dynamic,
    )


@router.post("/{document_id}/format", response_model=FormatTemplateResponse)
async def apply_format(
    document_id: str,
    req: FormatTemplateRequest,
    api: DocumentApi = Depends(get_docs_client),
):
    try:
        requests = await apply_format_template(api, document_id, req.format_template_id)
    except RemoteDocumentError as e:
        raise _remote_failure(e)
    except Exception as e:
        logger.exception("Error applying format template to %s: %s", document_id, str(e))
        raise HTTPException(status_code=500, detail=f"Server error: {str(e)}")
    return FormatTemplateResponse(
        document_id=document_id,
        format_template_id=req.format_template_id,
        requests_applied=len(requests),
        debug={"requests": [next(iter(r)) for r in requests]},
    )
