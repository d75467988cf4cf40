# cotizador/routers/sections.py
import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, File, Form, HTTPException, UploadFile

from cotizador.models.schemas import ParseTextRequest, SectionsResponse
from cotizador.services.classifier import resolve_classification
from cotizador.services.errors import ExtractionError
from cotizador.services.section_parser import parse_docx, parse_text
from cotizador.utils.uploads import parse_declarations, read_upload

router = APIRouter(prefix="/sections", tags=["sections"])
logger = logging.getLogger("sections")


@router.post("/parse", response_model=SectionsResponse)
async def parse_sections(
    file: Optional[UploadFile] = File(None),
    text: Optional[str] = Form(None),
    template_sections: Optional[str] = Form("[]"),
):
    """
    Split an uploaded .docx (or raw text) into classified sections.
    Declarations for the same order override in-text markers.
    """
    try:
        declarations = parse_declarations(template_sections)
        if file is not None:
            blob = await read_upload(file, file.filename or "file")
            try:
                sections = await asyncio.to_thread(parse_docx, blob)
            except ExtractionError as e:
                raise HTTPException(status_code=400, detail=str(e))
        elif text and text.strip():
            sections = parse_text(text)
        else:
            raise HTTPException(status_code=400, detail="Provide a .docx file or text")

        sections = resolve_classification(sections, declarations)
        return SectionsResponse(count=len(sections), sections=sections)
    except HTTPException:
        raise
    except Exception as e:
        logger.exception("Error in parse_sections endpoint: %s", str(e))
        raise HTTPException(status_code=500, detail=f"Server error: {str(e)}")


@router.post("/parse-text", response_model=SectionsResponse)
def parse_sections_text(req: ParseTextRequest):
    sections = resolve_classification(parse_text(req.text), req.template_sections)
    return SectionsResponse(count=len(sections), sections=sections)
