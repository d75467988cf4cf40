# cotizador/utils/uploads.py
from __future__ import annotations
import json
from typing import List, Optional

from fastapi import HTTPException, UploadFile
from pydantic import ValidationError

from cotizador.config import get_settings
from cotizador.models.schemas import TemplateSectionDeclaration


async def read_upload(f: Optional[UploadFile], label: str) -> bytes:
    """Read an uploaded file fully, enforcing the configured size limit."""
    if f is None:
        raise HTTPException(status_code=400, detail=f"Missing file: {label}")
    limit = get_settings().max_upload_bytes
    blob = await f.read(limit + 1)
    if not blob:
        raise HTTPException(status_code=400, detail=f"Empty file: {label}")
    if len(blob) > limit:
        raise HTTPException(status_code=413, detail=f"{label} exceeds {limit} bytes")
    return blob


def parse_declarations(raw: Optional[str]) -> List[TemplateSectionDeclaration]:
    """Template declarations arrive as a JSON array in a form field."""
    if not raw or not raw.strip():
        return []
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise HTTPException(status_code=400, detail=f"template_sections is not valid JSON: {e}")
    if isinstance(data, dict):
        data = [data]
    if not isinstance(data, list):
        raise HTTPException(status_code=400, detail="template_sections must be a JSON array")
    try:
        return [TemplateSectionDeclaration.model_validate(d) for d in data]
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=f"Invalid template_sections: {e}")
