import os

os.environ.setdefault("REFETCH_DELAY_SECONDS", "0")

import io
import base64
import zipfile
from typing import Any, Dict, List, Optional

import pytest
from docx import Document

from cotizador.services.errors import RemoteDocumentError

PNG_1X1 = base64.b64decode(
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAYAAAAfFcSJAAAADUlEQVR42mNkYPhfDwAChwGA60e6kgAAAABJRU5ErkJggg=="
)


# -----------------------------------------------------------------------------
# Index-addressed document fake
# -----------------------------------------------------------------------------
class FakeDocsApi:
    """
    In-memory stand-in for the remote document API.

    A document is a flat string addressed from index 1; the body always ends
    with a newline that cannot be deleted. Deletes and inserts shift every
    later index, like the real service.
    """

    def __init__(self):
        self.texts: Dict[str, str] = {}
        self.styles: Dict[str, Dict[str, Any]] = {}
        self.batches: List[tuple] = []
        self.gets = 0
        self.fail_on_batch = False

    def add(self, document_id: str, text: str, **style: Any) -> None:
        if not text.endswith("\n"):
            text += "\n"
        self.texts[document_id] = text
        self.styles[document_id] = style

    def text(self, document_id: str) -> str:
        return self.texts[document_id]

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        self.gets += 1
        if document_id not in self.texts:
            raise RemoteDocumentError(f"GET /documents/{document_id} returned 404", status_code=404)
        text = self.texts[document_id]
        content: List[Dict[str, Any]] = [{"endIndex": 1, "sectionBreak": {"sectionStyle": {}}}]
        idx = 1
        for line in text.split("\n")[:-1]:
            end = idx + len(line) + 1
            content.append({
                "startIndex": idx,
                "endIndex": end,
                "paragraph": {
                    "elements": [{"startIndex": idx, "endIndex": end, "textRun": {"content": line + "\n"}}]
                },
            })
            idx = end
        doc = {"documentId": document_id, "body": {"content": content}}
        doc.update(self.styles.get(document_id, {}))
        return doc

    async def batch_update(self, document_id: str, requests: List[Dict[str, Any]]) -> Dict[str, Any]:
        if self.fail_on_batch:
            raise RemoteDocumentError("POST batchUpdate returned 500", status_code=500)
        self.batches.append((document_id, requests))
        text = self.texts[document_id]
        for r in requests:
            if "deleteContentRange" in r:
                rng = r["deleteContentRange"]["range"]
                s, e = rng["startIndex"], rng["endIndex"]
                assert 1 <= s < e <= len(text), f"bad delete range [{s}, {e}) for {len(text)} chars"
                text = text[: s - 1] + text[e - 1:]
            elif "insertText" in r:
                i = r["insertText"]["location"]["index"]
                assert 1 <= i <= len(text), f"bad insert index {i} for {len(text)} chars"
                text = text[: i - 1] + r["insertText"]["text"] + text[i - 1:]
        self.texts[document_id] = text
        return {"documentId": document_id, "replies": [{} for _ in requests]}


@pytest.fixture
def docs_api() -> FakeDocsApi:
    return FakeDocsApi()


# -----------------------------------------------------------------------------
# Word package builders
# -----------------------------------------------------------------------------
def make_docx(
    paragraphs: List[str],
    image: bool = False,
    table: Optional[List[List[str]]] = None,
    extra_section: bool = False,
) -> bytes:
    doc = Document()
    for text in paragraphs:
        doc.add_paragraph(text)
    if table:
        t = doc.add_table(rows=len(table), cols=len(table[0]))
        for r, row in enumerate(table):
            for c, value in enumerate(row):
                t.cell(r, c).text = value
    if image:
        doc.add_picture(io.BytesIO(PNG_1X1))
    if extra_section:
        doc.add_section()
        doc.add_paragraph("after break")
    buf = io.BytesIO()
    doc.save(buf)
    return buf.getvalue()


def zip_members(data: bytes) -> Dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


def replace_members(data: bytes, replacements: Dict[str, Optional[bytes]]) -> bytes:
    """Rewrite a package with some members replaced (None drops the member)."""
    buf = io.BytesIO()
    with zipfile.ZipFile(io.BytesIO(data)) as zin, zipfile.ZipFile(buf, "w", zipfile.ZIP_DEFLATED) as zout:
        for info in zin.infolist():
            if info.filename in replacements:
                blob = replacements[info.filename]
                if blob is not None:
                    zout.writestr(info.filename, blob)
            else:
                zout.writestr(info.filename, zin.read(info.filename))
    return buf.getvalue()


def docx_paragraphs(data: bytes) -> List[str]:
    return [p.text for p in Document(io.BytesIO(data)).paragraphs]
