# cotizador/services/docs_client.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx

from cotizador.config import get_settings
from cotizador.models.schemas import DocumentNode
from cotizador.services.errors import RemoteDocumentError

log = logging.getLogger("docs_client")


class DocumentApi(Protocol):
    """The two remote operations the live-document code needs."""

    async def get_document(self, document_id: str) -> Dict[str, Any]: ...

    async def batch_update(self, document_id: str, requests: List[Dict[str, Any]]) -> Dict[str, Any]: ...


class GoogleDocsClient:
    """
    Thin async client for the Google Docs REST API.
    Every transport or HTTP failure surfaces as RemoteDocumentError; nothing is retried.
    """

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        s = get_settings()
        self.base_url = (base_url or s.google_docs_api_base).rstrip("/")
        self.access_token = access_token if access_token is not None else s.google_docs_access_token
        self.timeout = httpx.Timeout(timeout or s.docs_http_timeout)
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        h = {"Content-Type": "application/json"}
        if self.access_token:
            h["Authorization"] = f"Bearer {self.access_token}"
        return h

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as cx:
                r = await cx.request(method, url, headers=self._headers(), json=json)
                r.raise_for_status()
                return r.json() if r.content else {}
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            log.error("%s %s failed with %s", method, path, status)
            raise RemoteDocumentError(f"{method} {path} returned {status}", status_code=status) from e
        except (httpx.HTTPError, ValueError) as e:
            log.error("%s %s failed: %s", method, path, e)
            raise RemoteDocumentError(f"{method} {path} failed: {e}") from e

    async def get_document(self, document_id: str) -> Dict[str, Any]:
        return await self._request("GET", f"/documents/{document_id}")

    async def batch_update(self, document_id: str, requests: List[Dict[str, Any]]) -> Dict[str, Any]:
        if not requests:
            return {}
        log.debug("batchUpdate %s: %d requests", document_id, len(requests))
        return await self._request(
            "POST", f"/documents/{document_id}:batchUpdate", json={"requests": requests}
        )


# -----------------------------------------------------------------------------
# Document tree helpers
# -----------------------------------------------------------------------------
def _paragraph_text(paragraph: Dict[str, Any]) -> str:
    parts = []
    for el in paragraph.get("elements", []):
        run = el.get("textRun")
        if run:
            parts.append(run.get("content", ""))
    return "".join(parts)


def _table_text(table: Dict[str, Any]) -> str:
    rows = []
    for row in table.get("tableRows", []):
        cells = []
        for cell in row.get("tableCells", []):
            t = "".join(
                _paragraph_text(c["paragraph"]) for c in cell.get("content", []) if "paragraph" in c
            ).strip()
            if t:
                cells.append(t)
        if cells:
            rows.append("\t".join(cells))
    return "\n".join(rows)


def document_nodes(document: Dict[str, Any]) -> List[DocumentNode]:
    """
    Linearize a document's body into paragraph and table nodes with offsets.
    Paragraph text loses its terminating newline; section breaks and tables of
    contents are skipped.
    """
    nodes: List[DocumentNode] = []
    for el in (document.get("body") or {}).get("content", []):
        start = el.get("startIndex", 0)
        end = el.get("endIndex")
        if "paragraph" in el:
            text = _paragraph_text(el["paragraph"])
            if text.endswith("\n"):
                text = text[:-1]
            nodes.append(DocumentNode(kind="paragraph", text=text, start_index=start, end_index=end))
        elif "table" in el:
            nodes.append(
                DocumentNode(kind="table", text=_table_text(el["table"]), start_index=start, end_index=end)
            )
    return nodes


def body_end_index(document: Dict[str, Any]) -> int:
    content = (document.get("body") or {}).get("content", [])
    if not content:
        return 1
    return int(content[-1].get("endIndex", 1))
