# cotizador/services/live_updater.py
"""
Replace the body of dynamic sections inside a live, index-addressed document.

Every edit shifts the offsets of everything after it, so the updater never
reuses offsets across edits. It runs as a small state machine:

    FETCH -> LOCATE -> EDIT -> REFETCH -> LOCATE -> ... -> DONE

EDIT always hands over to REFETCH; a section is only ever located against a
document state fetched after the previous edit.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from cotizador.config import get_settings
from cotizador.models.schemas import DocumentNode, DynamicSectionUpdate, Section, SkippedSection, UpdateReport
from cotizador.services.docs_client import DocumentApi, body_end_index, document_nodes
from cotizador.services.section_parser import clean_title, parse_nodes
from cotizador.utils.text import collapse_spaces

logger = logging.getLogger(__name__)


class UpdaterState(str, Enum):
    FETCH = "fetch"
    LOCATE = "locate"
    EDIT = "edit"
    REFETCH = "refetch"
    DONE = "done"


@dataclass
class SectionEdit:
    """Resolved edit for one section against one document state."""
    order: int
    insert_at: int
    delete_end: int
    text: str
    requests: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class _Run:
    document_id: str
    pending: List[DynamicSectionUpdate]
    report: UpdateReport
    nodes: List[DocumentNode] = field(default_factory=list)
    sections: List[Section] = field(default_factory=list)
    body_end: int = 1
    edit: Optional[SectionEdit] = None


def _title_key(title: str) -> str:
    return collapse_spaces(title).casefold()


def find_section(sections: List[Section], update: DynamicSectionUpdate) -> Tuple[Optional[Section], str]:
    """
    Pick the section an update targets. Several sections can share an order
    once earlier replacements add numbered lines, so a given title decides
    between them. Returns (section, "") or (None, skip reason).
    """
    candidates = [s for s in sections if s.order == update.order]
    if not candidates:
        return None, "section not found"
    if update.title.strip():
        wanted = _title_key(clean_title(update.title, update.order))
        for s in candidates:
            if _title_key(s.title) == wanted:
                return s, ""
        return None, "title text drifted"
    if len(candidates) > 1:
        return None, "ambiguous section order"
    return candidates[0], ""


def _near(nodes: List[DocumentNode], index: int, tolerance: int) -> Optional[DocumentNode]:
    best = None
    for n in nodes:
        if n.kind != "paragraph" or n.start_index is None:
            continue
        d = abs(n.start_index - index)
        if d <= tolerance and (best is None or d < abs(best.start_index - index)):
            best = n
    return best


def plan_section_edit(
    section: Section,
    content: str,
    sections: List[Section],
    nodes: List[DocumentNode],
    body_end: int,
    tolerance: int,
) -> Optional[SectionEdit]:
    """
    Build the delete/insert requests that replace one section's body.
    Returns None when the section's title cannot be located.
    """
    if section.start_index is None:
        return None

    if section.implicit:
        insert_at = section.start_index
    else:
        title_node = _near(nodes, section.start_index, tolerance)
        if title_node is None or title_node.end_index is None:
            return None
        insert_at = title_node.end_index

    following = sorted(
        (s for s in sections if s.start_index is not None and s.start_index > section.start_index),
        key=lambda s: s.start_index,
    )
    if following:
        nxt = following[0]
        boundary = _near(nodes, nxt.start_index, tolerance)
        delete_end = boundary.start_index if boundary is not None else nxt.start_index
        runs_to_end = False
    else:
        # the body's final newline cannot be deleted
        delete_end = body_end - 1
        runs_to_end = True

    body = (content or "").strip()
    requests: List[Dict[str, Any]] = []
    if delete_end > insert_at:
        requests.append(
            {"deleteContentRange": {"range": {"startIndex": insert_at, "endIndex": delete_end}}}
        )

    text = ""
    location = insert_at
    if body:
        if insert_at >= body_end:
            # title is the last paragraph: start a new one before the final newline
            location = body_end - 1
            text = "\n" + body
        elif runs_to_end:
            text = body
        else:
            text = body + "\n"
        requests.append({"insertText": {"location": {"index": location}, "text": text}})

    return SectionEdit(
        order=section.order,
        insert_at=location,
        delete_end=delete_end,
        text=text,
        requests=requests,
    )


class LiveSectionUpdater:
    def __init__(
        self,
        api: DocumentApi,
        tolerance: Optional[int] = None,
        refetch_delay: Optional[float] = None,
    ):
        s = get_settings()
        self.api = api
        self.tolerance = s.section_index_tolerance if tolerance is None else tolerance
        self.refetch_delay = s.refetch_delay_seconds if refetch_delay is None else refetch_delay
        self._handlers = {
            UpdaterState.FETCH: self._fetch,
            UpdaterState.LOCATE: self._locate,
            UpdaterState.EDIT: self._edit,
            UpdaterState.REFETCH: self._refetch,
        }

    async def run(self, document_id: str, updates: Iterable[DynamicSectionUpdate]) -> UpdateReport:
        run = _Run(
            document_id=document_id,
            pending=sorted(updates, key=lambda u: u.order),
            report=UpdateReport(document_id=document_id),
        )
        logger.info("Updating %d dynamic sections in %s", len(run.pending), document_id)
        state = UpdaterState.FETCH
        while state is not UpdaterState.DONE:
            state = await self._handlers[state](run)
        logger.info(
            "Document %s: %d sections updated, %d skipped",
            document_id, len(run.report.updated), len(run.report.skipped),
        )
        return run.report

    # -------------------------------------------------------------------------
    async def _fetch(self, run: _Run) -> UpdaterState:
        document = await self.api.get_document(run.document_id)
        run.nodes = document_nodes(document)
        run.sections = parse_nodes(run.nodes)
        run.body_end = body_end_index(document)
        return UpdaterState.LOCATE if run.pending else UpdaterState.DONE

    async def _locate(self, run: _Run) -> UpdaterState:
        while run.pending:
            update = run.pending.pop(0)
            section, reason = find_section(run.sections, update)
            if section is None:
                self._skip(run, update.order, reason)
                continue
            if section.start_index is None:
                self._skip(run, update.order, "section has no offsets")
                continue
            edit = plan_section_edit(
                section, update.content, run.sections, run.nodes, run.body_end, self.tolerance
            )
            if edit is None:
                self._skip(run, update.order, "title paragraph not located")
                continue
            if not edit.requests:
                # empty replacement for an already empty section
                run.report.updated.append(update.order)
                continue
            run.edit = edit
            return UpdaterState.EDIT
        return UpdaterState.DONE

    async def _edit(self, run: _Run) -> UpdaterState:
        edit = run.edit
        await self.api.batch_update(run.document_id, edit.requests)
        run.report.updated.append(edit.order)
        run.report.batches += 1
        logger.debug(
            "Section %d: replaced [%d, %d) with %d chars",
            edit.order, edit.insert_at, edit.delete_end, len(edit.text),
        )
        run.edit = None
        return UpdaterState.REFETCH

    async def _refetch(self, run: _Run) -> UpdaterState:
        if not run.pending:
            return UpdaterState.DONE
        if self.refetch_delay > 0:
            await asyncio.sleep(self.refetch_delay)
        return await self._fetch(run)

    @staticmethod
    def _skip(run: _Run, order: int, reason: str) -> None:
        logger.warning("Section %d skipped in %s: %s", order, run.document_id, reason)
        run.report.skipped.append(SkippedSection(order=order, reason=reason))


# -----------------------------------------------------------------------------
# Per-document serialization
# -----------------------------------------------------------------------------
class DocumentLockRegistry:
    """One asyncio.Lock per document id, for the lifetime of the process."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock_for(self, document_id: str) -> asyncio.Lock:
        lock = self._locks.get(document_id)
        if lock is None:
            lock = self._locks[document_id] = asyncio.Lock()
        return lock


document_locks = DocumentLockRegistry()


async def update_dynamic_sections(
    api: DocumentApi,
    document_id: str,
    updates: Iterable[DynamicSectionUpdate],
    tolerance: Optional[int] = None,
    refetch_delay: Optional[float] = None,
    locks: Optional[DocumentLockRegistry] = None,
) -> UpdateReport:
    registry = locks or document_locks
    async with registry.lock_for(document_id):
        updater = LiveSectionUpdater(api, tolerance=tolerance, refetch_delay=refetch_delay)
        return await updater.run(document_id, updates)
