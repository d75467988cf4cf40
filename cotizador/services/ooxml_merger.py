# cotizador/services/ooxml_merger.py
from __future__ import annotations

import io
import re
import copy
import zlib
import logging
import zipfile
import posixpath
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Set, Tuple

from lxml import etree
from docx.oxml.ns import qn

from cotizador.config import get_settings
from cotizador.services.errors import (
    PackageFormatError,
    ResourceReconciliationError,
    StructuralMergeError,
)
from cotizador.utils.text import has_marker, strip_markers

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# OOXML names
# -----------------------------------------------------------------------------
R_NS = "http://schemas.openxmlformats.org/officeDocument/2006/relationships"
PKG_REL_NS = "http://schemas.openxmlformats.org/package/2006/relationships"
CT_NS = "http://schemas.openxmlformats.org/package/2006/content-types"
RT_OFFICE_DOCUMENT = "http://schemas.openxmlformats.org/officeDocument/2006/relationships/officeDocument"

W_BODY = qn("w:body")
W_P = qn("w:p")
W_T = qn("w:t")
W_R = qn("w:r")
W_TC = qn("w:tc")
W_SECTPR = qn("w:sectPr")
W_ID = qn("w:id")
W_BOOKMARK_START = qn("w:bookmarkStart")
W_BOOKMARK_END = qn("w:bookmarkEnd")

# References into parts that are not carried over (footnotes, endnotes, comments)
_UNCARRIED_REFS = {
    qn("w:footnoteReference"),
    qn("w:endnoteReference"),
    qn("w:commentReference"),
    qn("w:commentRangeStart"),
    qn("w:commentRangeEnd"),
}
# Paragraph content that counts as visible even without text
_VISUAL = {qn("w:drawing"), qn("w:pict"), qn("w:object"), qn("w:tbl")}

REL = f"{{{PKG_REL_NS}}}Relationship"
CT_DEFAULT = f"{{{CT_NS}}}Default"
CT_OVERRIDE = f"{{{CT_NS}}}Override"
CONTENT_TYPES = "[Content_Types].xml"
ZIP_MAGIC = b"PK\x03\x04"

_RID = re.compile(r"^rId(\d+)$")
_BODY_OPEN = re.compile(rb"<(?:[A-Za-z_][\w.-]*:)?body[\s>]")
_BODY_CLOSE = re.compile(rb"</(?:[A-Za-z_][\w.-]*:)?body>")

_parser = etree.XMLParser(resolve_entities=False, huge_tree=True, remove_blank_text=False)


@dataclass
class MergeResult:
    """
    Outcome of a package merge. relationships_added and parts_copied only
    cover what the spliced secondary body references; unreferenced secondary
    relationships and media are not carried into the output.
    """
    data: bytes
    paragraphs: int
    relationships_added: int
    parts_copied: List[str] = field(default_factory=list)


# -----------------------------------------------------------------------------
# Package helpers
# -----------------------------------------------------------------------------
class _Package:
    """Read-only view over a Word package's archive members."""

    def __init__(self, data: bytes, label: str):
        self.label = label
        if not data or not data.startswith(b"PK"):
            raise PackageFormatError(f"{label} package is not a ZIP archive")
        try:
            zf = zipfile.ZipFile(io.BytesIO(data))
            self.infos = zf.infolist()
            self.files: Dict[str, bytes] = {i.filename: zf.read(i.filename) for i in self.infos}
        except (zipfile.BadZipFile, zlib.error) as e:
            raise PackageFormatError(f"{label} package cannot be read: {e}") from e

    def xml(self, name: str) -> etree._Element:
        raw = self.files.get(name)
        if raw is None:
            raise StructuralMergeError(f"{self.label} package has no {name}")
        try:
            return etree.fromstring(raw, _parser)
        except etree.XMLSyntaxError as e:
            raise StructuralMergeError(f"{self.label} {name} is not well-formed XML: {e}") from e

    def main_part(self) -> str:
        rels = self.files.get("_rels/.rels")
        if rels is not None:
            try:
                root = etree.fromstring(rels, _parser)
                for rel in root.iter(REL):
                    if rel.get("Type") == RT_OFFICE_DOCUMENT:
                        return rel.get("Target", "").lstrip("/")
            except etree.XMLSyntaxError:
                logger.warning("%s package root relationships unreadable; assuming word/document.xml", self.label)
        return "word/document.xml"


def rels_name_for(part: str) -> str:
    d, base = posixpath.split(part)
    return posixpath.join(d, "_rels", f"{base}.rels")


def _resolve_target(source_part: str, target: str) -> str:
    if target.startswith("/"):
        return target.lstrip("/")
    return posixpath.normpath(posixpath.join(posixpath.dirname(source_part), target))


def _serialize(root: etree._Element) -> bytes:
    return etree.tostring(root, xml_declaration=True, encoding="UTF-8", standalone=True)


# -----------------------------------------------------------------------------
# Body splice
# -----------------------------------------------------------------------------
def _strip_nested(el: etree._Element, tags: Set[str]) -> int:
    doomed = [d for d in el.iter() if d.tag in tags and d is not el]
    for d in doomed:
        parent = d.getparent()
        if parent is not None:
            parent.remove(d)
    return len(doomed)


def _paragraph_text(p: etree._Element) -> str:
    return "".join(t.text or "" for t in p.iter(W_T))


def _strip_marker_runs(elements: List[etree._Element]) -> int:
    """
    Remove classification markers from text runs. Paragraphs that held only a
    marker are dropped, except the last paragraph of a table cell, which is kept
    with its runs cleared. Returns the number of paragraphs dropped.
    """
    dropped = 0
    for top in list(elements):
        paragraphs = [top] if top.tag == W_P else list(top.iter(W_P))
        for p in paragraphs:
            touched = False
            for t in p.iter(W_T):
                if t.text and has_marker(t.text):
                    cleaned = strip_markers(t.text)
                    # keep the run's boundary spaces
                    if t.text[:1].isspace() and cleaned:
                        cleaned = " " + cleaned
                    if t.text[-1:].isspace() and cleaned:
                        cleaned = cleaned + " "
                    t.text = cleaned
                    touched = True
            if not touched or _paragraph_text(p).strip():
                continue
            if any(d.tag in _VISUAL for d in p.iter()):
                continue
            parent = p.getparent()
            if parent is not None and parent.tag == W_TC and not any(
                sib is not p and sib.tag == W_P for sib in parent
            ):
                # a cell must keep one paragraph
                for r in p.findall(W_R):
                    p.remove(r)
                continue
            if parent is not None:
                parent.remove(p)
            elif p in elements:
                elements.remove(p)
            dropped += 1
    return dropped


def _renumber_bookmarks(elements: List[etree._Element], offset: int) -> None:
    for top in elements:
        for el in top.iter(W_BOOKMARK_START, W_BOOKMARK_END):
            v = el.get(W_ID)
            if v is not None and v.lstrip("-").isdigit():
                el.set(W_ID, str(int(v) + offset))


def _max_bookmark_id(root: etree._Element) -> int:
    best = 0
    for el in root.iter(W_BOOKMARK_START):
        v = el.get(W_ID)
        if v is not None and v.isdigit():
            best = max(best, int(v))
    return best


def _referenced_rids(elements: List[etree._Element]) -> List[str]:
    seen: List[str] = []
    prefix = f"{{{R_NS}}}"
    for top in elements:
        for el in top.iter():
            for attr, val in el.attrib.items():
                if attr.startswith(prefix) and val and val not in seen:
                    seen.append(val)
    return seen


def _rewrite_rids(elements: List[etree._Element], mapping: Dict[str, str]) -> None:
    prefix = f"{{{R_NS}}}"
    for top in elements:
        for el in top.iter():
            for attr, val in list(el.attrib.items()):
                if attr.startswith(prefix) and val in mapping:
                    el.set(attr, mapping[val])


# -----------------------------------------------------------------------------
# Merger
# -----------------------------------------------------------------------------
class PackageMerger:
    """
    Merge two Word packages.

    The primary package supplies the overall structure, styles and the trailing
    page setup (sectPr). The secondary package supplies extra body content and
    the resources that content references. Output body order is:
        secondary content + primary content + primary trailing sectPr

    Only the secondary relationships referenced from the spliced body are
    copied, along with the parts they target. Secondary-only relationships
    and media that nothing in the body points at are left behind.
    """

    def __init__(self, strip_marker_text: bool = True, compress_level: Optional[int] = None):
        self.strip_marker_text = strip_marker_text
        self.compress_level = get_settings().docx_compress_level if compress_level is None else compress_level

    def merge(self, primary: bytes, secondary: bytes) -> MergeResult:
        prim = _Package(primary, "primary")
        sec = _Package(secondary, "secondary")

        prim_main = prim.main_part()
        sec_main = sec.main_part()
        prim_root = prim.xml(prim_main)
        sec_root = sec.xml(sec_main)

        prim_body = prim_root.find(W_BODY)
        sec_body = sec_root.find(W_BODY)
        if prim_body is None:
            raise StructuralMergeError("primary document has no body")
        if sec_body is None:
            raise StructuralMergeError("secondary document has no body")

        # 1) keep the primary's trailing page setup aside
        trailing_sectpr = None
        if len(prim_body) and prim_body[-1].tag == W_SECTPR:
            trailing_sectpr = prim_body[-1]
            prim_body.remove(trailing_sectpr)
        else:
            logger.warning("primary document has no trailing sectPr; merged page setup will use defaults")

        # 2) secondary body without any sectPr
        spliced: List[etree._Element] = []
        stripped_sectpr = 0
        for child in sec_body:
            if child.tag == W_SECTPR:
                stripped_sectpr += 1
                continue
            if not isinstance(child.tag, str):
                # comments / processing instructions
                continue
            el = copy.deepcopy(child)
            stripped_sectpr += _strip_nested(el, {W_SECTPR})
            _strip_nested(el, _UNCARRIED_REFS)
            if el.tag in _UNCARRIED_REFS:
                continue
            spliced.append(el)
        logger.info("secondary body: %d elements, %d sectPr stripped", len(spliced), stripped_sectpr)

        _renumber_bookmarks(spliced, _max_bookmark_id(prim_root) + 1)

        # 3) relationships referenced by the spliced content
        prim_rels_name = rels_name_for(prim_main)
        prim_rels = prim.xml(prim_rels_name)
        refs = _referenced_rids(spliced)
        rel_mapping, new_rels, copied, renamed, part_files = self._reconcile(
            prim, sec, prim_main, sec_main, prim_rels, refs
        )
        _rewrite_rids(spliced, rel_mapping)
        for rel in new_rels:
            prim_rels.append(rel)

        # 4) concatenate
        for i, el in enumerate(spliced):
            prim_body.insert(i, el)
        if self.strip_marker_text:
            dropped = _strip_marker_runs(list(prim_body))
            if dropped:
                logger.info("dropped %d marker-only paragraphs", dropped)
        if trailing_sectpr is not None:
            prim_body.append(trailing_sectpr)

        document_xml = _serialize(prim_root)
        paragraphs = self._validate(prim_root, document_xml)

        # 5) content types
        ct_xml = self._merge_content_types(prim, sec, renamed)

        replaced = {
            prim_main: document_xml,
            prim_rels_name: _serialize(prim_rels),
            CONTENT_TYPES: ct_xml,
        }
        data = self._write(prim, replaced, part_files)
        self._check_output(data)

        logger.info(
            "packages merged: %d paragraphs, %d relationships added, %d parts copied, %d bytes",
            paragraphs, len(new_rels), len(copied), len(data),
        )
        return MergeResult(
            data=data,
            paragraphs=paragraphs,
            relationships_added=len(new_rels),
            parts_copied=copied,
        )

    # -------------------------------------------------------------------------
    def _reconcile(
        self,
        prim: _Package,
        sec: _Package,
        prim_main: str,
        sec_main: str,
        prim_rels: etree._Element,
        refs: List[str],
    ) -> Tuple[Dict[str, str], List[etree._Element], List[str], Dict[str, str], Dict[str, bytes]]:
        """
        Assign fresh ids to every secondary relationship the spliced content
        references and place the parts they target. Raises before any output
        is produced if a reference cannot be resolved.
        """
        mapping: Dict[str, str] = {}
        new_rels: List[etree._Element] = []
        part_files: Dict[str, bytes] = {}
        placed: Dict[str, str] = {}      # secondary part -> final part
        renamed: Dict[str, str] = {}     # secondary part -> new name
        copied: List[str] = []

        if not refs:
            return mapping, new_rels, copied, renamed, part_files

        sec_rels_name = rels_name_for(sec_main)
        if sec_rels_name not in sec.files:
            raise ResourceReconciliationError(
                f"secondary content references {', '.join(refs)} but the package has no {sec_rels_name}"
            )
        sec_rels = {r.get("Id"): r for r in sec.xml(sec_rels_name).iter(REL)}

        taken: Set[str] = {r.get("Id") for r in prim_rels.iter(REL)}
        next_n = max((int(m.group(1)) for i in taken if i and (m := _RID.match(i))), default=0)

        def new_id() -> str:
            nonlocal next_n
            while True:
                next_n += 1
                cand = f"rId{next_n}"
                if cand not in taken:
                    taken.add(cand)
                    return cand

        def place(part: str) -> str:
            if part in placed:
                return placed[part]
            blob = sec.files.get(part)
            if blob is None:
                raise ResourceReconciliationError(f"secondary relationship targets missing part {part}")
            final = part
            existing = prim.files.get(part)
            if existing is not None and existing == blob:
                placed[part] = part
                return part
            if existing is not None or part in part_files:
                base, ext = posixpath.splitext(part)
                k = 1
                while f"{base}_m{k}{ext}" in prim.files or f"{base}_m{k}{ext}" in part_files:
                    k += 1
                final = f"{base}_m{k}{ext}"
                renamed[part] = final
            placed[part] = final
            part_files[final] = blob
            copied.append(final)

            # the part's own relationships travel with it
            own_rels = rels_name_for(part)
            if own_rels in sec.files:
                rroot = sec.xml(own_rels)
                for r in rroot.iter(REL):
                    if r.get("TargetMode") == "External":
                        continue
                    child = _resolve_target(part, r.get("Target", ""))
                    if child not in sec.files:
                        logger.warning("part %s references missing %s; relationship left as is", part, child)
                        continue
                    child_final = place(child)
                    if child_final != child:
                        r.set("Target", posixpath.relpath(child_final, posixpath.dirname(final)))
                part_files[rels_name_for(final)] = _serialize(rroot)
            return final

        for rid in refs:
            rel = sec_rels.get(rid)
            if rel is None:
                raise ResourceReconciliationError(f"secondary content references unknown relationship {rid}")
            out = copy.deepcopy(rel)
            nid = new_id()
            out.set("Id", nid)
            mapping[rid] = nid
            if rel.get("TargetMode") != "External":
                part = _resolve_target(sec_main, rel.get("Target", ""))
                final = place(part)
                if final != part:
                    out.set("Target", posixpath.relpath(final, posixpath.dirname(prim_main)))
            new_rels.append(out)

        logger.info("relationships remapped: %s", ", ".join(f"{k}->{v}" for k, v in mapping.items()))
        return mapping, new_rels, copied, renamed, part_files

    def _validate(self, root: etree._Element, document_xml: bytes) -> int:
        paragraphs = sum(1 for _ in root.iter(W_P))
        if paragraphs == 0:
            raise StructuralMergeError("merged body has no paragraphs")
        empty_cells = sum(1 for tc in root.iter(W_TC) if tc.find(W_P) is None)
        if empty_cells:
            raise StructuralMergeError(f"merged document has {empty_cells} table cells without a paragraph")
        opens = len(_BODY_OPEN.findall(document_xml))
        closes = len(_BODY_CLOSE.findall(document_xml))
        if opens != 1 or closes != 1:
            raise StructuralMergeError(f"merged document has {opens} body open / {closes} close tags")
        return paragraphs

    def _merge_content_types(self, prim: _Package, sec: _Package, renamed: Dict[str, str]) -> bytes:
        root = prim.xml(CONTENT_TYPES)
        defaults = {(d.get("Extension") or "").lower() for d in root.iter(CT_DEFAULT)}
        overrides = {(o.get("PartName") or "").lower() for o in root.iter(CT_OVERRIDE)}

        if CONTENT_TYPES not in sec.files:
            logger.warning("secondary package has no %s; keeping primary declarations", CONTENT_TYPES)
            return _serialize(root)
        sec_root = sec.xml(CONTENT_TYPES)

        added = 0
        for d in sec_root.iter(CT_DEFAULT):
            ext = (d.get("Extension") or "").lower()
            if ext and ext not in defaults:
                root.append(copy.deepcopy(d))
                defaults.add(ext)
                added += 1

        sec_overrides = {}
        for o in sec_root.iter(CT_OVERRIDE):
            name = o.get("PartName") or ""
            sec_overrides[name.lower()] = o
            if name and name.lower() not in overrides:
                root.append(copy.deepcopy(o))
                overrides.add(name.lower())
                added += 1

        for old, new in renamed.items():
            src = sec_overrides.get(f"/{old}".lower())
            if src is not None and f"/{new}".lower() not in overrides:
                o = copy.deepcopy(src)
                o.set("PartName", f"/{new}")
                root.append(o)
                overrides.add(f"/{new}".lower())
                added += 1

        logger.debug("content types: %d declarations added", added)
        return _serialize(root)

    def _write(self, prim: _Package, replaced: Dict[str, bytes], added: Dict[str, bytes]) -> bytes:
        try:
            return self._zip(prim, replaced, added, zipfile.ZIP_DEFLATED, self.compress_level)
        except (zlib.error, RuntimeError, ValueError) as e:
            logger.warning("compressed write failed (%s); storing uncompressed", e)
            return self._zip(prim, replaced, added, zipfile.ZIP_STORED, None)

    @staticmethod
    def _zip(
        prim: _Package,
        replaced: Dict[str, bytes],
        added: Dict[str, bytes],
        compression: int,
        level: Optional[int],
    ) -> bytes:
        names = [i.filename for i in prim.infos]
        if CONTENT_TYPES in names:
            names.remove(CONTENT_TYPES)
            names.insert(0, CONTENT_TYPES)
        buf = io.BytesIO()
        with zipfile.ZipFile(buf, "w", compression=compression, compresslevel=level) as zout:
            written = set()
            for name in names:
                zout.writestr(name, replaced.get(name, prim.files[name]))
                written.add(name)
            for name, blob in list(replaced.items()) + list(added.items()):
                if name not in written:
                    zout.writestr(name, blob)
                    written.add(name)
        return buf.getvalue()

    @staticmethod
    def _check_output(data: bytes) -> None:
        if not data.startswith(ZIP_MAGIC):
            raise PackageFormatError("merged output is not a ZIP archive")
        try:
            bad = zipfile.ZipFile(io.BytesIO(data)).testzip()
        except zipfile.BadZipFile as e:
            raise PackageFormatError(f"merged output cannot be reopened: {e}") from e
        if bad is not None:
            raise PackageFormatError(f"merged output has a corrupt member: {bad}")


def merge_packages(primary: bytes, secondary: bytes, strip_marker_text: bool = True) -> MergeResult:
    return PackageMerger(strip_marker_text=strip_marker_text).merge(primary, secondary)
