# cotizador/services/section_parser.py
from __future__ import annotations

import re
import logging
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Sequence, Tuple

from cotizador.config import IMPLICIT_SECTION_TITLE, FALLBACK_SECTION_TITLE
from cotizador.models.schemas import DocumentNode, Section
from cotizador.utils.text import find_marker, has_marker, strip_markers, collapse_spaces

logger = logging.getLogger(__name__)

# -----------------------------------------------------------------------------
# Title patterns
# -----------------------------------------------------------------------------
# "12. Title", "3) Title", "4.- Title". Sub-numbering like "3.1 Alcance" is body.
_DECIMAL = re.compile(r"^(\d{1,3})\s*[.)]-?\s*(?!\d)(\S.*)$")
_ROMAN = re.compile(r"^([IVXLCDM]{1,7})\s*[.)]-?\s+(\S.*)$")
_LETTERED = re.compile(r"^([A-Z])[.)]\s+(\S.*)$|^([a-z])\)\s+(\S.*)$")
# loose retry: any line starting with a digit
_LOOSE = re.compile(r"^(\d+)\s*[.)]?-?\s*(.*)$")

# TOC leftovers: "Intro\t3", "Intro ....... 3", "Intro … 3"
_TRAILING_ARTIFACTS = re.compile(r"(?:\t.*|\s*\.{2,}\s*\d*|\s*…+\s*\d*)\s*$")
_TRAILING_NUMBER = re.compile(r"\s*\d+\s*$")

MIN_TITLE_LEN = 3
MAX_TITLE_LEN = 100

_ROMAN_VALUES = {"I": 1, "V": 5, "X": 10, "L": 50, "C": 100, "D": 500, "M": 1000}
_LETTER_NOT_ROMAN = "LCDM"


def roman_to_int(s: str) -> Optional[int]:
    """
    Convert a roman numeral to int. Returns None for malformed numerals
    (e.g. "IIII" is accepted, "IC" is not canonical but still summed).
    """
    s = (s or "").upper()
    if not s or any(ch not in _ROMAN_VALUES for ch in s):
        return None
    total = 0
    for i, ch in enumerate(s):
        v = _ROMAN_VALUES[ch]
        if i + 1 < len(s) and _ROMAN_VALUES[s[i + 1]] > v:
            total -= v
        else:
            total += v
    return total if total > 0 else None


def _starts_capitalized(text: str) -> bool:
    for ch in text:
        if ch.isalpha():
            return ch.isupper()
        if ch.isdigit():
            return False
    return False


def _is_all_caps(text: str) -> bool:
    letters = [ch for ch in text if ch.isalpha()]
    return bool(letters) and all(ch.isupper() for ch in letters)


def _is_caps_heading(text: str) -> bool:
    """All-caps line that reads as a heading: "RESUMEN EJECUTIVO", "FASE 2", not "100 USD" or "IVA 16%"."""
    if not text[:1].isalpha() or not _is_all_caps(text):
        return False
    if not any(len(w) >= 3 and w.isalpha() for w in re.split(r"[^\w]+", text)):
        return False
    chars = [ch for ch in text if not ch.isspace()]
    letters = sum(1 for ch in chars if ch.isalpha())
    return letters * 2 > len(chars)


def clean_title(raw: str, order: int) -> str:
    """
    Strip markers, TOC/page-number artifacts and stray punctuation from a title.
    Falls back to the text before any bracket or trailing number, then to
    "Sección {order}".
    """
    def _clean(t: str) -> str:
        t = _TRAILING_ARTIFACTS.sub("", t or "")
        t = collapse_spaces(strip_markers(t))
        return t.strip(" .:-–—")

    title = _clean(raw)
    if not title or title.replace(" ", "").isdigit():
        prefix = re.split(r"[\[(]", raw or "", maxsplit=1)[0]
        prefix = _TRAILING_NUMBER.sub("", _TRAILING_ARTIFACTS.sub("", prefix))
        title = _clean(prefix)
    if not title or title.replace(" ", "").isdigit():
        title = FALLBACK_SECTION_TITLE.format(order=order)
    return title


@dataclass
class TitleMatch:
    order: Optional[int]
    raw_title: str


def match_title(text: str, loose: bool = False) -> Optional[TitleMatch]:
    """
    Decide whether a line opens a new section.

    Strict rules (any of):
      - decimal / roman / lettered enumerator followed by a capitalized word
      - all-caps line under MAX_TITLE_LEN characters that starts with a letter,
        has a word of three or more letters and is mostly letters
      - a classification marker on a short line
    Loose rule (retry pass only): line starts with a digit and is longer than two chars.
    """
    stripped = (text or "").strip()
    cleaned = collapse_spaces(strip_markers(stripped))
    if len(cleaned) < MIN_TITLE_LEN:
        return None

    if loose:
        if stripped[0].isdigit() and len(stripped) > 2:
            m = _LOOSE.match(stripped)
            if m:
                return TitleMatch(int(m.group(1)), m.group(2))
        return None

    m = _DECIMAL.match(stripped)
    if m and _starts_capitalized(strip_markers(m.group(2))):
        return TitleMatch(int(m.group(1)), m.group(2))

    m = _ROMAN.match(stripped)
    # "C) Costos" in an A) B) C) list is a letter, not 100
    if m and len(m.group(1)) == 1 and m.group(1) in _LETTER_NOT_ROMAN:
        m = None
    if m and _starts_capitalized(strip_markers(m.group(2))):
        value = roman_to_int(m.group(1))
        if value is not None:
            return TitleMatch(value, m.group(2))

    m = _LETTERED.match(stripped)
    if m:
        letter = m.group(1) or m.group(3)
        rest = m.group(2) or m.group(4)
        if _starts_capitalized(strip_markers(rest)):
            return TitleMatch(ord(letter.upper()) - ord("A") + 1, rest)

    if len(cleaned) < MAX_TITLE_LEN and _is_caps_heading(cleaned):
        return TitleMatch(None, stripped)

    if has_marker(stripped) and len(cleaned) < MAX_TITLE_LEN:
        return TitleMatch(None, stripped)

    return None


# -----------------------------------------------------------------------------
# Parser
# -----------------------------------------------------------------------------
@dataclass
class _Acc:
    order: int
    title: str
    marker: Optional[str]
    start_index: Optional[int]
    end_index: Optional[int]
    implicit: bool = False
    lines: List[str] = field(default_factory=list)

    def to_section(self) -> Section:
        content = "\n".join(self.lines).strip("\n")
        return Section(
            order=self.order,
            title=self.title,
            content=content,
            is_static=self.marker == "static",
            is_dynamic=self.marker != "static",
            marker=self.marker,
            start_index=self.start_index,
            end_index=self.end_index,
            implicit=self.implicit,
        )


_Item = Tuple[str, Optional[int], Optional[int], str]


class SectionParser:
    """
    Turns linearized document text, or structured nodes with offsets, into a
    list of Section records. Sections come back in document order, not sorted
    by their order number; order_merge sorts when it combines two sources.
    """

    def parse_text(self, text: str) -> List[Section]:
        return self.parse_lines((text or "").replace("\r\n", "\n").replace("\r", "\n").split("\n"))

    def parse_lines(self, lines: Iterable[str]) -> List[Section]:
        return self._parse([(line, None, None, "paragraph") for line in lines])

    def parse_nodes(self, nodes: Sequence[DocumentNode]) -> List[Section]:
        return self._parse([(n.text, n.start_index, n.end_index, n.kind) for n in nodes])

    def parse_docx(self, data: bytes) -> List[Section]:
        from cotizador.services.extraction import extract_document
        return self.parse_nodes(extract_document(data).nodes)

    # -------------------------------------------------------------------------
    def _parse(self, items: List[_Item]) -> List[Section]:
        sections = self._run(items, loose=False)
        if not any(not s.implicit for s in sections):
            retry = self._run(items, loose=True)
            if any(not s.implicit for s in retry):
                logger.info("No canonical titles found; loose pass produced %d sections", len(retry))
                sections = retry
        logger.debug("Parsed %d sections", len(sections))
        return sections

    def _run(self, items: List[_Item], loose: bool) -> List[Section]:
        out: List[Section] = []
        current: Optional[_Acc] = None
        pending_marker: Optional[str] = None
        titled = 0

        def flush() -> None:
            if current is not None:
                out.append(current.to_section())

        for text, start, end, kind in items:
            text = text or ""
            stripped = text.strip()

            if kind == "paragraph":
                tm = match_title(stripped, loose=loose)
                if tm is not None:
                    flush()
                    prev = current.order if current is not None else (out[-1].order if out else 0)
                    order = tm.order if tm.order is not None else prev + 1
                    marker = find_marker(stripped) or pending_marker
                    pending_marker = None
                    current = _Acc(
                        order=order,
                        title=clean_title(tm.raw_title, order),
                        marker=marker,
                        start_index=start,
                        end_index=end,
                    )
                    titled += 1
                    continue

                # a line holding only a marker classifies the open section
                if has_marker(stripped) and len(collapse_spaces(strip_markers(stripped))) < MIN_TITLE_LEN:
                    marker = find_marker(stripped)
                    if current is not None:
                        if current.marker is None:
                            current.marker = marker
                        current.end_index = end if end is not None else current.end_index
                    else:
                        pending_marker = marker
                    continue

            body = strip_markers(text.rstrip("\n"))
            if current is None:
                if titled == 0 and not out and stripped:
                    current = _Acc(
                        order=0,
                        title=IMPLICIT_SECTION_TITLE,
                        marker=None,
                        start_index=start,
                        end_index=end,
                        implicit=True,
                    )
                else:
                    continue
            current.lines.extend(body.split("\n"))
            if end is not None:
                current.end_index = end

        flush()
        return out


_default_parser = SectionParser()


def parse_text(text: str) -> List[Section]:
    return _default_parser.parse_text(text)


def parse_lines(lines: Iterable[str]) -> List[Section]:
    return _default_parser.parse_lines(lines)


def parse_nodes(nodes: Sequence[DocumentNode]) -> List[Section]:
    return _default_parser.parse_nodes(nodes)


def parse_docx(data: bytes) -> List[Section]:
    return _default_parser.parse_docx(data)
