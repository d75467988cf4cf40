# cotizador/utils/text.py
import re
from typing import Optional

# Classification markers, bracket and parenthesis forms, accented or not.
_STATIC_MARKER = re.compile(r"[\[(]\s*EST[AÁ]TICO\s*[\])]", re.IGNORECASE)
_DYNAMIC_MARKER = re.compile(r"[\[(]\s*DIN[AÁ]MICO\s*[\])]", re.IGNORECASE)
_ANY_MARKER = re.compile(r"\s*[\[(]\s*(?:EST[AÁ]TICO|DIN[AÁ]MICO)\s*[\])]\s*", re.IGNORECASE)

_spaces = re.compile(r"[ \t\u00a0]+")


def find_marker(text: str) -> Optional[str]:
    """
    Return "static" or "dynamic" for the marker found in text, else None.
    If both appear, dynamic wins.
    """
    if not text:
        return None
    if _DYNAMIC_MARKER.search(text):
        return "dynamic"
    if _STATIC_MARKER.search(text):
        return "static"
    return None


def has_marker(text: str) -> bool:
    return bool(text) and bool(_ANY_MARKER.search(text))


def strip_markers(text: str) -> str:
    """
    Remove every classification marker and collapse the spaces it leaves.
    Newlines are preserved.
    """
    if not text:
        return text
    out = []
    for line in text.split("\n"):
        if _ANY_MARKER.search(line):
            line = _spaces.sub(" ", _ANY_MARKER.sub(" ", line)).strip()
        out.append(line)
    return "\n".join(out)


def collapse_spaces(text: str) -> str:
    return _spaces.sub(" ", text or "").strip()


_invalid_filename_chars = re.compile(r'[^A-Za-z0-9\-\_\(\)\[\]\s]')

def sanitize_filename(name: str) -> str:
    """
    Remove characters unsafe for filenames and collapse spaces.
    Example: "Propuesta ACME (v1)" -> "Propuesta_ACME_(v1)"
    """
    if not name:
        return "document"
    cleaned = _invalid_filename_chars.sub("", name)
    cleaned = re.sub(r"\s+", "_", cleaned).strip("_")
    return cleaned or "document"
