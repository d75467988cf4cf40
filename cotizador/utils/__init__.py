# cotizador/utils/__init__.py
from __future__ import annotations

from cotizador.utils.text import (
    collapse_spaces,
    find_marker,
    has_marker,
    sanitize_filename,
    strip_markers,
)
from cotizador.utils.timeit import timeit

__all__ = [
    "collapse_spaces",
    "find_marker",
    "has_marker",
    "sanitize_filename",
    "strip_markers",
    "timeit",
]
