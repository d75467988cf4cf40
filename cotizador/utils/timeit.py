# cotizador/utils/timeit.py
from __future__ import annotations
import time
import logging
from contextlib import contextmanager

logger = logging.getLogger("timeit")


@contextmanager
def timeit(label: str):
    t0 = time.perf_counter()
    try:
        yield
    finally:
        dt = (time.perf_counter() - t0) * 1000.0
        logger.info(f"[timeit] {label}: {dt:.1f} ms")

__all__ = ["timeit"]
