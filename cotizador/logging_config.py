# cotizador/logging_config.py
import logging

from cotizador.config import get_settings

_FORMAT = "[%(levelname)s] %(name)s: %(message)s"


def setup_logging(level: str | None = None) -> None:
    """
    Install a single stream handler on the root logger.
    Safe to call more than once; an existing handler is reused.
    """
    lvl = (level or get_settings().log_level or "INFO").upper()
    root = logging.getLogger()
    if not any(getattr(h, "_cotizador", False) for h in root.handlers):
        h = logging.StreamHandler()
        h.setFormatter(logging.Formatter(_FORMAT))
        h._cotizador = True  # type: ignore[attr-defined]
        root.addHandler(h)
    root.setLevel(lvl)

    # httpx logs every request at INFO; keep it quieter than our own modules
    logging.getLogger("httpx").setLevel(logging.WARNING)
