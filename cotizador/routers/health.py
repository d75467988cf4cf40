# cotizador/routers/health.py
from fastapi import APIRouter

from cotizador.config import get_settings

# Liveness & readiness endpoints for the orchestrator.
router = APIRouter(prefix="/health", tags=["health"])

@router.get("/live")
def live():
    """
    Liveness probe. Always 200 while the process is serving requests.
    No downstream checks here: a remote document API outage must not restart the pod.
    """
    return {"status": "ok"}


@router.get("/ready")
def ready():
    """
    Readiness probe.
    The OOXML merge path needs nothing external; the live-document path needs
    a remote API token. Both are reported so infra can tell them apart.
    """
    s = get_settings()
    return {
        "status": "ok",
        "docx_merge": True,
        "live_documents": bool(s.google_docs_access_token),
    }
