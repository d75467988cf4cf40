from functools import lru_cache
from cotizador.config import get_settings
from cotizador.services.docs_client import GoogleDocsClient

@lru_cache()
def get_docs_client() -> GoogleDocsClient:
    s = get_settings()
    return GoogleDocsClient(
        access_token=s.google_docs_access_token,
        base_url=s.google_docs_api_base,
        timeout=s.docs_http_timeout,
    )
