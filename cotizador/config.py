# cotizador/config.py
from functools import lru_cache
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Remote structured-document API (Google Docs REST)
    google_docs_api_base: str = Field(
        "https://docs.googleapis.com/v1", alias="GOOGLE_DOCS_API_BASE"
    )
    google_docs_access_token: str | None = Field(None, alias="GOOGLE_DOCS_ACCESS_TOKEN")
    docs_http_timeout: float = Field(30.0, alias="DOCS_HTTP_TIMEOUT")

    # Live-document updater
    # Title boundaries in the remote model rarely align exactly with parsed offsets.
    section_index_tolerance: int = Field(10, alias="SECTION_INDEX_TOLERANCE")
    refetch_delay_seconds: float = Field(0.5, alias="REFETCH_DELAY_SECONDS")

    # OOXML package output
    docx_compress_level: int = Field(6, alias="DOCX_COMPRESS_LEVEL")

    # HTTP surface
    max_upload_bytes: int = Field(10 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")
    cors_origins: List[str] = Field(default_factory=lambda: ["*"], alias="CORS_ORIGINS")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()


# Convenience accessor for settings
settings = get_settings()


# -----------------------------
# Defaults used by generated documents
# -----------------------------
IMPLICIT_SECTION_TITLE = "Introducción"
FALLBACK_SECTION_TITLE = "Sección {order}"
DEFAULT_DOCUMENT_TITLE = "Propuesta"
