from pydantic_settings import BaseSettings
from typing import List, Optional
from pydantic import Field
import logging
import os
import json



class Settings(BaseSettings):
    # LLM / extraction settings
    LLM_PROVIDER: str = "gemini"
    LLM_API_URL: Optional[str] = None
    LLM_API_KEY: Optional[str] = None
    LLM_MODEL: Optional[str] = None
    LLM_MAX_TOKENS: int = 4096
    LLM_TEMPERATURE: float = 0.2
    LLM_TIMEOUT_SECONDS: float = 60.0
    LLM_LOG_DIR: str = "logs"

    # Language routing for extracted medication fields
    TARGET_LANGUAGE: str = "Tamil"
    REFERENCE_LANGUAGE: str = "English"

    # Drug image lookup; unset means no lookups, only the search fallback link
    DRUG_IMAGE_API_URL: Optional[str] = None
    DRUG_IMAGE_TIMEOUT_SECONDS: float = 10.0
    IMAGE_SEARCH_URL: str = "https://www.google.com/search?tbm=isch"
    IMAGE_SEARCH_QUALIFIER: str = "tablet"

    # Upload limits
    MAX_UPLOAD_MB: int = 10
    ENFORCE_UPLOAD_LIMIT: bool = True

    # In-memory UI sessions
    SESSION_TTL_SECONDS: int = 1800
    MAX_SESSIONS: int = 1000

    ALLOWED_ORIGINS: List[str] = Field(default_factory=list)

    class Config:
        env_file = ".env"

    @property
    def max_upload_bytes(self) -> int:
        return self.MAX_UPLOAD_MB * 1024 * 1024


settings = Settings()

raw_allowed = os.getenv("ALLOWED_ORIGINS")
if raw_allowed:
    try:
        parsed = json.loads(raw_allowed)
        if isinstance(parsed, list):
            settings.ALLOWED_ORIGINS = parsed
    except Exception:
        settings.ALLOWED_ORIGINS = [s.strip() for s in raw_allowed.split(',') if s.strip()]

if not settings.LLM_API_KEY:
    logging.warning("LLM_API_KEY is not set; prescription analysis will fail until it is configured (see .env.example)")
