# app/config.py
from __future__ import annotations

from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv
from pydantic_settings import BaseSettings, SettingsConfigDict

# .env lives at the project root, next to pyproject.toml
PROJECT_ROOT = Path(__file__).resolve().parents[1]
ENV_FILE = PROJECT_ROOT / ".env"
load_dotenv(ENV_FILE, override=False)

_PRODUCTION_ENVS = {"production", "prod", "preview"}


class Settings(BaseSettings):
    # ---- App ----
    APP_VERSION: str = "0.1.0"
    APP_ENV: str = "development"

    # ---- Remote store (Supabase Postgres) ----
    # Optional so that the service still boots on local fallbacks only.
    DATABASE_URL: Optional[str] = None
    CONTENT_TABLE: str = "articles"

    # ---- In-memory cache ----
    # Production keeps a short TTL to stay inside the hosting read quota.
    CONTENT_CACHE_TTL_SECONDS: int = 600
    CONTENT_CACHE_TTL_PRODUCTION_SECONDS: int = 120

    # ---- Remote timeouts (seconds) ----
    REMOTE_TIMEOUT_HOMEPAGE_SECONDS: float = 10.0
    REMOTE_TIMEOUT_COLLECTION_SECONDS: float = 5.0
    REMOTE_TIMEOUT_ITEM_SECONDS: float = 3.0

    # ---- Local files ----
    SNAPSHOT_PATH: str = str(PROJECT_ROOT / "optimized-fallback.json")
    LOCAL_STORE_PATH: str = str(PROJECT_ROOT / "data" / "articles.json")
    SNAPSHOT_WARN_KB: int = 500

    # ---- Admin ----
    ADMIN_TOKEN: Optional[str] = None

    # ---- HTTP ----
    # Comma-separated list of allowed origins.
    CORS_ALLOWED_ORIGINS: str = "http://localhost:3000,http://127.0.0.1:3000"

    model_config = SettingsConfigDict(
        env_file=str(ENV_FILE),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.strip().lower() in _PRODUCTION_ENVS

    @property
    def cache_ttl_seconds(self) -> int:
        if self.is_production:
            return self.CONTENT_CACHE_TTL_PRODUCTION_SECONDS
        return self.CONTENT_CACHE_TTL_SECONDS

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ALLOWED_ORIGINS.split(",") if o.strip()]


settings = Settings()
