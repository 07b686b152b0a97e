from __future__ import annotations
from functools import lru_cache
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_STORE_ID = "00000000-0000-0000-0000-000000000001"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Persistence
    STORE_BACKEND: str = "mongo"  # mongo | firestore | memory
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "lojinha_das_gracas"
    FIREBASE_CREDENTIALS: Optional[str] = None
    FALLBACK_CACHE_DIR: str = ".fallback_cache"

    # Tenancy
    DEFAULT_STORE_ID: str = DEFAULT_STORE_ID
    DEFAULT_STORE_SLUGS: list[str] = ["lojinhadas-gracas", "lojinhas-das-gracas"]

    # Admin auth
    SECRET_KEY: str = "change-me"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60 * 24

    # InfinitePay
    INFINITEPAY_API_URL: str = "https://api.infinitepay.io"
    INFINITEPAY_WEBHOOK_SECRET: Optional[str] = None
    GATEWAY_TIMEOUT: float = 15.0

    # Resend
    RESEND_API_URL: str = "https://api.resend.com"
    RESEND_API_KEY: Optional[str] = None
    EMAIL_FROM: str = "Lojinha das Graças <onboarding@resend.dev>"

    PUBLIC_BASE_URL: str = "http://localhost:5173"
    LOG_LEVEL: str = "INFO"
    PORT: int = 8000


@lru_cache
def get_settings() -> Settings:
    return Settings()
