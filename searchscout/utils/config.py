"""
Settings

Environment-driven configuration (pydantic-settings). Values can also be
put in a .env file in the working directory.
"""

from typing import Optional
from functools import lru_cache
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """SearchScout settings, read from the environment."""

    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Cache storage
    CACHE_NAMESPACE: str = "searchscout_cache_"
    CACHE_EXPIRATION_DAYS: int = 90  # 0 = off, 7, 14, 30, 60, 90
    CACHE_QUOTA_BYTES: int = 5 * 1024 * 1024
    CACHE_BACKEND: str = "memory"  # memory | file | redis
    CACHE_PATH: Optional[str] = None
    REDIS_URL: str = "redis://localhost:6379/0"
    CACHE_COMPRESSION_THRESHOLD: int = 1024

    # Keyword sources
    SOURCE_FETCH_TIMEOUT: float = 60.0
    DEFAULT_LOCATION_CODE: int = 2840
    DEFAULT_LANGUAGE_CODE: str = "en"
    RANKED_KEYWORDS_LIMIT: int = 1000

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"
        case_sensitive = False


@lru_cache
def get_settings() -> Settings:
    """Settings singleton."""
    return Settings()
