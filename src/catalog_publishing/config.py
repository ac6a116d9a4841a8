"""Application settings loaded from environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration sourced from environment variables and .env."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    DATABASE_URL: str
    SECRET_KEY: SecretStr
    HOST: str = "0.0.0.0"
    PORT: int = Field(default=8000, ge=1, le=65535)
    LOG_LEVEL: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    LOG_FORMAT: Literal["json", "text"] = "text"
    LOG_FILE: Path | None = None
    LOG_FILE_MAX_BYTES: int = Field(default=10_485_760, ge=1)
    LOG_FILE_BACKUP_COUNT: int = Field(default=5, ge=1)
    SITE_URL: str | None = None
    SITEMAP_PAGE_SIZE: int = Field(default=45_000, ge=1, le=50_000)
    SITEMAP_CACHE_TTL_SECONDS: int = Field(default=300, ge=1)
    PRODUCT_CACHE_MAX_ENTRIES: int = Field(default=1024, ge=1)
    PUBLISH_DEFAULT_BATCH_SIZE: int = Field(default=2000, ge=1)
    PUBLISH_MAX_BATCH_SIZE: int = Field(default=5000, ge=1)
    ALGOLIA_CANDIDATE_FACTOR: int = Field(default=4, ge=1)
    ALGOLIA_MAX_CANDIDATES: int = Field(default=20_000, ge=1)
    CLOUDFLARE_ZONE_ID: str | None = None
    CLOUDFLARE_API_TOKEN: SecretStr | None = None
    CLOUDFLARE_TIMEOUT_SECONDS: float = Field(default=20.0, gt=0)
    ALGOLIA_APP_ID: str | None = None
    ALGOLIA_ADMIN_API_KEY: SecretStr | None = None
    ALGOLIA_INDEX_NAME: str | None = None
    ALGOLIA_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0)
    REDIS_URL: str | None = None
    ACTIVITY_REDIS_KEY: str = "catalog_publishing:activity"
    SITEMAP_CACHE_REDIS_PREFIX: str = "catalog_publishing:sitemap:"
    OUTBOUND_HTTP_USER_AGENT: str = "CatalogPublishing/0.1"

    @field_validator("LOG_FILE", mode="before")
    @classmethod
    def parse_log_file(cls, value: object) -> object:
        if value in (None, ""):
            return None
        return value

    @field_validator(
        "SITE_URL",
        "CLOUDFLARE_ZONE_ID",
        "CLOUDFLARE_API_TOKEN",
        "ALGOLIA_APP_ID",
        "ALGOLIA_ADMIN_API_KEY",
        "ALGOLIA_INDEX_NAME",
        "REDIS_URL",
        mode="before",
    )
    @classmethod
    def blank_as_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        if isinstance(value, str):
            return value.strip()
        return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]
