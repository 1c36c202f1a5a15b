"""
Configuration and settings for the portfolio backend.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    port: int = Field(default=3000)
    node_env: str = Field(default="development")
    frontend_url: str = Field(default="http://localhost:3000")
    api_prefix: str = Field(default="/api")

    # Supabase (auth provider)
    supabase_url: Optional[str] = Field(default=None)
    supabase_key: Optional[str] = Field(default=None)
    auth_timeout_seconds: float = Field(default=10.0)

    # Record store (Supabase Postgres, or any SQLAlchemy URL)
    database_url: Optional[str] = Field(default=None)

    # S3-compatible storage (Supabase Storage S3 endpoint)
    storage_bucket: str = Field(default="portfolio")
    storage_endpoint: Optional[str] = Field(default=None)
    storage_region: str = Field(default="us-east-1")
    storage_access_key_id: Optional[str] = Field(default=None)
    storage_secret_access_key: Optional[str] = Field(default=None)
    storage_public_url: Optional[str] = Field(default=None)

    # Rate limiting
    redis_url: Optional[str] = Field(default=None)
    global_rate_limit_max: int = Field(default=100)
    global_rate_limit_window_seconds: float = Field(default=15 * 60)
    trust_proxy: bool = Field(default=False)

    # Uploads
    max_upload_bytes: int = Field(default=5 * 1024 * 1024)

    # Development toggles
    use_in_memory_backends: bool = Field(default=False)

    @property
    def is_production(self) -> bool:
        return self.node_env.lower() == "production"

    @property
    def public_storage_base(self) -> str:
        if self.storage_public_url:
            return self.storage_public_url.rstrip("/")
        if self.supabase_url:
            return (
                f"{self.supabase_url.rstrip('/')}/storage/v1/object/public/"
                f"{self.storage_bucket}"
            )
        return f"https://storage.invalid/{self.storage_bucket}"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
