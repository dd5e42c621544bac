"""
Configuration and settings for the pet feed service.
"""

from __future__ import annotations

import os
from functools import lru_cache
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_MAX_UPLOAD_BYTES = 6 * 1024 * 1024


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    api_prefix: str = Field(default="/api")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8787)

    # Database (Postgres expected). Unset means the flat-file backend.
    database_url: Optional[str] = Field(default=None)

    # Flat-file backend and local uploads
    data_dir: str = Field(default="data")
    posts_file: Optional[str] = Field(default=None)
    uploads_dir: str = Field(default="uploads")
    web_root: Optional[str] = Field(default=None)

    # Public surface
    public_base_url: str = Field(default="")
    cors_origin: str = Field(default="")
    admin_token: str = Field(default="")
    max_upload_bytes: int = Field(default=DEFAULT_MAX_UPLOAD_BYTES)

    # Per-client fixed-window rate limits; 0 disables a limit.
    rate_limit_requests: int = Field(default=300)
    rate_limit_window_seconds: int = Field(default=15 * 60)
    upload_rate_limit_requests: int = Field(default=20)
    upload_rate_limit_window_seconds: int = Field(default=60 * 60)
    gzip_minimum_size: int = Field(default=1000)

    # S3-compatible object storage
    s3_bucket: Optional[str] = Field(default=None)
    s3_endpoint: Optional[str] = Field(default=None)
    s3_region: Optional[str] = Field(default=None)
    s3_public_base_url: Optional[str] = Field(default=None)
    aws_access_key_id: Optional[str] = Field(default=None)
    aws_secret_access_key: Optional[str] = Field(default=None)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, validation_alias="PETFEED_USE_IN_MEMORY_BACKENDS"
    )

    @field_validator("public_base_url")
    @classmethod
    def _strip_trailing_slashes(cls, value: str) -> str:
        return (value or "").rstrip("/")

    @field_validator("admin_token", "cors_origin")
    @classmethod
    def _strip(cls, value: str) -> str:
        return (value or "").strip()

    @property
    def resolved_posts_file(self) -> str:
        return self.posts_file or os.path.join(self.data_dir, "posts.json")

    @property
    def cors_origins(self) -> list[str]:
        """Explicit allow-list, or ``["*"]`` when none is configured."""
        if not self.cors_origin:
            return ["*"]
        return [o.strip() for o in self.cors_origin.split(",") if o.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
