"""Application configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from src.repositories.storage import is_valid_storage_key

AnnotationBackend = Literal["file", "mongo"]


class Settings(BaseSettings):
    """Strongly typed settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="BLUMIRA_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Upstream API credentials (absence is reported, not rejected)
    client_id: str | None = None
    client_secret: str | None = None

    # Upstream endpoints
    auth_url: str = "https://auth.blumira.com/oauth/token"
    api_base_url: str = "https://api.blumira.com/public-api/v1"
    app_base_url: str = "https://app.blumira.com"
    http_timeout_seconds: float = 30.0
    token_expiry_margin_seconds: int = 60
    allow_upstream_writes: bool = False

    # Annotation store
    annotation_backend: AnnotationBackend = "file"
    annotation_data_dir: Path = Path("data")
    annotation_storage_key: str = "blumira-finding-annotations"
    mongodb_uri: str | None = None
    mongodb_database: str = "blumira_dashboard"

    @property
    def has_credentials(self) -> bool:
        return bool(self.client_id) and bool(self.client_secret)

    @model_validator(mode="after")
    def validate_runtime_configuration(self) -> "Settings":
        """Validate cross-field configuration constraints."""
        if self.http_timeout_seconds <= 0:
            raise ValueError("BLUMIRA_HTTP_TIMEOUT_SECONDS must be > 0")

        if self.token_expiry_margin_seconds < 0:
            raise ValueError("BLUMIRA_TOKEN_EXPIRY_MARGIN_SECONDS must be >= 0")

        if not is_valid_storage_key(self.annotation_storage_key):
            raise ValueError(
                "BLUMIRA_ANNOTATION_STORAGE_KEY must be non-empty and use only letters, digits, dot, underscore or dash"
            )

        if self.annotation_backend == "mongo" and not self.mongodb_uri:
            raise ValueError("BLUMIRA_MONGODB_URI is required when BLUMIRA_ANNOTATION_BACKEND=mongo")

        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""
    return Settings()
