from __future__ import annotations
import os
from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import field_validator

from tubelift.config.upload_defaults import (
    CHUNK_GRANULARITY,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_MAX_ATTEMPTS,
    DEFAULT_BACKOFF_BASE_SECONDS,
    DEFAULT_BACKOFF_MAX_SECONDS,
    DEFAULT_TIMEOUT_SECONDS,
)


class Settings(BaseSettings):
    """
    Centralized configuration for tubelift.
    Loads from .env file or environment variables.
    """
    model_config = SettingsConfigDict(
        env_file=os.path.join(os.path.dirname(__file__), ".env"),
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Google OAuth
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    OAUTH_REDIRECT_URI: str = "http://localhost:8080/"

    # Token persistence
    TOKEN_STORE_DIR: str = os.path.join("~", ".oauth-credentials")
    DATABASE_URL: Optional[str] = None
    TOKEN_EXPIRY_SKEW_SECONDS: int = 60

    # Resumable upload tuning
    UPLOAD_CHUNK_SIZE: int = DEFAULT_CHUNK_SIZE
    UPLOAD_MAX_ATTEMPTS: int = DEFAULT_MAX_ATTEMPTS
    UPLOAD_BACKOFF_BASE_SECONDS: float = DEFAULT_BACKOFF_BASE_SECONDS
    UPLOAD_BACKOFF_MAX_SECONDS: float = DEFAULT_BACKOFF_MAX_SECONDS
    UPLOAD_TIMEOUT_SECONDS: float = DEFAULT_TIMEOUT_SECONDS

    @field_validator("UPLOAD_CHUNK_SIZE", "UPLOAD_MAX_ATTEMPTS")
    @classmethod
    def _must_be_positive(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("must be a positive integer")
        return value

    @field_validator("UPLOAD_CHUNK_SIZE")
    @classmethod
    def _must_match_granularity(cls, value: int) -> int:
        if value % CHUNK_GRANULARITY:
            raise ValueError(
                f"must be a multiple of {CHUNK_GRANULARITY} bytes (256 KiB), got {value}"
            )
        return value

    @property
    def token_store_path(self) -> str:
        """Expanded token store directory"""
        return os.path.expanduser(self.TOKEN_STORE_DIR)

    @property
    def client_config(self) -> dict:
        """Installed-app client config in the shape google-auth-oauthlib expects"""
        return {
            "installed": {
                "client_id": self.GOOGLE_CLIENT_ID,
                "client_secret": self.GOOGLE_CLIENT_SECRET,
                "auth_uri": "https://accounts.google.com/o/oauth2/auth",
                "token_uri": "https://oauth2.googleapis.com/token",
                "redirect_uris": [self.OAUTH_REDIRECT_URI]
            }
        }

settings = Settings()
