"""
Application configuration loaded from environment variables.
"""
from pathlib import Path
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables."""

    # Google OAuth
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:8000/api/google/callback"
    oauth_state_ttl_seconds: int = 600
    token_expiry_skew_seconds: int = 60

    # Google API calls
    google_timeout_seconds: float = 15.0
    google_max_retries: int = 2
    google_retry_backoff_seconds: float = 1.0

    # Frontend URL for CORS and redirects
    frontend_url: str = "http://localhost:3000"

    # Signing key for OAuth state and subject cookies
    session_secret: str = "dev-secret-change-in-production"
    subject_cookie_days: int = 30

    # Uploads
    upload_dir: Path = Path("./uploads")
    max_upload_bytes: int = 50 * 1024 * 1024
    staged_file_ttl_hours: int = 24

    # Debug mode
    debug: bool = True

    # Google OAuth scopes
    @property
    def google_scopes(self) -> list[str]:
        return [
            "https://www.googleapis.com/auth/spreadsheets.readonly",
            "https://www.googleapis.com/auth/drive.readonly",
        ]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
