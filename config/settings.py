"""Configuration management using pydantic-settings."""
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Control-plane API
    api_base_url: str = "https://api.301.st"
    request_timeout_seconds: float = 30.0

    # Cache settings
    default_cache_ttl_seconds: float = 30.0

    # Credentials
    # Age after which a credential is refreshed before use (10 minutes)
    token_max_age_seconds: float = 600.0
    # SQLite file mirroring the bearer token for session restore (None = memory only)
    token_mirror_path: Optional[Path] = None

    # Logging
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        env_prefix = "DASHSYNC_"


settings = Settings()
