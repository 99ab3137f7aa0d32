"""
Application configuration using environment variables.
"""
import os
import secrets
from functools import lru_cache
from pydantic_settings import BaseSettings
from typing import List

_GENERATED_SECRET = secrets.token_urlsafe(32)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Application
    app_name: str = "writedesk API"
    debug: bool = False
    environment: str = "development"

    # Security
    secret_key: str = os.getenv("SECRET_KEY", _GENERATED_SECRET)
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60  # 1 hour

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./writedesk.db")
    db_timeout_seconds: float = 10.0

    # CORS
    cors_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
    ]

    # Review policy
    review_approval_threshold: float = 3.0

    # Content metrics
    min_body_length: int = 10
    words_per_minute: int = 200
    excerpt_length: int = 160

    # Magazine artifacts
    artifact_dir: str = "pdfs"
    artifact_url_prefix: str = "/api/files/pdf"

    # Real-time delivery
    event_queue_size: int = 10000
    realtime_keepalive_seconds: float = 30.0

    # Rate limiting
    write_rate_limit: str = "60/minute"
    publish_rate_limit: str = "10/minute"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Validate secret key on startup
settings = get_settings()
if settings.environment == "production" and settings.secret_key == _GENERATED_SECRET:
    raise ValueError(
        "SECRET_KEY must be set in production! "
        "Generate one with: python -c \"import secrets; print(secrets.token_urlsafe(32))\""
    )
