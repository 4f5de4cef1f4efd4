"""Configuration settings for the Sasa backend."""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Supabase
    supabase_url: str
    supabase_secret_key: str | None = None  # Backend/admin access
    # Legacy key name, still accepted
    supabase_service_role_key: str | None = None

    # JWT
    jwt_secret_key: str  # Required - no default for security
    jwt_algorithm: str = "HS256"
    jwt_expire_minutes: int = 60 * 24 * 7  # 1 week

    # App
    debug: bool = False
    log_level: str = "INFO"
    api_prefix: str = "/api"
    cors_origins: list[str] = [
        "http://localhost:5173",
        "http://127.0.0.1:5173",
        "https://sasa-indol.vercel.app",
    ]

    # Marketplace
    max_pending_applications: int = 4
    listing_cache_ttl_seconds: int = 300
    apply_max_attempts: int = 5

    # Realtime: the auth frame must carry a JWT matching its userId
    realtime_require_token: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
