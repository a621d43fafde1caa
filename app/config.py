"""
Deployment Control Plane Configuration

Environment Variables:
- DATABASE_URL: PostgreSQL database holding users and projects
- REDIS_URL: Redis for webhook rate limiting (optional)
- ENCRYPTION_KEY: server-wide secret for credentials at rest
- JWT_SECRET: secret used to verify owner session tokens
- CLOUDFLARE_API_TOKEN / CLOUDFLARE_ACCOUNT_ID: Cloudflare Pages access
- NETLIFY_API_TOKEN: Netlify access
- ENV: environment (development/production)
"""

import os
from typing import List
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Control plane settings."""

    # Core
    ENV: str = os.getenv("ENV", "development")

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", "")
    DB_POOL_MIN_SIZE: int = 2
    DB_POOL_MAX_SIZE: int = 10
    RUN_MIGRATIONS: bool = True

    # Redis (for webhook rate limiting)
    REDIS_URL: str = os.getenv("REDIS_URL", "")

    # Secrets
    ENCRYPTION_KEY: str = os.getenv("ENCRYPTION_KEY", "")
    JWT_SECRET: str = os.getenv("JWT_SECRET", "")
    JWT_ALGORITHM: str = "HS256"

    # Providers
    CLOUDFLARE_API_TOKEN: str = os.getenv("CLOUDFLARE_API_TOKEN", "")
    CLOUDFLARE_ACCOUNT_ID: str = os.getenv("CLOUDFLARE_ACCOUNT_ID", "")
    CLOUDFLARE_API_URL: str = "https://api.cloudflare.com/client/v4"
    NETLIFY_API_TOKEN: str = os.getenv("NETLIFY_API_TOKEN", "")
    NETLIFY_API_URL: str = "https://api.netlify.com/api/v1"
    PROVIDER_TIMEOUT_SECONDS: float = 15.0

    # Webhooks
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8080")
    WEBHOOK_RATE_LIMIT: int = 50  # deliveries per window, per client IP
    WEBHOOK_RATE_WINDOW: int = 60  # seconds
    TRUSTED_PROXY_HOPS: int = 0  # proxies in front that append to X-Forwarded-For

    # CORS
    ALLOWED_ORIGINS: List[str] = [
        "http://localhost:3000",  # Local dev
    ]

    # Status refresh job
    STATUS_REFRESH_INTERVAL_MINUTES: int = 2
    STATUS_REFRESH_BATCH_SIZE: int = 50

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def is_production(self) -> bool:
        return self.ENV == "production"


_settings = None


def get_settings() -> Settings:
    """Get settings instance (singleton)."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
