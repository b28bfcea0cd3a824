"""
aptivo/config/settings.py
Environment-driven settings.

Values come from the process environment; a .env file at the project root
is loaded first so local development does not need exported variables.
"""
import os
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
ENV_FILE = PROJECT_ROOT / ".env"

load_dotenv(dotenv_path=ENV_FILE)


def _get_int_env(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    return int(value)


class Settings:
    """Process-wide configuration, read once at import time."""

    ENVIRONMENT: str = os.getenv("ENVIRONMENT", "development")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./aptivo.db")

    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "dev-secret-key-change-in-production")
    JWT_REFRESH_SECRET_KEY: str = os.getenv("JWT_REFRESH_SECRET_KEY", "refresh-secret-key-change-in-production")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = _get_int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 30)
    REFRESH_TOKEN_EXPIRE_DAYS: int = _get_int_env("REFRESH_TOKEN_EXPIRE_DAYS", 7)
    EMAIL_VERIFY_EXPIRE_HOURS: int = _get_int_env("EMAIL_VERIFY_EXPIRE_HOURS", 48)

    # Server-side credential for privileged writes (user creation, content mapping)
    SERVICE_ROLE_KEY: Optional[str] = os.getenv("SERVICE_ROLE_KEY") or None

    SITE_URL: str = os.getenv("SITE_URL", "http://localhost:3000")
    ALLOWED_ORIGINS: str = os.getenv("ALLOWED_ORIGINS", "")

    UPLOAD_MAX_BYTES: int = _get_int_env("UPLOAD_MAX_BYTES", 10 * 1024 * 1024)
    UPLOAD_BATCH_SIZE: int = _get_int_env("UPLOAD_BATCH_SIZE", 50)

    SUPER_ADMIN_EMAIL: Optional[str] = os.getenv("SUPER_ADMIN_EMAIL") or None

    RATE_LIMIT_ENABLED: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() in ("true", "1", "yes")

    @property
    def is_development(self) -> bool:
        return self.ENVIRONMENT == "development"

    @property
    def cors_origins(self) -> List[str]:
        origins = [
            "http://localhost:3000",
            "http://127.0.0.1:3000",
            self.SITE_URL,
        ]
        extra = [o.strip() for o in self.ALLOWED_ORIGINS.split(",") if o.strip()]
        for origin in extra:
            if origin not in origins:
                origins.append(origin)
        return origins


settings = Settings()
