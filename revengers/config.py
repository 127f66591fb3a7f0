"""
Application configuration.

All values are read from the environment at call time (not import time) so
that tests can monkeypatch the environment. A local .env file is loaded once
on import.
"""

import logging
import os
import secrets
from typing import List, Optional

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

# Fallback secret for non-production runs without SESSION_SECRET.
# Regenerated per process, so sessions do not survive restarts.
_EPHEMERAL_SESSION_SECRET = secrets.token_hex(32)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning(f"Ignoring non-integer value for {name}: {raw!r}")
        return default


def _list_env(name: str, default: str) -> List[str]:
    return [item.strip() for item in os.getenv(name, default).split(",") if item.strip()]


class Settings:
    """Environment-driven settings with development defaults."""

    # Environment
    @property
    def environment(self) -> str:
        if os.getenv("ENV", "").lower() == "test":
            return "test"
        return os.getenv("NODE_ENV", "development").lower()

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_test(self) -> bool:
        return self.environment == "test"

    # Server
    @property
    def port(self) -> int:
        return _int_env("PORT", 3000)

    @property
    def host(self) -> str:
        return os.getenv("HOST", "0.0.0.0")

    # Database
    @property
    def database_url(self) -> Optional[str]:
        url = os.getenv("DATABASE_URL")
        if not url:
            return None
        # Hosting providers hand out libpq-style URLs; SQLAlchemy needs the driver name
        if url.startswith("postgres://"):
            url = "postgresql://" + url[len("postgres://"):]
        if url.startswith("postgresql://"):
            url = "postgresql+asyncpg://" + url[len("postgresql://"):]
        return url

    @property
    def db_pool_max(self) -> int:
        return _int_env("DB_POOL_MAX", 10)

    @property
    def db_pool_max_waiters(self) -> int:
        return _int_env("DB_POOL_MAX_WAITERS", 50)

    @property
    def db_pool_timeout_seconds(self) -> float:
        return _int_env("DB_POOL_TIMEOUT_MS", 2000) / 1000

    # Sessions / security
    @property
    def session_secret(self) -> str:
        secret = os.getenv("SESSION_SECRET")
        if secret:
            return secret
        if self.is_production:
            raise RuntimeError("SESSION_SECRET must be set in production")
        return _EPHEMERAL_SESSION_SECRET

    @property
    def session_cookie_name(self) -> str:
        return os.getenv("SESSION_COOKIE_NAME", "revengers.sid")

    @property
    def session_max_age_seconds(self) -> int:
        return _int_env("COOKIE_MAX_AGE_MS", 24 * 60 * 60 * 1000) // 1000

    @property
    def session_prune_interval_seconds(self) -> int:
        return _int_env("SESSION_PRUNE_INTERVAL_S", 900)

    @property
    def bcrypt_rounds(self) -> int:
        return _int_env("BCRYPT_ROUNDS", 12)

    @property
    def default_admin_username(self) -> Optional[str]:
        username = os.getenv("DEFAULT_ADMIN_USERNAME")
        if username:
            return username
        return "admin" if self.is_development else None

    @property
    def default_admin_password(self) -> Optional[str]:
        password = os.getenv("DEFAULT_ADMIN_PASSWORD")
        if password:
            return password
        # Development-only fallback; production must provide an override
        return "adminpassword" if self.is_development else None

    # Object store
    @property
    def object_store(self) -> dict:
        return {
            "access_key_id": os.getenv("AWS_ACCESS_KEY_ID"),
            "secret_access_key": os.getenv("AWS_SECRET_ACCESS_KEY"),
            "bucket": os.getenv("AWS_S3_BUCKET"),
            "region": os.getenv("AWS_S3_REGION", "us-west-2"),
            "public_url": (os.getenv("OBJECT_STORE_PUBLIC_URL") or "").rstrip("/") or None,
        }

    @property
    def object_store_upload_timeout(self) -> float:
        return float(_int_env("OBJECT_STORE_UPLOAD_TIMEOUT_S", 30))

    @property
    def object_store_delete_timeout(self) -> float:
        return float(_int_env("OBJECT_STORE_DELETE_TIMEOUT_S", 10))

    # Uploads and bodies
    @property
    def max_file_size(self) -> int:
        return _int_env("MAX_FILE_SIZE_MB", 5) * 1024 * 1024

    @property
    def allowed_file_types(self) -> List[str]:
        return _list_env("ALLOWED_FILE_TYPES", "image/jpeg,image/png,image/webp,image/gif")

    @property
    def max_body_size(self) -> int:
        return _int_env("MAX_BODY_SIZE_MB", 10) * 1024 * 1024

    @property
    def list_limit(self) -> int:
        return _int_env("LIST_LIMIT", 20)

    # Rate limiting
    @property
    def rate_limit_window_seconds(self) -> int:
        return _int_env("RATE_LIMIT_WINDOW_MS", 15 * 60 * 1000) // 1000

    @property
    def rate_limit_max_requests(self) -> int:
        return _int_env("RATE_LIMIT_MAX_REQUESTS", 100)

    @property
    def auth_rate_limit_max(self) -> int:
        return _int_env("AUTH_RATE_LIMIT_MAX", 5)

    @property
    def rate_limit_storage_uri(self) -> str:
        return os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")

    # HTTP edge
    @property
    def production_url(self) -> str:
        return os.getenv("PRODUCTION_URL", "https://revengers-esports.onrender.com").rstrip("/")

    @property
    def csp_extra_sources(self) -> List[str]:
        return _list_env("CSP_EXTRA_SOURCES", "https://cdnjs.cloudflare.com")

    @property
    def compression_level(self) -> int:
        return _int_env("COMPRESSION_LEVEL", 6)

    # Logging
    @property
    def log_level(self) -> str:
        default = "DEBUG" if self.is_development else "INFO"
        return os.getenv("LOG_LEVEL", default).upper()

    @property
    def security_log_file(self) -> Optional[str]:
        return os.getenv("SECURITY_LOG_FILE") or None

    def validate_required(self) -> List[str]:
        """Return the names of required environment variables that are missing."""
        required = ["SESSION_SECRET"]
        if not self.is_test:
            required.append("DATABASE_URL")
        if self.is_production:
            required.extend(["AWS_ACCESS_KEY_ID", "AWS_SECRET_ACCESS_KEY", "AWS_S3_BUCKET"])
        return [name for name in required if not os.getenv(name)]

    def debug_info(self) -> dict:
        """Configuration snapshot with secrets reduced to presence flags."""
        store = self.object_store
        return {
            "environment": self.environment,
            "host": self.host,
            "port": self.port,
            "has_database": bool(os.getenv("DATABASE_URL")),
            "has_object_store": bool(store["bucket"] and store["access_key_id"]),
            "has_session_secret": bool(os.getenv("SESSION_SECRET")),
            "max_file_size": self.max_file_size,
            "allowed_file_types": self.allowed_file_types,
            "log_level": self.log_level,
        }


settings = Settings()
