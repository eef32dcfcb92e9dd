"""
Process-wide settings for raindrop-mfa.

Settings are read once from the environment (and secret files, see
``secrets.py``) and cached for the lifetime of the process. Per-request MFA
policy is NOT configured here; it lives in the key-value store and is loaded
through ``PolicyStore``.
"""
import os
import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from .secrets import get_secret, mask_secret

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class Settings:
    """Immutable process settings."""

    # Storage
    store_backend: str = "memory"
    database_url: str = "sqlite:///./raindrop_mfa.db"
    redis_host: Optional[str] = None
    redis_port: int = 6379
    redis_password: Optional[str] = None
    redis_db: int = 0

    # MFA session cookie
    cookie_name: str = "raindrop_mfa"
    cookie_secure: bool = True
    site_path: str = "/"
    cookie_salt: Optional[str] = None

    # Host session cookie (primary login)
    host_cookie_name: str = "raindrop_host_session"

    # Form submissions are only processed on HTTPS requests
    require_secure: bool = True

    # Redirect targets
    home_url: str = "/"
    login_url: str = "/auth/login"
    setup_url: str = "/mfa/setup"
    verify_url: str = "/mfa/verify"
    default_redirect: str = "/"

    # Identity service credentials
    application_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    environment: str = "sandbox"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from environment variables."""
        return cls(
            store_backend=os.getenv("RAINDROP_STORE_BACKEND", "memory").lower(),
            database_url=os.getenv("DATABASE_URL", "sqlite:///./raindrop_mfa.db"),
            redis_host=os.getenv("REDIS_HOST") or None,
            redis_port=int(os.getenv("REDIS_PORT", "6379")),
            redis_password=get_secret("REDIS_PASSWORD") or None,
            redis_db=int(os.getenv("REDIS_DB", "0")),
            cookie_name=os.getenv("RAINDROP_COOKIE_NAME", "raindrop_mfa"),
            cookie_secure=_env_bool("RAINDROP_COOKIE_SECURE", True),
            site_path=os.getenv("RAINDROP_SITE_PATH", "/"),
            cookie_salt=get_secret("RAINDROP_COOKIE_SALT"),
            require_secure=_env_bool("RAINDROP_REQUIRE_SECURE", True),
            home_url=os.getenv("RAINDROP_HOME_URL", "/"),
            login_url=os.getenv("RAINDROP_LOGIN_URL", "/auth/login"),
            setup_url=os.getenv("RAINDROP_SETUP_URL", "/mfa/setup"),
            verify_url=os.getenv("RAINDROP_VERIFY_URL", "/mfa/verify"),
            default_redirect=os.getenv("RAINDROP_DEFAULT_REDIRECT", "/"),
            application_id=get_secret("RAINDROP_APPLICATION_ID"),
            client_id=get_secret("RAINDROP_CLIENT_ID"),
            client_secret=get_secret("RAINDROP_CLIENT_SECRET"),
            environment=os.getenv("RAINDROP_ENVIRONMENT", "sandbox"),
        )


def has_valid_client_options(settings: Settings) -> bool:
    """Whether identity-service credentials are present."""
    return bool(settings.application_id and settings.client_id and settings.client_secret)


def describe_client_options(settings: Settings) -> str:
    """One-line summary of the identity-service credentials, safe for logs."""
    return (
        f"application_id={settings.application_id or '-'} "
        f"client_id={settings.client_id or '-'} "
        f"client_secret={mask_secret(settings.client_secret)} "
        f"environment={settings.environment}"
    )


@lru_cache
def get_settings() -> Settings:
    """Return cached settings singleton."""
    settings = Settings.from_env()
    logger.debug(f"Identity service options: {describe_client_options(settings)}")
    return settings
