"""Centralized configuration for the Balance backend.

Typed constants for the database layer live at module level (read once at
import). Everything the services need is resolved into a single frozen
``Settings`` object by ``get_settings()`` and passed into constructors, so
business logic never touches ``os.environ`` directly.

Every raw value goes through ``normalize_env`` first: deploy tooling often
writes values wrapped in quotes (``JWT_EXPIRES_IN="1h"``).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field, replace
from functools import lru_cache
from urllib.parse import urlsplit

from dotenv import load_dotenv

from balance.errors import ConfigurationError


# --- Database ---
DB_POOL_SIZE: int = int(os.getenv("BALANCE_DB_POOL_SIZE", "5"))
DB_POOL_TIMEOUT: float = float(os.getenv("BALANCE_DB_POOL_TIMEOUT", "5.0"))
DB_CONNECT_TIMEOUT: float = float(os.getenv("BALANCE_DB_CONNECT_TIMEOUT", "30.0"))
DB_TEMP_CONN_MAX: int = int(os.getenv("BALANCE_DB_TEMP_CONN_MAX", "10"))
DB_RETRY_MAX: int = int(os.getenv("BALANCE_DB_RETRY_MAX", "5"))
DB_RETRY_BASE_DELAY: float = float(os.getenv("BALANCE_DB_RETRY_BASE_DELAY", "0.1"))
DB_RETRY_MAX_DELAY: float = float(os.getenv("BALANCE_DB_RETRY_MAX_DELAY", "2.0"))
DB_RETRY_JITTER: float = float(os.getenv("BALANCE_DB_RETRY_JITTER", "0.1"))

# --- Defaults ---
DEFAULT_SESSION_TTL_DAYS = 7
DEFAULT_MAGIC_LINK_TTL_MINUTES = 15
DEFAULT_JWT_EXPIRES_IN = "1h"
DEFAULT_MAX_FILES_PER_UPLOAD = 10
DEFAULT_MAX_FILE_SIZE_MB = 15
DEFAULT_DETECTION_MAX_PAGES = 5
DEFAULT_RATE_LIMIT_WINDOW_SECONDS = 600
DEFAULT_RATE_LIMIT_MAX_REQUESTS = 5
DEFAULT_BUCKET_NAME = "balance-statements"
DEFAULT_AWS_REGION = "us-east-1"
DEFAULT_EMAIL_FROM = "onboarding@resend.dev"
DEFAULT_LOCAL_PUBLIC_URL = "http://localhost:4173"
DEFAULT_RESEND_TIMEOUT_MS = 8000
DEFAULT_RESEND_RETRY_COUNT = 2
DEFAULT_RESEND_RETRY_BASE_DELAY_MS = 400

LOCAL_ENVIRONMENTS = frozenset({"local", "dev", "development", "test"})
EMAIL_PROVIDERS = frozenset({"console", "smtp", "resend"})

DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:4173",
    "http://127.0.0.1:4173",
)


def normalize_env(value: str | None) -> str | None:
    """Trim a raw env value and unwrap one pair of matching quotes.

    Returns None for missing or blank values.
    """
    if value is None:
        return None
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ("'", '"'):
        value = value[1:-1].strip()
    return value or None


def _env(name: str, default: str | None = None) -> str | None:
    value = normalize_env(os.getenv(name))
    return value if value is not None else default


def _positive_int(name: str, default: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    return parsed if parsed > 0 else default


def _bounded_int(name: str, default: int, low: int, high: int) -> int:
    raw = _env(name)
    if raw is None:
        return default
    try:
        parsed = int(raw)
    except ValueError:
        return default
    return min(max(parsed, low), high)


def _flag(name: str, default: bool = False) -> bool:
    raw = _env(name)
    if raw is None:
        return default
    return raw.lower() in ("1", "true", "yes", "on")


def normalize_public_url(raw: str | None) -> str | None:
    """Give a public URL a scheme and drop trailing slashes."""
    value = normalize_env(raw)
    if not value:
        return None
    if "://" not in value:
        value = f"https://{value}"
    return value.rstrip("/")


def _origin_of(url: str) -> str | None:
    parts = urlsplit(url)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


@dataclass(frozen=True)
class Settings:
    """Resolved runtime configuration. Built once at startup."""

    env: str = "development"

    # Auth
    jwt_secret: str | None = None
    jwt_expires_in: str = DEFAULT_JWT_EXPIRES_IN
    session_bootstrap_expires_in: str = DEFAULT_JWT_EXPIRES_IN
    magic_link_ttl_minutes: int = DEFAULT_MAGIC_LINK_TTL_MINUTES
    rate_limit_window_seconds: int = DEFAULT_RATE_LIMIT_WINDOW_SECONDS
    rate_limit_max_requests: int = DEFAULT_RATE_LIMIT_MAX_REQUESTS

    # Sessions / files
    session_ttl_days: int = DEFAULT_SESSION_TTL_DAYS
    max_files_per_upload: int = DEFAULT_MAX_FILES_PER_UPLOAD
    max_file_size_mb: int = DEFAULT_MAX_FILE_SIZE_MB
    detection_max_pages: int = DEFAULT_DETECTION_MAX_PAGES

    # Object storage
    s3_bucket_name: str = DEFAULT_BUCKET_NAME
    aws_region: str = DEFAULT_AWS_REGION
    aws_access_key_id: str | None = None
    aws_secret_access_key: str | None = None
    s3_endpoint: str | None = None
    s3_force_path_style: bool = False
    storage_timeout_seconds: int = 10
    storage_max_attempts: int = 3
    storage_verify_on_startup: bool = False

    # Email delivery
    email_provider: str = "console"
    email_from: str = DEFAULT_EMAIL_FROM
    resend_api_key: str | None = None
    resend_timeout_ms: int = DEFAULT_RESEND_TIMEOUT_MS
    resend_retry_count: int = DEFAULT_RESEND_RETRY_COUNT
    resend_retry_base_delay_ms: int = DEFAULT_RESEND_RETRY_BASE_DELAY_MS
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None

    # HTTP surface
    client_public_url: str | None = None
    cors_origins: tuple[str, ...] = field(default_factory=tuple)
    maintenance_interval_seconds: int = 300

    @classmethod
    def from_env(cls) -> Settings:
        """Read settings from the process environment (after loading .env)."""
        load_dotenv()

        extra_origins = tuple(
            origin.strip().rstrip("/")
            for origin in (_env("CORS_ORIGINS") or "").split(",")
            if origin.strip()
        )

        return cls(
            env=(_env("BALANCE_ENV") or _env("NODE_ENV") or "development").lower(),
            jwt_secret=_env("JWT_SECRET"),
            jwt_expires_in=_env("JWT_EXPIRES_IN", DEFAULT_JWT_EXPIRES_IN),
            session_bootstrap_expires_in=_env(
                "SESSION_BOOTSTRAP_EXPIRES_IN", DEFAULT_JWT_EXPIRES_IN
            ),
            magic_link_ttl_minutes=_positive_int(
                "MAGIC_LINK_TTL_MINUTES", DEFAULT_MAGIC_LINK_TTL_MINUTES
            ),
            rate_limit_window_seconds=_positive_int(
                "AUTH_RATE_LIMIT_WINDOW_SECONDS", DEFAULT_RATE_LIMIT_WINDOW_SECONDS
            ),
            rate_limit_max_requests=_positive_int(
                "AUTH_RATE_LIMIT_MAX_REQUESTS", DEFAULT_RATE_LIMIT_MAX_REQUESTS
            ),
            session_ttl_days=_positive_int("SESSION_TTL_DAYS", DEFAULT_SESSION_TTL_DAYS),
            max_files_per_upload=_positive_int(
                "MAX_FILES_PER_UPLOAD", DEFAULT_MAX_FILES_PER_UPLOAD
            ),
            max_file_size_mb=_positive_int("MAX_FILE_SIZE_MB", DEFAULT_MAX_FILE_SIZE_MB),
            detection_max_pages=_positive_int(
                "DETECTION_MAX_PAGES", DEFAULT_DETECTION_MAX_PAGES
            ),
            s3_bucket_name=_env("S3_BUCKET_NAME", DEFAULT_BUCKET_NAME),
            aws_region=_env("AWS_REGION", DEFAULT_AWS_REGION),
            aws_access_key_id=_env("AWS_ACCESS_KEY_ID"),
            aws_secret_access_key=_env("AWS_SECRET_ACCESS_KEY"),
            s3_endpoint=_env("AWS_S3_ENDPOINT") or _env("S3_ENDPOINT"),
            s3_force_path_style=_flag("AWS_S3_FORCE_PATH_STYLE"),
            storage_timeout_seconds=_positive_int("STORAGE_TIMEOUT_SECONDS", 10),
            storage_max_attempts=_bounded_int("STORAGE_MAX_ATTEMPTS", 3, 1, 10),
            storage_verify_on_startup=_flag("STORAGE_VERIFY_ON_STARTUP"),
            email_provider=(_env("EMAIL_PROVIDER") or "console").lower(),
            email_from=_env("EMAIL_FROM", DEFAULT_EMAIL_FROM),
            resend_api_key=_env("RESEND_API_KEY"),
            resend_timeout_ms=_positive_int("RESEND_TIMEOUT_MS", DEFAULT_RESEND_TIMEOUT_MS),
            resend_retry_count=_bounded_int(
                "RESEND_RETRY_COUNT", DEFAULT_RESEND_RETRY_COUNT, 0, 5
            ),
            resend_retry_base_delay_ms=_bounded_int(
                "RESEND_RETRY_BASE_DELAY_MS", DEFAULT_RESEND_RETRY_BASE_DELAY_MS, 100, 5000
            ),
            smtp_host=_env("SMTP_HOST"),
            smtp_port=_positive_int("SMTP_PORT", 587),
            smtp_user=_env("SMTP_USER"),
            smtp_password=_env("SMTP_PASSWORD"),
            client_public_url=normalize_public_url(
                _env("CLIENT_PUBLIC_URL") or _env("APP_PUBLIC_URL")
            ),
            cors_origins=extra_origins,
            maintenance_interval_seconds=_positive_int("MAINTENANCE_INTERVAL_SECONDS", 300),
        )

    def with_overrides(self, **changes: object) -> Settings:
        """Return a copy with some fields replaced (used by tests)."""
        return replace(self, **changes)  # type: ignore[arg-type]

    @property
    def is_local(self) -> bool:
        return self.env in LOCAL_ENVIRONMENTS

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def public_url(self) -> str:
        """Base URL the magic links point at.

        Raises:
            ConfigurationError: outside local environments when unset
        """
        if self.client_public_url:
            return self.client_public_url
        if self.is_local:
            return DEFAULT_LOCAL_PUBLIC_URL
        raise ConfigurationError("CLIENT_PUBLIC_URL must be set for non-local environments.")

    def magic_link_url(self, raw_token: str) -> str:
        return f"{self.public_url}/auth/verify?token={raw_token}"

    def allowed_origins(self) -> list[str]:
        """CORS origins: local dev servers, the public client URL and CORS_ORIGINS."""
        origins: list[str] = list(DEFAULT_CORS_ORIGINS)
        if self.client_public_url:
            origin = _origin_of(self.client_public_url)
            if origin:
                origins.append(origin)
        origins.extend(self.cors_origins)
        # Preserve order, drop duplicates
        return list(dict.fromkeys(origins))

    def validate(self) -> None:
        """Fail fast on missing secrets.

        Raises:
            ConfigurationError: if a required value is missing or inconsistent
        """
        if not self.jwt_secret:
            raise ConfigurationError("JWT_SECRET must be configured.")
        if self.email_provider not in EMAIL_PROVIDERS:
            raise ConfigurationError(
                f"EMAIL_PROVIDER must be one of {', '.join(sorted(EMAIL_PROVIDERS))}."
            )
        if self.email_provider == "resend" and not self.resend_api_key:
            raise ConfigurationError("RESEND_API_KEY must be set when EMAIL_PROVIDER=resend.")
        if self.email_provider == "smtp" and not (self.smtp_host and self.smtp_user):
            raise ConfigurationError("SMTP_HOST and SMTP_USER must be set when EMAIL_PROVIDER=smtp.")
        # Raises for non-local environments without a client URL
        _ = self.public_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, resolved on first use."""
    return Settings.from_env()
