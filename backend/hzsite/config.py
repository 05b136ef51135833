"""Application configuration."""
from collections import Counter
from functools import lru_cache
import math

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

HMAC_ALGORITHMS = {"HS256", "HS384", "HS512"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # App
    app_name: str = "hz-site-api"
    debug: bool = False
    log_level: str = "INFO"
    cors_origins: list[str] = ["http://localhost:5173"]

    # Database
    database_url: str = "sqlite:///./hzsite.db"

    # Session tokens
    secret_key: str
    algorithm: str = "HS256"
    session_expire_days: int = 7
    session_purge_grace_days: int = 30
    session_cookie_name: str = "hz_session"
    session_cookie_domain: str | None = None
    session_cookie_samesite: str = "lax"
    session_cookie_secure: bool = True

    # Admin bootstrap
    admin_email: str | None = None

    # OTP
    otp_expires_seconds: int = 300
    otp_length: int = 8
    otp_max_attempts: int = 5

    # Google Identity Services
    google_client_id: str | None = None
    google_jwks_url: str = "https://www.googleapis.com/oauth2/v3/certs"

    # Hosted auth (Supabase)
    supabase_url: str | None = None
    supabase_jwks_path: str = "/auth/v1/.well-known/jwks.json"
    supabase_audience: str = "authenticated"
    jwks_ttl_seconds: int = 3600
    jwks_min_refresh_seconds: int = 60

    # Outbound HTTP
    http_timeout_seconds: float = 10.0

    # Email (SMTP)
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_user: str | None = None
    smtp_password: str | None = None
    mail_from: str = "noreply@hz-site.local"

    # SMS (MSG91)
    msg91_auth_key: str | None = None
    msg91_template_id: str | None = None
    msg91_sender_id: str | None = None
    msg91_url: str = "https://api.msg91.com/api/v5/otp"

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, value: str) -> str:
        """Fail closed if SECRET_KEY is weak or placeholder quality."""
        if not value:
            raise ValueError("SECRET_KEY must be set.")

        if len(value) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters.")

        weak_values = {"changeme", "changeme-in-production", "secret", "password", "test"}
        lowered = value.lower()
        if lowered in weak_values or "changeme" in lowered:
            raise ValueError("SECRET_KEY must not be a placeholder value.")

        counts = Counter(value)
        entropy_per_char = -sum((count / len(value)) * math.log2(count / len(value)) for count in counts.values())
        estimated_entropy_bits = entropy_per_char * len(value)
        if estimated_entropy_bits < 100:
            raise ValueError("SECRET_KEY entropy is too low; use a cryptographically random value.")

        return value

    @field_validator("algorithm")
    @classmethod
    def validate_algorithm(cls, value: str) -> str:
        """Session tokens are HMAC-signed; anything else (including "none") is refused."""
        normalized = value.strip().upper()
        if normalized not in HMAC_ALGORITHMS:
            raise ValueError(f"ALGORITHM must be one of {sorted(HMAC_ALGORITHMS)}.")
        return normalized

    @field_validator("session_cookie_samesite")
    @classmethod
    def validate_samesite(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in {"lax", "strict", "none"}:
            raise ValueError("SESSION_COOKIE_SAMESITE must be lax, strict or none.")
        return normalized

    @field_validator("admin_email")
    @classmethod
    def normalize_admin_email(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip().lower()

    @field_validator("google_client_id", "supabase_url", "smtp_host", "msg91_auth_key", "session_cookie_domain")
    @classmethod
    def blank_as_unset(cls, value: str | None) -> str | None:
        """Empty strings in the environment mean "not configured"."""
        if value is None or not value.strip():
            return None
        return value.strip()


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
