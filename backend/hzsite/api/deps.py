"""Shared API dependencies, including the authorization gate.

Gate order for every authenticated request: extract the token (cookie, then
bearer header), verify it with the codec, confirm its session is still live,
and for admin routes confirm an active admin grant.
"""
from dataclasses import dataclass
from functools import lru_cache
import logging

from fastapi import Depends, Request
from sqlalchemy.orm import Session

from hzsite.config import get_settings
from hzsite.database import get_db
from hzsite.errors import AdminGrantMissing, AuthError, MalformedToken, SessionRevokedOrUnknown
from hzsite.services.admin_grants import get_active_grant
from hzsite.services.identity import GoogleIdentityProvider, HostedTokenIdentityProvider
from hzsite.services.jwks import JWKSClient, TTLCache
from hzsite.services.notifications import OtpNotifier
from hzsite.services.otp import OtpService
from hzsite.services.session_store import SessionStore
from hzsite.services.tokens import SessionClaims, TokenCodec, get_token_codec

logger = logging.getLogger(__name__)

__all__ = [
    "Principal",
    "extract_token",
    "resolve_principal",
    "get_db",
    "get_token_codec",
    "get_optional_principal",
    "get_current_principal",
    "require_admin",
    "get_jwks_client",
    "get_notifier",
    "get_otp_service",
    "get_google_provider",
    "get_hosted_provider",
]


@dataclass(frozen=True)
class Principal:
    """The authenticated caller behind a request."""

    user_id: int
    role: str
    provider: str
    token: str
    claims: SessionClaims
    email: str | None = None
    name: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


def extract_token(request: Request) -> str | None:
    """Session cookie first, then ``Authorization: Bearer``."""
    cookie_token = request.cookies.get(get_settings().session_cookie_name)
    if cookie_token and cookie_token.strip():
        return cookie_token.strip()

    auth_header = request.headers.get("authorization")
    if auth_header:
        scheme, _, value = auth_header.partition(" ")
        if scheme.lower() == "bearer" and value.strip():
            return value.strip()
    return None


def resolve_principal(token: str, db: Session, codec: TokenCodec) -> Principal:
    """Verify a token and its live session, whatever provider issued it."""
    claims = codec.verify(token)
    if not SessionStore(db).is_active(token):
        raise SessionRevokedOrUnknown(f"no active session for user {claims.sub}")

    return Principal(
        user_id=claims.user_id,
        role=claims.role,
        provider=claims.provider,
        token=token,
        claims=claims,
        email=claims.email,
        name=claims.name,
    )


def get_optional_principal(
    request: Request,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
) -> Principal | None:
    """Soft auth: missing or bad credentials resolve to ``None``."""
    token = extract_token(request)
    if not token:
        return None
    try:
        return resolve_principal(token, db, codec)
    except AuthError as exc:
        logger.debug(f"Soft auth ignored credentials: {type(exc).__name__}")
        return None


def get_current_principal(
    request: Request,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
) -> Principal:
    """Hard auth: missing or bad credentials are rejected with 401."""
    token = extract_token(request)
    if not token:
        raise MalformedToken("no credentials presented")
    return resolve_principal(token, db, codec)


def require_admin(
    principal: Principal = Depends(get_current_principal),
    db: Session = Depends(get_db),
) -> Principal:
    """Admin routes need the admin role claim and a live admin grant."""
    if not principal.is_admin:
        raise AdminGrantMissing(f"user {principal.user_id} has role {principal.role}")
    if get_active_grant(db, principal.email) is None:
        raise AdminGrantMissing(f"no active admin grant for user {principal.user_id}")
    return principal


@lru_cache
def get_jwks_client() -> JWKSClient:
    """Process-wide JWKS client; the cache is shared across requests."""
    settings = get_settings()
    return JWKSClient(
        TTLCache(settings.jwks_ttl_seconds),
        timeout=settings.http_timeout_seconds,
        refresh_interval=settings.jwks_min_refresh_seconds,
    )


def get_notifier() -> OtpNotifier:
    return OtpNotifier(get_settings())


def get_otp_service(
    db: Session = Depends(get_db),
    notifier: OtpNotifier = Depends(get_notifier),
) -> OtpService:
    settings = get_settings()
    return OtpService(
        db,
        notifier,
        expires_seconds=settings.otp_expires_seconds,
        code_length=settings.otp_length,
        max_attempts=settings.otp_max_attempts,
    )


def get_google_provider(jwks_client: JWKSClient = Depends(get_jwks_client)) -> GoogleIdentityProvider:
    settings = get_settings()
    return GoogleIdentityProvider(jwks_client, settings.google_client_id, settings.google_jwks_url)


def get_hosted_provider(jwks_client: JWKSClient = Depends(get_jwks_client)) -> HostedTokenIdentityProvider:
    settings = get_settings()
    return HostedTokenIdentityProvider(
        jwks_client,
        settings.supabase_url,
        jwks_path=settings.supabase_jwks_path,
        audience=settings.supabase_audience,
    )
