"""Authentication error taxonomy and HTTP mapping."""
import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class AuthError(Exception):
    """Base class for authentication and authorization failures.

    ``str(exc)`` is for logs only; clients always get ``public_detail`` so a
    rejection never reveals which check failed.
    """

    status_code: int = status.HTTP_401_UNAUTHORIZED
    public_detail: str = "Unauthorized"


class MalformedToken(AuthError):
    """Token could not be decoded."""


class InvalidToken(AuthError):
    """Signature mismatch or unexpected algorithm."""


class ExpiredToken(AuthError):
    """Token is past its expiry."""


class SessionRevokedOrUnknown(AuthError):
    """Token is well-formed but has no active server-side session."""


class UserNotFound(AuthError):
    public_detail = "Invalid credentials"


class CredentialMismatch(AuthError):
    """Password, OTP or external credential did not verify."""

    public_detail = "Invalid credentials"


class AdminGrantMissing(AuthError):
    status_code = status.HTTP_403_FORBIDDEN
    public_detail = "Forbidden"


class UpstreamProviderUnavailable(AuthError):
    """An identity, JWKS, email or SMS provider could not be reached."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    public_detail = "Service unavailable"


class ProviderNotConfigured(UpstreamProviderUnavailable):
    """The login channel is disabled because its settings are missing."""


async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    logger.info(f"{request.method} {request.url.path} rejected: {type(exc).__name__}: {exc}")
    headers = {"WWW-Authenticate": "Bearer"} if exc.status_code == status.HTTP_401_UNAUTHORIZED else None
    return JSONResponse(
        status_code=exc.status_code,
        content={"ok": False, "detail": exc.public_detail},
        headers=headers,
    )


def register_exception_handlers(app: FastAPI) -> None:
    """Attach the auth error mapping to an application."""
    app.add_exception_handler(AuthError, auth_error_handler)
