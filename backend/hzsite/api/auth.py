"""Authentication API endpoints."""
import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.orm import Session

from hzsite.api.deps import (
    Principal,
    extract_token,
    get_current_principal,
    get_db,
    get_google_provider,
    get_hosted_provider,
    get_optional_principal,
    get_otp_service,
    get_token_codec,
)
from hzsite.config import get_settings
from hzsite.models.user import User
from hzsite.schemas.auth import (
    AuthResponse,
    EmailOtpRequest,
    EmailOtpVerify,
    GoogleLogin,
    MeResponse,
    MessageResponse,
    OtpRequestResponse,
    SessionUser,
    SmsOtpRequest,
    SmsOtpVerify,
    TokenExchange,
    UserLogin,
    UserRegister,
)
from hzsite.services.identity import (
    GoogleIdentityProvider,
    HostedTokenIdentityProvider,
    PasswordIdentityProvider,
    VerifiedIdentity,
    get_password_hash,
)
from hzsite.services.login import IssuedSession, complete_login
from hzsite.services.notifications import normalize_indian_mobile
from hzsite.services.otp import OtpIdentityProvider, OtpService
from hzsite.services.session_store import SessionStore
from hzsite.services.tokens import TokenCodec

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/auth", tags=["auth"])
settings = get_settings()


def set_session_cookie(response: Response, token: str, max_age: int) -> None:
    """Issue secure HttpOnly session cookie."""
    response.set_cookie(
        key=settings.session_cookie_name,
        value=token,
        httponly=True,
        secure=settings.session_cookie_secure,
        samesite=settings.session_cookie_samesite,
        domain=settings.session_cookie_domain,
        path="/",
        max_age=max_age,
    )


def clear_session_cookie(response: Response) -> None:
    """Clear session cookie."""
    response.delete_cookie(
        key=settings.session_cookie_name,
        path="/",
        domain=settings.session_cookie_domain,
        secure=settings.session_cookie_secure,
        httponly=True,
        samesite=settings.session_cookie_samesite,
    )


def get_request_ip(request: Request) -> str | None:
    """Extract best-effort client IP for session metadata."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return xff.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _normalize_phone(phone: str) -> str:
    try:
        e164, _ = normalize_indian_mobile(phone)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid phone number",
        )
    return e164


def _start_session(
    identity: VerifiedIdentity,
    request: Request,
    response: Response,
    db: Session,
    codec: TokenCodec,
) -> AuthResponse:
    issued: IssuedSession = complete_login(
        db,
        identity,
        codec,
        admin_email=settings.admin_email,
        user_agent=request.headers.get("user-agent"),
        ip_address=get_request_ip(request),
    )
    set_session_cookie(response, issued.token, issued.claims.exp - issued.claims.iat)

    user = issued.user
    return AuthResponse(
        token=issued.token,
        role=issued.claims.role,
        user=SessionUser(
            id=str(user.id),
            email=user.email,
            full_name=user.name,
            role=issued.claims.role,
            provider=issued.claims.provider,
            is_verified=user.is_verified,
        ),
    )


@router.post("/register", response_model=SessionUser, status_code=status.HTTP_201_CREATED)
def register(user_data: UserRegister, db: Session = Depends(get_db)):
    """Register a password account."""
    email = user_data.email.lower()
    if db.query(User).filter(User.email == email).first():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Email already registered",
        )

    user = User(
        name=user_data.name.strip(),
        email=email,
        password_hash=get_password_hash(user_data.password),
        is_verified=False,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info(f"Registered password account {user.id}")

    return SessionUser(
        id=str(user.id),
        email=user.email,
        full_name=user.name,
        role=user.role,
        provider="password",
        is_verified=user.is_verified,
    )


@router.post("/login", response_model=AuthResponse)
def login(
    user_data: UserLogin,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
):
    """Password login."""
    identity = PasswordIdentityProvider(db).verify((user_data.email, user_data.password))
    return _start_session(identity, request, response, db, codec)


@router.post("/email-otp/request", response_model=OtpRequestResponse)
def request_email_otp(
    payload: EmailOtpRequest,
    db: Session = Depends(get_db),
    otp_service: OtpService = Depends(get_otp_service),
):
    """Send a one-time code by email."""
    otp_service.request("email", payload.email.lower(), name=payload.name)
    db.commit()
    return OtpRequestResponse(
        message="OTP sent to your email",
        expires_in_seconds=otp_service.expires_seconds,
    )


@router.post("/email-otp/verify", response_model=AuthResponse)
def verify_email_otp(
    payload: EmailOtpVerify,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    otp_service: OtpService = Depends(get_otp_service),
):
    """Exchange an emailed code for a session."""
    identity = OtpIdentityProvider(otp_service, "email").verify((payload.email.lower(), payload.token))
    return _start_session(identity, request, response, db, codec)


@router.post("/sms-otp/request", response_model=OtpRequestResponse)
def request_sms_otp(
    payload: SmsOtpRequest,
    db: Session = Depends(get_db),
    otp_service: OtpService = Depends(get_otp_service),
):
    """Send a one-time code by SMS."""
    otp_service.request("sms", _normalize_phone(payload.phone), name=payload.name)
    db.commit()
    return OtpRequestResponse(
        message="OTP sent to your phone",
        expires_in_seconds=otp_service.expires_seconds,
    )


@router.post("/sms-otp/verify", response_model=AuthResponse)
def verify_sms_otp(
    payload: SmsOtpVerify,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    otp_service: OtpService = Depends(get_otp_service),
):
    """Exchange an SMS code for a session."""
    identity = OtpIdentityProvider(otp_service, "sms").verify((_normalize_phone(payload.phone), payload.token))
    return _start_session(identity, request, response, db, codec)


@router.post("/google", response_model=AuthResponse)
def google_login(
    payload: GoogleLogin,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    provider: GoogleIdentityProvider = Depends(get_google_provider),
):
    """Sign in with a Google ID token."""
    identity = provider.verify(payload.credential)
    return _start_session(identity, request, response, db, codec)


@router.post("/token-exchange", response_model=AuthResponse)
def token_exchange(
    payload: TokenExchange,
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
    codec: TokenCodec = Depends(get_token_codec),
    provider: HostedTokenIdentityProvider = Depends(get_hosted_provider),
):
    """Swap a hosted-auth access token (magic link) for our own session."""
    identity = provider.verify(payload.access_token)
    return _start_session(identity, request, response, db, codec)


@router.get("/me", response_model=MeResponse)
def me(
    db: Session = Depends(get_db),
    principal: Principal | None = Depends(get_optional_principal),
):
    """Soft-auth probe: always 200, ``user`` is null when not signed in."""
    if principal is None:
        return MeResponse(user=None)

    user = db.query(User).filter(User.id == principal.user_id).first()
    if user is None:
        return MeResponse(user=None)

    return MeResponse(
        user=SessionUser(
            id=str(user.id),
            email=user.email,
            full_name=user.name,
            role=principal.role,
            provider=principal.provider,
            is_verified=user.is_verified,
        )
    )


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    response: Response,
    db: Session = Depends(get_db),
):
    """Revoke the presented session, if any. Always succeeds."""
    token = extract_token(request)
    if token:
        SessionStore(db).revoke(token)
        db.commit()
    clear_session_cookie(response)
    return MessageResponse(message="Successfully logged out")


@router.post("/logout-all", response_model=MessageResponse)
def logout_all(
    response: Response,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Revoke every session of the current user."""
    revoked = SessionStore(db).revoke_all_for_user(principal.user_id)
    db.commit()
    clear_session_cookie(response)
    logger.info(f"User {principal.user_id} revoked {revoked} sessions")
    return MessageResponse(message=f"Revoked {revoked} sessions")
