"""Authentication schemas."""
from pydantic import BaseModel, EmailStr, Field


class UserRegister(BaseModel):
    """Password account registration request."""

    name: str = Field(..., min_length=2, max_length=120)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=200)


class UserLogin(BaseModel):
    """Password login request."""

    email: EmailStr
    password: str = Field(..., min_length=1, max_length=200)


class EmailOtpRequest(BaseModel):
    email: EmailStr
    name: str | None = Field(None, min_length=2, max_length=120)

    class Config:
        extra = "forbid"


class EmailOtpVerify(BaseModel):
    email: EmailStr
    token: str = Field(..., pattern=r"^\d{4,10}$")

    class Config:
        extra = "forbid"


class SmsOtpRequest(BaseModel):
    phone: str = Field(..., min_length=10, max_length=20)
    name: str | None = Field(None, min_length=2, max_length=120)

    class Config:
        extra = "forbid"


class SmsOtpVerify(BaseModel):
    phone: str = Field(..., min_length=10, max_length=20)
    token: str = Field(..., pattern=r"^\d{4,10}$")

    class Config:
        extra = "forbid"


class GoogleLogin(BaseModel):
    """Google Identity Services credential (an ID token)."""

    credential: str = Field(..., min_length=20)

    class Config:
        extra = "forbid"


class TokenExchange(BaseModel):
    """Hosted-auth access token obtained from a magic link."""

    access_token: str = Field(..., min_length=10)

    class Config:
        extra = "forbid"


class SessionUser(BaseModel):
    """Authenticated principal as returned to the client."""

    id: str
    email: str | None = None
    full_name: str | None = None
    role: str
    provider: str | None = None
    is_verified: bool | None = None


class AuthResponse(BaseModel):
    """Successful login."""

    ok: bool = True
    token: str
    token_type: str = "bearer"
    role: str
    user: SessionUser


class OtpRequestResponse(BaseModel):
    ok: bool = True
    message: str
    expires_in_seconds: int


class MeResponse(BaseModel):
    """Soft-auth probe result; ``user`` is null when not signed in."""

    ok: bool = True
    user: SessionUser | None = None


class MessageResponse(BaseModel):
    """Generic message response."""

    ok: bool = True
    message: str | None = None
