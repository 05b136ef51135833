"""Session token codec.

Signs and verifies the compact JWTs handed to clients after login. The codec
is stateless; revocation lives in the session store.
"""
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from functools import lru_cache
import secrets

from jose import ExpiredSignatureError, JWTError, jwt

from hzsite.config import get_settings
from hzsite.errors import ExpiredToken, InvalidToken, MalformedToken

PROVIDERS = ("password", "otp", "google")
ROLES = ("user", "admin")


@dataclass(frozen=True)
class SessionClaims:
    """Decoded payload of a session token."""

    sub: str
    role: str
    provider: str
    iat: int
    exp: int
    jti: str
    email: str | None = None
    name: str | None = None

    @property
    def user_id(self) -> int:
        return int(self.sub)

    @property
    def expires_at(self) -> datetime:
        return datetime.fromtimestamp(self.exp, tz=timezone.utc)

    def to_payload(self) -> dict:
        return {key: value for key, value in asdict(self).items() if value is not None}


class TokenCodec:
    """HMAC JWT signer/verifier pinned to a single algorithm."""

    def __init__(self, secret_key: str, algorithm: str = "HS256", default_ttl: timedelta = timedelta(days=7)):
        if not algorithm.upper().startswith("HS"):
            raise ValueError(f"Session tokens must use an HMAC algorithm, got {algorithm!r}")
        self._secret_key = secret_key
        self.algorithm = algorithm.upper()
        self.default_ttl = default_ttl

    def issue(
        self,
        user_id: int | str,
        role: str,
        provider: str,
        email: str | None = None,
        name: str | None = None,
        ttl: timedelta | None = None,
    ) -> SessionClaims:
        """Build claims for a fresh session starting now."""
        if role not in ROLES:
            raise ValueError(f"Unknown role {role!r}")
        if provider not in PROVIDERS:
            raise ValueError(f"Unknown provider {provider!r}")

        now = int(datetime.now(timezone.utc).timestamp())
        lifetime = ttl if ttl is not None else self.default_ttl
        return SessionClaims(
            sub=str(user_id),
            role=role,
            provider=provider,
            iat=now,
            exp=now + max(int(lifetime.total_seconds()), 1),
            jti=secrets.token_urlsafe(16),
            email=email,
            name=name,
        )

    def sign(self, claims: SessionClaims) -> str:
        """Encode and sign claims into a URL-safe token."""
        return jwt.encode(claims.to_payload(), self._secret_key, algorithm=self.algorithm)

    def verify(self, token: str) -> SessionClaims:
        """Check signature, algorithm and expiry, and return the claims."""
        if not token or not isinstance(token, str):
            raise MalformedToken("empty token")

        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise MalformedToken(str(exc)) from exc

        if header.get("alg") != self.algorithm:
            raise InvalidToken(f"unexpected algorithm {header.get('alg')!r}")

        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[self.algorithm])
        except ExpiredSignatureError as exc:
            raise ExpiredToken(str(exc)) from exc
        except JWTError as exc:
            raise InvalidToken(str(exc)) from exc

        return _claims_from_payload(payload)


def _claims_from_payload(payload: dict) -> SessionClaims:
    try:
        claims = SessionClaims(
            sub=str(payload["sub"]),
            role=payload["role"],
            provider=payload["provider"],
            iat=int(payload["iat"]),
            exp=int(payload["exp"]),
            jti=str(payload["jti"]),
            email=payload.get("email"),
            name=payload.get("name"),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise MalformedToken(f"missing or invalid claim: {exc}") from exc

    if claims.role not in ROLES or claims.provider not in PROVIDERS or not claims.sub.isdigit():
        raise MalformedToken("claims outside the accepted vocabulary")
    return claims


@lru_cache
def get_token_codec() -> TokenCodec:
    """Process-wide codec built from settings."""
    settings = get_settings()
    return TokenCodec(
        settings.secret_key,
        algorithm=settings.algorithm,
        default_ttl=timedelta(days=settings.session_expire_days),
    )
