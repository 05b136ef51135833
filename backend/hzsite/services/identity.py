"""Identity providers and the reconciler mapping them onto local users.

Every login channel verifies its own credential and hands back a
``VerifiedIdentity``. The reconciler trusts that identity as-is, so each
provider must reject anything it cannot prove.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass
from functools import lru_cache
import logging

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hzsite.errors import CredentialMismatch, InvalidToken, MalformedToken, ProviderNotConfigured
from hzsite.models.user import User
from hzsite.services.jwks import JWKSClient
from hzsite.services.notifications import normalize_indian_mobile
from hzsite.services.session_store import SessionStore

logger = logging.getLogger(__name__)

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


@dataclass(frozen=True)
class VerifiedIdentity:
    """Identity proven by an upstream provider."""

    provider: str
    email: str | None = None
    name: str | None = None
    phone: str | None = None
    provider_role: str | None = None


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash."""
    try:
        return bcrypt.checkpw(
            plain_password.encode("utf-8"),
            hashed_password.encode("utf-8"),
        )
    except ValueError:
        # Corrupt stored hash
        return False


def get_password_hash(password: str) -> str:
    """Hash a password."""
    return bcrypt.hashpw(
        password.encode("utf-8"),
        bcrypt.gensalt(),
    ).decode("utf-8")


@lru_cache
def _dummy_password_hash() -> str:
    return get_password_hash("timing-equalizer-not-a-password")


def _clean_name(name: str | None) -> str | None:
    if isinstance(name, str) and name.strip():
        return name.strip()
    return None


class IdentityProvider(ABC):
    """Base class for login channels."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Provider tag carried into session claims."""
        ...

    @abstractmethod
    def verify(self, credential) -> VerifiedIdentity:
        """Verify a credential or raise an ``AuthError``."""
        ...


class PasswordIdentityProvider(IdentityProvider):
    """Email + password against ``users.password_hash``."""

    def __init__(self, db: Session):
        self.db = db

    @property
    def provider_name(self) -> str:
        return "password"

    def verify(self, credential: tuple[str, str]) -> VerifiedIdentity:
        email, password = credential
        email = email.strip().lower()
        user = self.db.query(User).filter(User.email == email).first()

        if user is None or not user.password_hash:
            verify_password(password, _dummy_password_hash())
            raise CredentialMismatch(f"no password account for {email}")

        if not verify_password(password, user.password_hash):
            raise CredentialMismatch(f"wrong password for {email}")

        return VerifiedIdentity(provider=self.provider_name, email=email, name=user.name)


class _JWKSTokenProvider(IdentityProvider):
    """Shared plumbing for providers that verify asymmetric JWTs against a JWKS."""

    algorithms: tuple[str, ...] = ("RS256",)

    def __init__(self, jwks_client: JWKSClient):
        self.jwks_client = jwks_client

    def _decode(self, token: str, jwks_url: str, audience: str, issuer) -> dict:
        try:
            header = jwt.get_unverified_header(token)
        except JWTError as exc:
            raise MalformedToken(str(exc)) from exc

        alg = header.get("alg")
        if alg not in self.algorithms:
            raise InvalidToken(f"algorithm {alg!r} not in {self.algorithms}")

        kid = header.get("kid")
        if not kid:
            raise InvalidToken("token header has no kid")

        jwk_data = self.jwks_client.get_signing_key(jwks_url, kid)
        if jwk_data is None:
            raise InvalidToken(f"no signing key for kid {kid!r}")

        try:
            return jwt.decode(
                token,
                _key_material(jwk_data),
                algorithms=[alg],
                audience=audience,
                issuer=issuer,
                options={"verify_at_hash": False},
            )
        except ExpiredSignatureError as exc:
            raise CredentialMismatch(f"{self.provider_name} token expired") from exc
        except JWTError as exc:
            raise CredentialMismatch(f"{self.provider_name} token rejected: {exc}") from exc


def _key_material(jwk_data: dict):
    """Prefer the JWK parameters; fall back to the first x5c certificate."""
    if jwk_data.get("n") or jwk_data.get("x"):
        return jwk_data
    certs = jwk_data.get("x5c") or []
    if certs:
        body = "\n".join(certs[0][i:i + 64] for i in range(0, len(certs[0]), 64))
        return f"-----BEGIN CERTIFICATE-----\n{body}\n-----END CERTIFICATE-----\n"
    raise InvalidToken("signing key has no usable material")


class GoogleIdentityProvider(_JWKSTokenProvider):
    """Google Identity Services ID tokens."""

    algorithms = ("RS256",)

    def __init__(self, jwks_client: JWKSClient, client_id: str | None, jwks_url: str):
        super().__init__(jwks_client)
        self.client_id = client_id
        self.jwks_url = jwks_url

    @property
    def provider_name(self) -> str:
        return "google"

    def verify(self, credential: str) -> VerifiedIdentity:
        if not self.client_id:
            raise ProviderNotConfigured("GOOGLE_CLIENT_ID is not set")

        payload = self._decode(credential, self.jwks_url, self.client_id, GOOGLE_ISSUERS)

        email = payload.get("email")
        if not isinstance(email, str) or not email:
            raise CredentialMismatch("Google account has no email")
        if payload.get("email_verified") not in (True, "true"):
            raise CredentialMismatch(f"Google email {email} is not verified")

        return VerifiedIdentity(
            provider=self.provider_name,
            email=email.lower(),
            name=_clean_name(payload.get("name")),
        )


class HostedTokenIdentityProvider(_JWKSTokenProvider):
    """Access tokens issued by the hosted auth service (Supabase).

    The issuer is pinned to the configured project; the JWKS location is
    never taken from the token itself.
    """

    algorithms = ("RS256", "ES256")

    def __init__(
        self,
        jwks_client: JWKSClient,
        base_url: str | None,
        jwks_path: str = "/auth/v1/.well-known/jwks.json",
        audience: str = "authenticated",
    ):
        super().__init__(jwks_client)
        self.base_url = base_url.rstrip("/") if base_url else None
        self.jwks_path = jwks_path
        self.audience = audience

    @property
    def provider_name(self) -> str:
        # Hosted logins arrive through magic links / email codes.
        return "otp"

    @property
    def issuer(self) -> str:
        return f"{self.base_url}/auth/v1"

    def verify(self, credential: str) -> VerifiedIdentity:
        if not self.base_url:
            raise ProviderNotConfigured("SUPABASE_URL is not set")

        payload = self._decode(credential, f"{self.base_url}{self.jwks_path}", self.audience, self.issuer)

        email = payload.get("email") if isinstance(payload.get("email"), str) else None
        phone = _hosted_phone(payload.get("phone"))
        if not email and not phone:
            raise CredentialMismatch("hosted account has neither email nor phone")

        user_meta = payload.get("user_metadata") or {}
        # user_metadata is editable by the end user; only app_metadata is authoritative.
        app_meta = payload.get("app_metadata") or {}
        name = _clean_name(user_meta.get("full_name")) or _clean_name(user_meta.get("name"))

        return VerifiedIdentity(
            provider=self.provider_name,
            email=email.lower() if email else None,
            name=name,
            phone=phone,
            provider_role="admin" if app_meta.get("role") == "admin" else None,
        )


def _hosted_phone(raw) -> str | None:
    """Hosted tokens carry digits without ``+``; store E.164 like the SMS login does."""
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        e164, _ = normalize_indian_mobile(raw)
    except ValueError:
        logger.info("Ignoring non-Indian phone number on hosted token")
        return None
    return e164


class IdentityReconciler:
    """Maps verified identities onto exactly one local ``User`` row."""

    def __init__(self, db: Session):
        self.db = db

    def resolve_or_create_user(self, email: str, display_name: str | None = None) -> int:
        return self._resolve(User.email, email.strip().lower(), display_name).id

    def resolve_or_create_user_by_phone(self, phone: str, display_name: str | None = None) -> int:
        return self._resolve(User.phone, phone, display_name).id

    def reconcile(self, identity: VerifiedIdentity) -> User:
        """Resolve the user for an identity, preferring email over phone.

        A password only proves knowledge of the password, so it never marks
        an account verified.
        """
        verifies = identity.provider != "password"
        if identity.email:
            return self._resolve(User.email, identity.email.strip().lower(), identity.name, verifies)
        if identity.phone:
            return self._resolve(User.phone, identity.phone, identity.name, verifies)
        raise CredentialMismatch(f"{identity.provider} identity carries neither email nor phone")

    def ensure_pending_user(
        self,
        email: str | None = None,
        phone: str | None = None,
        name: str | None = None,
    ) -> User:
        """Find or create a user before an OTP is verified; never marks it verified."""
        column, value = (User.email, email.strip().lower()) if email else (User.phone, phone)
        if value is None:
            raise ValueError("email or phone is required")

        user = self.db.query(User).filter(column == value).first()
        if user is None:
            user = self._insert(column.key, value, _clean_name(name), verified=False)
        elif not user.name and _clean_name(name):
            user.name = _clean_name(name)
            self.db.flush()
        return user

    def _resolve(self, column, value: str, display_name: str | None, verifies: bool = True) -> User:
        name = _clean_name(display_name)
        user = self.db.query(User).filter(column == value).first()

        if user is None:
            user = self._insert(column.key, value, name, verified=verifies)
            logger.info(f"Created user {user.id} for {column.key}={value}")
            return user

        changed = False
        if not user.name and name:
            user.name = name
            changed = True
        if verifies and not user.is_verified:
            self._mark_verified(user)
            changed = True
        if changed:
            self.db.flush()
        return user

    def _mark_verified(self, user: User) -> None:
        # Passwords set before the address was proven are not trusted.
        if user.password_hash:
            user.password_hash = None
            revoked = SessionStore(self.db).revoke_all_for_user(user.id)
            logger.warning(f"Cleared unverified password on user {user.id} and revoked {revoked} sessions")
        user.is_verified = True

    def _insert(self, field: str, value: str, name: str | None, verified: bool) -> User:
        user = User(name=name, is_verified=verified, **{field: value})
        self.db.add(user)
        try:
            self.db.flush()
        except IntegrityError:
            # Lost a race with a concurrent login for the same identity.
            self.db.rollback()
            user = self.db.query(User).filter(getattr(User, field) == value).one()
            if verified and not user.is_verified:
                self._mark_verified(user)
                self.db.flush()
        return user
