"""One-time code issuance and verification for email and SMS logins."""
from datetime import timedelta
import logging
import secrets

import bcrypt
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hzsite.errors import CredentialMismatch, UserNotFound
from hzsite.models.auth import OtpChallenge
from hzsite.models.user import User
from hzsite.services.identity import IdentityProvider, IdentityReconciler, VerifiedIdentity
from hzsite.services.notifications import OtpNotifier
from hzsite.utils import to_iso, utc_iso, utcnow

logger = logging.getLogger(__name__)

CHANNELS = ("email", "sms")


def generate_code(length: int = 8) -> str:
    """Random numeric code without a leading zero."""
    low = 10 ** (length - 1)
    return str(low + secrets.randbelow(9 * low))


class OtpService:
    """Stores only salted hashes of codes; at most one active code per user and channel."""

    def __init__(
        self,
        db: Session,
        notifier: OtpNotifier,
        expires_seconds: int = 300,
        code_length: int = 8,
        max_attempts: int = 5,
    ):
        self.db = db
        self.notifier = notifier
        self.expires_seconds = expires_seconds
        self.code_length = code_length
        self.max_attempts = max_attempts

    def request(self, channel: str, destination: str, name: str | None = None) -> User:
        """Issue a fresh code, invalidating earlier ones, and deliver it.

        The caller commits once delivery succeeded.
        """
        destination = _normalize_destination(channel, destination)
        try:
            user, code = self._issue(channel, destination, name)
        except IntegrityError:
            # A concurrent request for the same user and channel committed first.
            self.db.rollback()
            logger.info(f"Retrying {channel} OTP issue after a concurrent request")
            user, code = self._issue(channel, destination, name)

        self.notifier.send(channel, destination, code, self.expires_seconds)
        return user

    def _issue(self, channel: str, destination: str, name: str | None) -> tuple[User, str]:
        reconciler = IdentityReconciler(self.db)
        if channel == "email":
            user = reconciler.ensure_pending_user(email=destination, name=name)
        else:
            user = reconciler.ensure_pending_user(phone=destination, name=name)

        # Row lock where the backend supports it; the unique index covers the rest.
        self.db.query(User).filter(User.id == user.id).with_for_update().one()

        superseded = (
            self.db.query(OtpChallenge)
            .filter(
                OtpChallenge.user_id == user.id,
                OtpChallenge.channel == channel,
                OtpChallenge.consumed_at.is_(None),
            )
            .update({"consumed_at": utc_iso()}, synchronize_session=False)
        )

        code = generate_code(self.code_length)
        challenge = OtpChallenge(
            user_id=user.id,
            channel=channel,
            destination=destination,
            otp_hash=bcrypt.hashpw(code.encode("utf-8"), bcrypt.gensalt(rounds=10)).decode("utf-8"),
            expires_at=to_iso(utcnow() + timedelta(seconds=self.expires_seconds)),
        )
        self.db.add(challenge)
        self.db.flush()

        logger.info(f"Issued {channel} OTP for user {user.id} (superseded {superseded})")
        return user, code

    def verify(self, channel: str, destination: str, code: str) -> VerifiedIdentity:
        """Consume the active code if it matches."""
        destination = _normalize_destination(channel, destination)
        column = User.email if channel == "email" else User.phone
        user = self.db.query(User).filter(column == destination).first()
        if user is None:
            raise UserNotFound(f"no user for {channel} OTP destination")

        challenge = (
            self.db.query(OtpChallenge)
            .filter(
                OtpChallenge.user_id == user.id,
                OtpChallenge.channel == channel,
                OtpChallenge.consumed_at.is_(None),
                OtpChallenge.expires_at > utc_iso(),
            )
            .order_by(OtpChallenge.expires_at.desc(), OtpChallenge.id.desc())
            .first()
        )
        if challenge is None:
            raise CredentialMismatch(f"no active {channel} OTP for user {user.id}")

        if not bcrypt.checkpw(code.encode("utf-8"), challenge.otp_hash.encode("utf-8")):
            challenge.attempts = (challenge.attempts or 0) + 1
            if challenge.attempts >= self.max_attempts:
                challenge.consumed_at = utc_iso()
                logger.warning(f"{channel} OTP for user {user.id} locked after {challenge.attempts} attempts")
            # Persist the failed attempt even though the request is rejected.
            self.db.commit()
            raise CredentialMismatch(f"wrong {channel} OTP for user {user.id}")

        challenge.consumed_at = utc_iso()
        self.db.flush()

        return VerifiedIdentity(
            provider="otp",
            email=user.email if channel == "email" else None,
            phone=user.phone if channel == "sms" else None,
            name=user.name,
        )


class OtpIdentityProvider(IdentityProvider):
    """Login channel backed by ``OtpService``."""

    def __init__(self, otp_service: OtpService, channel: str):
        _check_channel(channel)
        self.otp_service = otp_service
        self.channel = channel

    @property
    def provider_name(self) -> str:
        return "otp"

    def verify(self, credential: tuple[str, str]) -> VerifiedIdentity:
        destination, code = credential
        return self.otp_service.verify(self.channel, destination, code)


def _check_channel(channel: str) -> None:
    if channel not in CHANNELS:
        raise ValueError(f"Unknown OTP channel {channel!r}")


def _normalize_destination(channel: str, destination: str) -> str:
    _check_channel(channel)
    destination = destination.strip()
    return destination.lower() if channel == "email" else destination
