"""Server-side session store backing token revocation."""
from datetime import datetime, timedelta
import hashlib
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hzsite.models.auth import UserSession
from hzsite.utils import to_iso, utc_iso, utcnow

logger = logging.getLogger(__name__)


def hash_token(token: str) -> str:
    """Hash a session token before persisting or looking it up."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


class SessionStore:
    """Records issued tokens by hash and answers liveness questions.

    A session is active iff it is not revoked and its expiry is in the future.
    """

    def __init__(self, db: Session):
        self.db = db

    def create(
        self,
        user_id: int,
        token: str,
        expires_at: datetime,
        provider: str | None = None,
        user_agent: str | None = None,
        ip_address: str | None = None,
    ) -> int:
        session = UserSession(
            user_id=user_id,
            token_hash=hash_token(token),
            provider=provider,
            expires_at=to_iso(expires_at),
            user_agent=user_agent[:255] if user_agent else None,
            ip_address=ip_address,
        )
        self.db.add(session)
        self.db.flush()
        return session.id

    def is_active(self, token: str) -> bool:
        """Liveness check run on every authenticated request.

        Storage failures count as inactive.
        """
        try:
            found = (
                self.db.query(UserSession.id)
                .filter(
                    UserSession.token_hash == hash_token(token),
                    UserSession.revoked_at.is_(None),
                    UserSession.expires_at > utc_iso(),
                )
                .first()
            )
        except SQLAlchemyError as exc:
            logger.error(f"Session liveness check failed, treating as inactive: {exc}")
            self.db.rollback()
            return False
        return found is not None

    def revoke(self, token: str) -> None:
        """Revoke the session for a token. Unknown or already revoked tokens are a no-op."""
        updated = (
            self.db.query(UserSession)
            .filter(
                UserSession.token_hash == hash_token(token),
                UserSession.revoked_at.is_(None),
            )
            .update({"revoked_at": utc_iso()}, synchronize_session=False)
        )
        if updated:
            logger.info("Revoked session")

    def revoke_all_for_user(self, user_id: int) -> int:
        """Revoke every live session belonging to a user."""
        return (
            self.db.query(UserSession)
            .filter(
                UserSession.user_id == user_id,
                UserSession.revoked_at.is_(None),
            )
            .update({"revoked_at": utc_iso()}, synchronize_session=False)
        )

    def purge_expired(self, older_than: timedelta = timedelta(days=30)) -> int:
        """Delete rows whose expiry passed more than ``older_than`` ago."""
        cutoff = to_iso(utcnow() - older_than)
        deleted = (
            self.db.query(UserSession)
            .filter(UserSession.expires_at < cutoff)
            .delete(synchronize_session=False)
        )
        logger.info(f"Purged {deleted} expired sessions older than {cutoff}")
        return deleted
