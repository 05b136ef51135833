"""Authentication/session models."""
from sqlalchemy import Boolean, Column, ForeignKey, Index, Integer, String, text
from sqlalchemy.orm import relationship

from hzsite.database import Base
from hzsite.utils import utc_iso


class UserSession(Base):
    """Revocable grant tied to one issued session token.

    Only the SHA-256 of the token is stored.
    """

    __tablename__ = "sessions"
    __table_args__ = (
        Index("ix_sessions_user_expires", "user_id", "expires_at"),
        Index("ix_sessions_expires_at", "expires_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False, index=True)
    provider = Column(String(16))
    created_at = Column(String(26), default=utc_iso)
    expires_at = Column(String(26), nullable=False)
    revoked_at = Column(String(26))
    user_agent = Column(String(255))
    ip_address = Column(String(45))

    user = relationship("User", back_populates="sessions")


class OtpChallenge(Base):
    """One-time code bound to a user and a delivery channel.

    At most one unconsumed code per user and channel (partial unique index).
    """

    __tablename__ = "otp_codes"
    __table_args__ = (
        Index("ix_otp_codes_user_channel_expires", "user_id", "channel", "expires_at"),
        Index(
            "uq_otp_codes_one_active",
            "user_id",
            "channel",
            unique=True,
            sqlite_where=text("consumed_at IS NULL"),
            postgresql_where=text("consumed_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    channel = Column(String(8), nullable=False, default="email")  # email | sms
    destination = Column(String(254))
    otp_hash = Column(String(255), nullable=False)  # bcrypt, salt embedded
    attempts = Column(Integer, nullable=False, default=0)
    created_at = Column(String(26), default=utc_iso)
    expires_at = Column(String(26), nullable=False)
    consumed_at = Column(String(26))

    user = relationship("User", back_populates="otp_challenges")


class AdminGrant(Base):
    """Admin allowlist entry, checked independently of the role claim."""

    __tablename__ = "admin_grants"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(254), unique=True, nullable=False, index=True)
    name = Column(String(120))
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(String(26), default=utc_iso)
