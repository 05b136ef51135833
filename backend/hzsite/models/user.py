"""User model."""
from sqlalchemy import Boolean, Column, Integer, String
from sqlalchemy.orm import relationship

from hzsite.database import Base
from hzsite.utils import utc_iso


class User(Base):
    """Canonical local identity shared by every login provider."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120))
    email = Column(String(254), unique=True, index=True)  # stored case-folded
    phone = Column(String(20), unique=True, index=True)  # E.164
    is_verified = Column(Boolean, nullable=False, default=False)
    role = Column(String(16), nullable=False, default="user")
    password_hash = Column(String(255))
    created_at = Column(String(26), default=utc_iso)
    updated_at = Column(String(26), default=utc_iso, onupdate=utc_iso)

    # Relationships
    sessions = relationship("UserSession", back_populates="user", cascade="all, delete-orphan")
    otp_challenges = relationship("OtpChallenge", back_populates="user", cascade="all, delete-orphan")
