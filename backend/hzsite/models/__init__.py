"""SQLAlchemy models package."""
from hzsite.models.user import User
from hzsite.models.auth import AdminGrant, OtpChallenge, UserSession

__all__ = [
    "User",
    "UserSession",
    "OtpChallenge",
    "AdminGrant",
]
