"""Turns a verified identity into a recorded session token."""
from dataclasses import dataclass
import logging

from sqlalchemy.orm import Session

from hzsite.models.user import User
from hzsite.services.admin_grants import derive_role
from hzsite.services.identity import IdentityReconciler, VerifiedIdentity
from hzsite.services.session_store import SessionStore
from hzsite.services.tokens import SessionClaims, TokenCodec

logger = logging.getLogger(__name__)


@dataclass
class IssuedSession:
    token: str
    claims: SessionClaims
    user: User


def complete_login(
    db: Session,
    identity: VerifiedIdentity,
    codec: TokenCodec,
    admin_email: str | None = None,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> IssuedSession:
    """Reconcile the user, derive the role, sign a token and record its session.

    Commits so the session is visible to the very next request.
    """
    user = IdentityReconciler(db).reconcile(identity)
    role = derive_role(db, user.email, identity.provider_role, admin_email)
    user.role = role

    claims = codec.issue(user.id, role, identity.provider, email=user.email, name=user.name)
    token = codec.sign(claims)
    SessionStore(db).create(
        user.id,
        token,
        claims.expires_at,
        provider=identity.provider,
        user_agent=user_agent,
        ip_address=ip_address,
    )
    db.commit()
    db.refresh(user)

    logger.info(f"User {user.id} logged in via {identity.provider} as {role}")
    return IssuedSession(token=token, claims=claims, user=user)
