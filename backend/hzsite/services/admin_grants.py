"""Admin allowlist management and role derivation."""
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from hzsite.models.auth import AdminGrant

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def get_active_grant(db: Session, email: str | None) -> AdminGrant | None:
    """Look up an active grant for an email (case-insensitive). Not cached."""
    if not email:
        return None
    return (
        db.query(AdminGrant)
        .filter(
            func.lower(AdminGrant.email) == normalize_email(email),
            AdminGrant.is_active.is_(True),
        )
        .first()
    )


def grant_admin(db: Session, email: str, name: str | None = None) -> AdminGrant:
    """Create or reactivate a grant."""
    email = normalize_email(email)
    grant = db.query(AdminGrant).filter(AdminGrant.email == email).first()
    if grant is None:
        grant = AdminGrant(email=email, name=name, is_active=True)
        db.add(grant)
        logger.info(f"Created admin grant for {email}")
    else:
        if not grant.is_active:
            logger.info(f"Reactivated admin grant for {email}")
        grant.is_active = True
        if name and not grant.name:
            grant.name = name
    db.flush()
    return grant


def revoke_admin(db: Session, email: str) -> bool:
    """Deactivate a grant. Returns False when there was nothing active to revoke."""
    grant = get_active_grant(db, email)
    if grant is None:
        return False
    grant.is_active = False
    db.flush()
    logger.info(f"Revoked admin grant for {grant.email}")
    return True


def list_grants(db: Session) -> list[AdminGrant]:
    return db.query(AdminGrant).order_by(AdminGrant.email).all()


def seed_admin_grant(db: Session, admin_email: str | None) -> AdminGrant | None:
    """Bootstrap the configured admin email into the allowlist.

    Only creates the row; an operator-deactivated grant stays deactivated.
    """
    if not admin_email:
        return None
    email = normalize_email(admin_email)
    grant = db.query(AdminGrant).filter(AdminGrant.email == email).first()
    if grant is None:
        grant = AdminGrant(email=email, name="Admin", is_active=True)
        db.add(grant)
        db.flush()
        logger.info(f"Seeded admin grant for {email}")
    return grant


def derive_role(
    db: Session,
    email: str | None,
    provider_role: str | None = None,
    admin_email: str | None = None,
) -> str:
    """Compute the role for a fresh login.

    Admin when the email is the configured admin, holds an active grant, or
    the identity provider itself declares admin. Authorization still
    requires a live grant at request time.
    """
    if provider_role == "admin":
        return "admin"
    if email and admin_email and normalize_email(email) == normalize_email(admin_email):
        return "admin"
    if get_active_grant(db, email) is not None:
        return "admin"
    return "user"
