"""Admin-only endpoints."""
from datetime import timedelta

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from hzsite.api.deps import Principal, get_db, require_admin
from hzsite.config import get_settings
from hzsite.schemas.admin import AdminGrantCreate, AdminGrantResponse, PurgeResponse
from hzsite.schemas.auth import MessageResponse
from hzsite.services.admin_grants import grant_admin, list_grants, revoke_admin
from hzsite.services.session_store import SessionStore

router = APIRouter(prefix="/admin", tags=["admin"])
settings = get_settings()


@router.get("/grants", response_model=list[AdminGrantResponse])
def get_grants(
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    """List the admin allowlist."""
    return list_grants(db)


@router.post("/grants", response_model=AdminGrantResponse, status_code=status.HTTP_201_CREATED)
def create_grant(
    grant_data: AdminGrantCreate,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    """Add or reactivate an admin grant."""
    grant = grant_admin(db, grant_data.email, grant_data.name)
    db.commit()
    db.refresh(grant)
    return grant


@router.delete("/grants/{email}", response_model=MessageResponse)
def delete_grant(
    email: str,
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    """Deactivate an admin grant; takes effect on the next request."""
    if admin.email and admin.email.lower() == email.strip().lower():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot revoke your own admin grant",
        )
    if not revoke_admin(db, email):
        raise HTTPException(status_code=404, detail="Admin grant not found")
    db.commit()
    return MessageResponse(message="Admin grant revoked")


@router.post("/sessions/purge", response_model=PurgeResponse)
def purge_sessions(
    db: Session = Depends(get_db),
    admin: Principal = Depends(require_admin),
):
    """Delete session rows that expired before the grace window."""
    purged = SessionStore(db).purge_expired(timedelta(days=settings.session_purge_grace_days))
    db.commit()
    return PurgeResponse(purged=purged)
