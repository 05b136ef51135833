"""Admin schemas."""
from pydantic import BaseModel, EmailStr, Field


class AdminGrantCreate(BaseModel):
    email: EmailStr
    name: str | None = Field(None, max_length=120)


class AdminGrantResponse(BaseModel):
    id: int
    email: str
    name: str | None = None
    is_active: bool
    created_at: str | None = None

    class Config:
        from_attributes = True


class PurgeResponse(BaseModel):
    ok: bool = True
    purged: int
