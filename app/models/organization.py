from uuid import UUID
from datetime import datetime
from typing import Optional, Dict, Any
from sqlmodel import SQLModel, Field

from app.db.schema import OrganizationType, UserRole


class OrganizationRead(SQLModel):
    id: UUID
    type: OrganizationType
    name: str
    slug: str
    domain: Optional[str] = None
    contact_email: Optional[str] = None
    settings: Dict[str, Any] = {}
    created_at: datetime
    updated_at: datetime


class OrganizationUpdate(SQLModel):
    """
    Partial update of the caller's organization. Admins only.
    """
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    domain: Optional[str] = Field(default=None, max_length=255)
    contact_email: Optional[str] = Field(default=None, max_length=255)
    settings: Optional[Dict[str, Any]] = Field(
        default=None, description="Free-form organization preferences.")


class UserRead(SQLModel):
    id: UUID
    organization_id: UUID
    email: str
    name: str
    role: UserRole
    is_active: bool
    last_login_at: Optional[datetime] = None
    created_at: datetime
