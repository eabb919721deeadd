from typing import Optional, List, Dict, Any
from uuid import UUID
from datetime import datetime
from sqlmodel import SQLModel, Field
from pydantic import EmailStr, StringConstraints
from typing_extensions import Annotated

from app.db.schema import RelationshipStatus, SupplierClassification

# ==========================================
# Create Model
# ==========================================


class RelationshipInvite(SQLModel):
    """
    Payload for inviting a Supplier by email.
    The Supplier organization is linked only once someone accepts.
    """
    email: Annotated[EmailStr, StringConstraints(to_lower=True, strip_whitespace=True)] = Field(
        max_length=255,
        schema_extra={"examples": ["compliance@supplier.example.com"]},
        description="Contact address the invitation is sent to."
    )
    classification: SupplierClassification = Field(
        default=SupplierClassification.STANDARD,
        description="Business criticality of this supplier."
    )
    notes: Optional[str] = Field(
        default=None,
        max_length=1000,
        description="Internal notes, only visible to the Company."
    )
    services_provided: List[str] = Field(
        default_factory=list,
        schema_extra={"examples": [["IT hosting", "Payroll"]]},
        description="Services this supplier delivers."
    )
    contract_ref: Optional[str] = Field(default=None, max_length=100)


# ==========================================
# Update Models
# ==========================================


class RelationshipClassificationUpdate(SQLModel):
    classification: SupplierClassification


class RelationshipDetailsUpdate(SQLModel):
    notes: Optional[str] = Field(default=None, max_length=1000)
    services_provided: Optional[List[str]] = None
    contract_ref: Optional[str] = Field(default=None, max_length=100)


class RelationshipStatusChange(SQLModel):
    """Body of suspend / reactivate / terminate / decline."""
    reason: Optional[str] = Field(default=None, max_length=1000)


# ==========================================
# Read Models
# ==========================================


class StatusHistoryEntry(SQLModel):
    from_status: Optional[str] = None
    to_status: str
    changed_by: Optional[UUID] = None
    reason: Optional[str] = None
    changed_at: datetime


class RelationshipRead(SQLModel):
    id: UUID
    company_id: UUID
    supplier_id: Optional[UUID] = None
    invited_email: str
    invited_by_user_id: UUID
    invited_at: datetime
    status: RelationshipStatus
    classification: SupplierClassification
    notes: Optional[str] = None
    services_provided: List[str] = []
    contract_ref: Optional[str] = None
    accepted_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    status_history: List[StatusHistoryEntry] = []
    created_at: datetime
    updated_at: datetime


class InvitationRead(SQLModel):
    """What an invited Supplier sees about a pending invitation."""
    id: UUID
    company_id: UUID
    company_name: str
    invited_email: str
    invited_at: datetime
    classification: SupplierClassification
    services_provided: List[str] = []


class RelationshipStats(SQLModel):
    total: int = 0
    pending: int = 0
    active: int = 0
    suspended: int = 0
    terminated: int = 0
    rejected: int = 0
    by_classification: Dict[str, int] = {}
