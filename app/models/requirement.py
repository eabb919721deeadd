from typing import Optional, List, Dict
from uuid import UUID
from datetime import datetime
from sqlmodel import SQLModel, Field
from pydantic import model_validator

from app.db.schema import RequirementType, RequirementStatus, RequirementPriority
from app.models.relationship import StatusHistoryEntry

# ==========================================
# Create Model
# ==========================================


class RequirementCreate(SQLModel):
    """
    Payload for assigning a compliance requirement to a connected Supplier.

    1. QUESTIONNAIRE: needs `questionnaire_id` (published, owned by the Company).
    2. DOCUMENT: external report check; `minimum_grade` and `max_report_age_days`
       fall back to 'C' and 90 days.
    """
    relationship_id: UUID
    type: RequirementType
    title: str = Field(
        min_length=2,
        max_length=200,
        schema_extra={"examples": ["Annual Information Security Assessment"]},
    )
    description: Optional[str] = Field(default=None, max_length=2000)
    priority: RequirementPriority = Field(default=RequirementPriority.MEDIUM)
    due_date: Optional[datetime] = Field(
        default=None,
        description="Deadline. Pending or in-progress requirements past this date expire."
    )

    questionnaire_id: Optional[UUID] = None
    passing_score: Optional[int] = Field(default=None, ge=0)

    minimum_grade: Optional[str] = Field(default=None, regex="^[A-F]$")
    max_report_age_days: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode='after')
    def validate_type_fields(self) -> 'RequirementCreate':
        if self.type == RequirementType.QUESTIONNAIRE and not self.questionnaire_id:
            raise ValueError("A questionnaire requirement needs a 'questionnaire_id'.")
        return self


# ==========================================
# Update Model
# ==========================================


class RequirementUpdate(SQLModel):
    """Only allowed while the requirement is still pending."""
    title: Optional[str] = Field(default=None, min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    priority: Optional[RequirementPriority] = None
    due_date: Optional[datetime] = None
    passing_score: Optional[int] = Field(default=None, ge=0)
    minimum_grade: Optional[str] = Field(default=None, regex="^[A-F]$")
    max_report_age_days: Optional[int] = Field(default=None, ge=1)


# ==========================================
# Review Models
# ==========================================


class ReviewApprove(SQLModel):
    notes: Optional[str] = Field(default=None, max_length=2000)
    score_override: Optional[int] = Field(default=None, ge=0)
    grade: Optional[str] = Field(default=None, max_length=10)


class ReviewDecision(SQLModel):
    """Body of reject / request-revision. A reason is mandatory."""
    reason: str = Field(max_length=2000)
    score_override: Optional[int] = Field(default=None, ge=0)
    grade: Optional[str] = Field(default=None, max_length=10)


# ==========================================
# Read Models
# ==========================================


class RequirementRead(SQLModel):
    id: UUID
    relationship_id: UUID
    company_id: UUID
    supplier_id: UUID
    type: RequirementType
    title: str
    description: Optional[str] = None
    priority: RequirementPriority
    status: RequirementStatus
    due_date: Optional[datetime] = None
    questionnaire_id: Optional[UUID] = None
    passing_score: Optional[int] = None
    minimum_grade: Optional[str] = None
    max_report_age_days: Optional[int] = None
    assigned_by_user_id: UUID
    assigned_at: datetime
    reminder_sent_at: Optional[datetime] = None
    status_history: List[StatusHistoryEntry] = []
    created_at: datetime
    updated_at: datetime

    # Computed on read
    is_overdue: bool = False
    days_until_due: Optional[int] = None


class RequirementStats(SQLModel):
    total: int = 0
    overdue: int = 0
    by_status: Dict[str, int] = {}
