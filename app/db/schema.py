from typing import Optional, List, Dict, Any
from datetime import datetime
import uuid
from sqlalchemy import Index, text
from sqlmodel import SQLModel, Field, JSON
from enum import Enum

from app.utils.dates import utcnow


# ==============================================================================
# ENUMS
# ==============================================================================


class OrganizationType(str, Enum):
    COMPANY = "company"    # Assigns requirements, reviews responses
    SUPPLIER = "supplier"  # Answers requirements


class UserRole(str, Enum):
    ADMIN = "admin"
    VIEWER = "viewer"


class SecureLinkType(str, Enum):
    AUTH = "auth"              # Passwordless login
    INVITATION = "invitation"  # Supplier onboarding


class RelationshipStatus(str, Enum):
    PENDING = "pending"        # Invite sent, waiting for the Supplier
    ACTIVE = "active"          # Handshake complete, can receive Requirements
    REJECTED = "rejected"      # Supplier declined the invitation
    SUSPENDED = "suspended"    # Paused by the Company
    TERMINATED = "terminated"  # Relationship ended

    @property
    def is_terminal(self) -> bool:
        return self in (RelationshipStatus.REJECTED, RelationshipStatus.TERMINATED)

    def can_transition_to(self, target: "RelationshipStatus") -> bool:
        return target in RELATIONSHIP_TRANSITIONS[self]


RELATIONSHIP_TRANSITIONS = {
    RelationshipStatus.PENDING: frozenset({RelationshipStatus.ACTIVE, RelationshipStatus.REJECTED}),
    RelationshipStatus.ACTIVE: frozenset({RelationshipStatus.SUSPENDED, RelationshipStatus.TERMINATED}),
    RelationshipStatus.SUSPENDED: frozenset({RelationshipStatus.ACTIVE, RelationshipStatus.TERMINATED}),
    RelationshipStatus.REJECTED: frozenset(),
    RelationshipStatus.TERMINATED: frozenset(),
}


class SupplierClassification(str, Enum):
    STANDARD = "standard"
    IMPORTANT = "important"
    CRITICAL = "critical"

    @property
    def priority(self) -> int:
        return {"standard": 1, "important": 2, "critical": 3}[self.value]


class RequirementType(str, Enum):
    QUESTIONNAIRE = "questionnaire"
    DOCUMENT = "document"  # External report verification (grade + report age)


class RequirementPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RequirementStatus(str, Enum):
    PENDING = "pending"                        # Assigned, Supplier has not started
    IN_PROGRESS = "in_progress"                # Supplier is working on it
    SUBMITTED = "submitted"                    # Waiting for Company review
    APPROVED = "approved"                      # Terminal
    REJECTED = "rejected"                      # Terminal
    REVISION_REQUESTED = "revision_requested"  # Company asked for changes
    EXPIRED = "expired"                        # Due date passed before submission (terminal)

    @property
    def is_terminal(self) -> bool:
        return not REQUIREMENT_TRANSITIONS[self]

    def can_transition_to(self, target: "RequirementStatus") -> bool:
        return target in REQUIREMENT_TRANSITIONS[self]


REQUIREMENT_TRANSITIONS = {
    RequirementStatus.PENDING: frozenset({RequirementStatus.IN_PROGRESS, RequirementStatus.EXPIRED}),
    RequirementStatus.IN_PROGRESS: frozenset({RequirementStatus.SUBMITTED, RequirementStatus.EXPIRED}),
    RequirementStatus.SUBMITTED: frozenset({
        RequirementStatus.APPROVED,
        RequirementStatus.REJECTED,
        RequirementStatus.REVISION_REQUESTED,
    }),
    RequirementStatus.REVISION_REQUESTED: frozenset({RequirementStatus.IN_PROGRESS}),
    RequirementStatus.APPROVED: frozenset(),
    RequirementStatus.REJECTED: frozenset(),
    RequirementStatus.EXPIRED: frozenset(),
}

# Statuses the time-based sweeps act on.
OPEN_REQUIREMENT_STATUSES = (RequirementStatus.PENDING, RequirementStatus.IN_PROGRESS)


class QuestionnaireStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class ScoringMode(str, Enum):
    PERCENTAGE = "percentage"  # passing_score is a percentage of max points
    POINTS = "points"          # passing_score is an absolute number of points


class TemplateCategory(str, Enum):
    ISO27001 = "iso27001"
    GDPR = "gdpr"
    NIS2 = "nis2"
    CUSTOM = "custom"


class TemplateVisibility(str, Enum):
    DRAFT = "draft"    # Only the owning Company sees it
    LOCAL = "local"    # Published for the owning Company
    GLOBAL = "global"  # Published for every Company


class QuestionType(str, Enum):
    SINGLE_CHOICE = "single_choice"
    MULTIPLE_CHOICE = "multiple_choice"
    TEXT = "text"
    YES_NO = "yes_no"

    @property
    def is_choice(self) -> bool:
        return self != QuestionType.TEXT

    @property
    def requires_options(self) -> bool:
        return self in (QuestionType.SINGLE_CHOICE, QuestionType.MULTIPLE_CHOICE)


class AuditAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    STATUS_CHANGE = "status_change"
    LOGIN = "login"


def status_change(
    from_status: Optional[Enum],
    to_status: Enum,
    changed_by: Optional[uuid.UUID],
    reason: Optional[str],
    changed_at: datetime,
) -> Dict[str, Any]:
    """Builds one immutable status-history record (stored as JSON)."""
    return {
        "from_status": from_status.value if from_status is not None else None,
        "to_status": to_status.value,
        "changed_by": str(changed_by) if changed_by else None,
        "reason": reason or None,
        "changed_at": changed_at.isoformat(),
    }


# ==============================================================================
# TABLES
# ==============================================================================


class TimestampMixin(SQLModel):
    """
    Standard audit timestamps. Every entity tracks when it was created and
    when it was last modified.
    """
    created_at: datetime = Field(
        default_factory=utcnow,
        index=True,
        description="UTC timestamp when this record was first persisted."
    )
    updated_at: datetime = Field(
        default_factory=utcnow,
        sa_column_kwargs={"onupdate": utcnow},
        description="UTC timestamp when this record was last modified."
    )


class Organization(TimestampMixin, SQLModel, table=True):
    """
    A tenant. Companies assign compliance requirements; Suppliers answer them.
    All business data is scoped to an Organization.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    type: OrganizationType = Field(index=True)
    name: str = Field(index=True, description="Example: 'Acme Manufacturing GmbH'")
    slug: str = Field(unique=True, index=True, description="Example: 'acme-manufacturing'")
    domain: Optional[str] = Field(default=None, description="Example: 'acme.example.com'")
    contact_email: Optional[str] = Field(default=None)
    settings: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    deleted_at: Optional[datetime] = Field(default=None)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None


class User(TimestampMixin, SQLModel, table=True):
    """
    A human user. Belongs to exactly one Organization; logs in with magic links.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    organization_id: uuid.UUID = Field(foreign_key="organization.id", index=True)
    email: str = Field(unique=True, index=True, description="Example: 'jane.doe@acme.example.com'")
    name: str = Field(default="")
    role: UserRole = Field(default=UserRole.VIEWER)
    is_active: bool = Field(default=True)
    last_login_at: Optional[datetime] = Field(default=None)
    deleted_at: Optional[datetime] = Field(default=None)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


class SecureLink(SQLModel, table=True):
    """
    Single-use token behind a magic link. Usable only while valid, unused
    and unexpired. Links are never edited besides consumption/invalidation.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    secure_identifier: str = Field(unique=True, index=True)
    type: SecureLinkType = Field(default=SecureLinkType.AUTH)

    email: str = Field(index=True)
    user_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")
    relationship_id: Optional[uuid.UUID] = Field(default=None)

    expires_at: datetime = Field(index=True)
    used_at: Optional[datetime] = Field(default=None)
    is_valid: bool = Field(default=True)

    ip_address: Optional[str] = Field(default=None)
    user_agent: Optional[str] = Field(default=None)

    created_at: datetime = Field(default_factory=utcnow, index=True)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    @property
    def is_used(self) -> bool:
        return self.used_at is not None

    def can_be_used(self, now: Optional[datetime] = None) -> bool:
        return self.is_valid and not self.is_used and not self.is_expired(now)


class SupplierRelationship(TimestampMixin, SQLModel, table=True):
    """
    The commercial link between a Company and a Supplier.
    `supplier_id` stays empty until the invited Supplier accepts.
    At most one open (non-terminated, non-rejected) relationship per
    (company, invited_email).
    """
    __table_args__ = (
        Index(
            "uq_relationship_open_invite",
            "company_id",
            "invited_email",
            unique=True,
            sqlite_where=text("status NOT IN ('TERMINATED', 'REJECTED')"),
            postgresql_where=text("status NOT IN ('TERMINATED', 'REJECTED')"),
        ),
    )

    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    company_id: uuid.UUID = Field(foreign_key="organization.id", index=True)
    supplier_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="organization.id", index=True)

    invited_email: str = Field(index=True)
    invited_by_user_id: uuid.UUID = Field(foreign_key="user.id")
    invited_at: datetime = Field(default_factory=utcnow)

    status: RelationshipStatus = Field(default=RelationshipStatus.PENDING, index=True)
    status_history: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)

    classification: SupplierClassification = Field(default=SupplierClassification.STANDARD)
    notes: Optional[str] = Field(default=None)
    services_provided: List[str] = Field(default_factory=list, sa_type=JSON)
    contract_ref: Optional[str] = Field(default=None)

    accepted_at: Optional[datetime] = Field(default=None)
    rejected_at: Optional[datetime] = Field(default=None)

    @property
    def has_supplier(self) -> bool:
        return self.supplier_id is not None

    @property
    def can_receive_requirements(self) -> bool:
        return self.status == RelationshipStatus.ACTIVE and self.has_supplier


class QuestionnaireTemplate(TimestampMixin, SQLModel, table=True):
    """
    A reusable questionnaire skeleton (topics and a default passing score).
    System templates ship with the platform and are read-only; Company
    templates stay editable and can be shared locally or globally.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    name: str = Field(index=True, description="Example: 'ISO 27001 Baseline'")
    description: Optional[str] = Field(default=None)
    category: TemplateCategory = Field(default=TemplateCategory.CUSTOM, index=True)
    version: str = Field(default="1.0")

    is_system: bool = Field(default=False)
    created_by_org_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="organization.id", index=True)
    created_by_user_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")
    visibility: TemplateVisibility = Field(default=TemplateVisibility.DRAFT, index=True)

    default_passing_score: int = Field(default=70)
    estimated_minutes: int = Field(default=30)
    # [{"id": "access-control", "name": "Access Control", "description": null, "order": 1}]
    topics: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)
    tags: List[str] = Field(default_factory=list, sa_type=JSON)

    usage_count: int = Field(default=0)
    published_at: Optional[datetime] = Field(default=None)

    @property
    def is_draft(self) -> bool:
        return self.visibility == TemplateVisibility.DRAFT

    @property
    def can_be_edited(self) -> bool:
        return not self.is_system

    @property
    def is_in_use(self) -> bool:
        return self.usage_count > 0

    def is_owned_by(self, organization_id: uuid.UUID) -> bool:
        return not self.is_system and self.created_by_org_id == organization_id

    def is_visible_to(self, organization_id: uuid.UUID) -> bool:
        return (
            self.is_system
            or self.visibility == TemplateVisibility.GLOBAL
            or self.created_by_org_id == organization_id
        )


class Questionnaire(TimestampMixin, SQLModel, table=True):
    """
    A Company-owned questionnaire. Editable only while draft; assignable only
    once published.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    company_id: uuid.UUID = Field(foreign_key="organization.id", index=True)
    template_id: Optional[uuid.UUID] = Field(
        default=None, foreign_key="questionnairetemplate.id")
    name: str
    description: Optional[str] = Field(default=None)
    status: QuestionnaireStatus = Field(default=QuestionnaireStatus.DRAFT, index=True)
    version: int = Field(default=1)

    passing_score: int = Field(default=70)
    scoring_mode: ScoringMode = Field(default=ScoringMode.PERCENTAGE)
    topics: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)

    question_count: int = Field(default=0)
    max_possible_score: int = Field(default=0)
    published_at: Optional[datetime] = Field(default=None)

    @property
    def is_editable(self) -> bool:
        return self.status == QuestionnaireStatus.DRAFT


class Question(TimestampMixin, SQLModel, table=True):
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    questionnaire_id: uuid.UUID = Field(foreign_key="questionnaire.id", index=True)
    topic_id: Optional[str] = Field(default=None)

    text: str
    description: Optional[str] = Field(default=None)
    help_text: Optional[str] = Field(default=None)

    type: QuestionType
    order: int = Field(default=0)

    weight: int = Field(default=1)
    max_points: int = Field(default=1)
    is_must_pass: bool = Field(default=False)

    # [{"id": "a", "text": "Yes", "points": 10, "is_correct": true, "order": 1}]
    options: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)


class Requirement(TimestampMixin, SQLModel, table=True):
    """
    A single compliance obligation a Company assigns to a Supplier through an
    active relationship. Terms are editable only while pending.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    relationship_id: uuid.UUID = Field(foreign_key="supplierrelationship.id", index=True)
    company_id: uuid.UUID = Field(foreign_key="organization.id", index=True)
    supplier_id: uuid.UUID = Field(foreign_key="organization.id", index=True)

    type: RequirementType
    title: str
    description: Optional[str] = Field(default=None)
    priority: RequirementPriority = Field(default=RequirementPriority.MEDIUM)

    # Questionnaire requirements
    questionnaire_id: Optional[uuid.UUID] = Field(default=None, foreign_key="questionnaire.id")
    passing_score: Optional[int] = Field(default=None)

    # Document requirements
    minimum_grade: Optional[str] = Field(default=None)
    max_report_age_days: Optional[int] = Field(default=None)

    due_date: Optional[datetime] = Field(default=None, index=True)
    reminder_sent_at: Optional[datetime] = Field(default=None)

    status: RequirementStatus = Field(default=RequirementStatus.PENDING, index=True)
    status_history: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)

    assigned_by_user_id: uuid.UUID = Field(foreign_key="user.id")
    assigned_at: datetime = Field(default_factory=utcnow)

    @property
    def is_editable(self) -> bool:
        return self.status == RequirementStatus.PENDING

    @property
    def can_be_reviewed(self) -> bool:
        return self.status == RequirementStatus.SUBMITTED

    @property
    def is_overdue(self) -> bool:
        if self.due_date is None:
            return False
        return utcnow() > self.due_date and self.status in OPEN_REQUIREMENT_STATUSES

    @property
    def days_until_due(self) -> Optional[int]:
        # Calendar days; negative once the due date has passed.
        if self.due_date is None:
            return None
        return (self.due_date.date() - utcnow().date()).days


class SupplierResponse(TimestampMixin, SQLModel, table=True):
    """
    A Supplier's answer to one Requirement. Holds draft answers until
    submission, then the denormalized score and the Company's review notes.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    requirement_id: uuid.UUID = Field(foreign_key="requirement.id", unique=True, index=True)
    supplier_id: uuid.UUID = Field(foreign_key="organization.id", index=True)

    submission_id: Optional[uuid.UUID] = Field(default=None)

    score: Optional[int] = Field(default=None)
    max_score: Optional[int] = Field(default=None)
    passed: Optional[bool] = Field(default=None)
    grade: Optional[str] = Field(default=None)

    draft_answers: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)

    # Review annotations (advisory, merged with the immutable submission)
    reviewed_by_user_id: Optional[uuid.UUID] = Field(default=None, foreign_key="user.id")
    reviewed_at: Optional[datetime] = Field(default=None)
    review_notes: Optional[str] = Field(default=None)
    score_override: Optional[int] = Field(default=None)

    started_at: datetime = Field(default_factory=utcnow)
    submitted_at: Optional[datetime] = Field(default=None)

    @property
    def is_submitted(self) -> bool:
        return self.submitted_at is not None


class QuestionnaireSubmission(SQLModel, table=True):
    """
    The scored answers of a submitted questionnaire. Never updated after
    creation; a resubmission after a revision request creates a new row.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    response_id: uuid.UUID = Field(foreign_key="supplierresponse.id", index=True)
    questionnaire_id: uuid.UUID = Field(foreign_key="questionnaire.id")
    supplier_id: uuid.UUID = Field(foreign_key="organization.id")

    answers: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)

    total_score: int = Field(default=0)
    max_possible_score: int = Field(default=0)
    percentage_score: float = Field(default=0.0)
    passed: bool = Field(default=False)
    must_pass_failed: bool = Field(default=False)
    topic_scores: List[Dict[str, Any]] = Field(default_factory=list, sa_type=JSON)

    completion_time_minutes: int = Field(default=0)
    started_at: datetime
    submitted_at: datetime = Field(default_factory=utcnow)
    created_at: datetime = Field(default_factory=utcnow)


class AuditLog(SQLModel, table=True):
    """
    Append-only record of state-changing actions, written in the background.
    """
    id: uuid.UUID = Field(default_factory=uuid.uuid4, primary_key=True)
    organization_id: Optional[uuid.UUID] = Field(default=None, index=True)
    actor_user_id: Optional[uuid.UUID] = Field(default=None)
    entity_type: str = Field(index=True)
    entity_id: uuid.UUID = Field(index=True)
    action: AuditAction
    changes: Dict[str, Any] = Field(default_factory=dict, sa_type=JSON)
    ip_address: Optional[str] = Field(default=None)
    timestamp: datetime = Field(default_factory=utcnow, index=True)
