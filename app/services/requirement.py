import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from fastapi import BackgroundTasks
from loguru import logger
from sqlmodel import Session, col, select

from app.core.audit import record_audit
from app.core.config import settings
from app.core.errors import (
    InvalidTransitionError, NotEditableError, NotFoundError, ValidationFailedError,
)
from app.db.repository import Page, Repository, reject_nulls
from app.db.schema import (
    OPEN_REQUIREMENT_STATUSES, AuditAction, Organization, Questionnaire, QuestionnaireStatus,
    Requirement, RequirementPriority, RequirementStatus, RequirementType,
    SupplierRelationship, User, status_change,
)
from app.models.requirement import RequirementCreate, RequirementStats, RequirementUpdate
from app.services.mail import MailDeliveryError, MailService
from app.utils.dates import as_naive_utc, utcnow

EXPIRY_REASON = "Expired due to passing due date"
DEFAULT_MINIMUM_GRADE = "C"
DEFAULT_MAX_REPORT_AGE_DAYS = 90

# Columns an update may change but never clear
REQUIRED_FIELDS = ("title", "priority")


class RequirementService:
    """
    Requirement lifecycle.

    pending -> in_progress -> submitted -> approved | rejected | revision_requested
    revision_requested -> in_progress
    pending | in_progress -> expired (sweep only)

    Terms can be edited only while pending.
    """

    def __init__(self, session: Session, mail: Optional[MailService] = None):
        self.session = session
        self.requirements = Repository(session, Requirement)
        self.relationships = Repository(session, SupplierRelationship)
        self.questionnaires = Repository(session, Questionnaire)
        self.organizations = Repository(session, Organization)
        self.users = Repository(session, User)
        self.mail = mail or MailService()

    # ==========================================================================
    # LOOKUPS
    # ==========================================================================

    def get_for_company(self, requirement_id: uuid.UUID, company_id: uuid.UUID) -> Requirement:
        requirement = self.requirements.get_by_id(requirement_id)
        if not requirement or requirement.company_id != company_id:
            raise NotFoundError("Requirement not found.")
        return requirement

    def get_for_supplier(self, requirement_id: uuid.UUID, supplier_id: uuid.UUID) -> Requirement:
        requirement = self.requirements.get_by_id(requirement_id)
        if not requirement or requirement.supplier_id != supplier_id:
            raise NotFoundError("Requirement not found.")
        return requirement

    def get(self, user: User, requirement_id: uuid.UUID) -> Requirement:
        requirement = self.requirements.get_by_id(requirement_id)
        if not requirement or user.organization_id not in (
                requirement.company_id, requirement.supplier_id):
            raise NotFoundError("Requirement not found.")
        return requirement

    def list_for_company(
        self,
        company_id: uuid.UUID,
        status: Optional[RequirementStatus] = None,
        type: Optional[RequirementType] = None,
        priority: Optional[RequirementPriority] = None,
        page: Optional[Page] = None,
    ) -> Tuple[List[Requirement], int]:
        filters = dict(company_id=company_id, status=status, type=type, priority=priority)
        return (
            self.requirements.list(page=page, **filters),
            self.requirements.count(**filters),
        )

    def list_for_supplier(
        self,
        supplier_id: uuid.UUID,
        status: Optional[RequirementStatus] = None,
        page: Optional[Page] = None,
    ) -> Tuple[List[Requirement], int]:
        filters = dict(supplier_id=supplier_id, status=status)
        return (
            self.requirements.list(page=page, **filters),
            self.requirements.count(**filters),
        )

    def list_for_relationship(
        self,
        relationship_id: uuid.UUID,
        status: Optional[RequirementStatus] = None,
    ) -> List[Requirement]:
        conditions = [Requirement.relationship_id == relationship_id]
        if status is not None:
            conditions.append(Requirement.status == status)
        return self.requirements.find(*conditions)

    # ==========================================================================
    # COMPANY ACTIONS
    # ==========================================================================

    def create(
        self,
        user: User,
        data: RequirementCreate,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Requirement:
        """
        Assigns a requirement through an active relationship.

        1. The relationship must belong to the Company and be active with a
           linked Supplier.
        2. Questionnaire requirements need a published questionnaire of the
           same Company; the passing score defaults to the questionnaire's.
        3. Document requirements get the default grade and report age.
        """
        company_id = user.organization_id

        # 1. Relationship
        rel = self.relationships.get_by_id(data.relationship_id)
        if not rel or rel.company_id != company_id:
            raise NotFoundError("Relationship not found.")
        if not rel.can_receive_requirements:
            raise ValidationFailedError(
                "The relationship is not active.", code="relationship_not_active")

        now = utcnow()
        requirement = Requirement(
            relationship_id=rel.id,
            company_id=company_id,
            supplier_id=rel.supplier_id,
            type=data.type,
            title=data.title,
            description=data.description,
            priority=data.priority or RequirementPriority.MEDIUM,
            due_date=as_naive_utc(data.due_date),
            status=RequirementStatus.PENDING,
            status_history=[
                status_change(None, RequirementStatus.PENDING, user.id, "Requirement assigned", now)
            ],
            assigned_by_user_id=user.id,
            assigned_at=now,
        )

        # 2. Type specific constraints
        if data.type == RequirementType.QUESTIONNAIRE:
            questionnaire = self.questionnaires.get_by_id(data.questionnaire_id)
            if not questionnaire or questionnaire.company_id != company_id:
                raise NotFoundError("Questionnaire not found.")
            if questionnaire.status != QuestionnaireStatus.PUBLISHED:
                raise ValidationFailedError(
                    "Only published questionnaires can be assigned.",
                    code="questionnaire_not_published")

            requirement.questionnaire_id = questionnaire.id
            requirement.passing_score = (
                data.passing_score if data.passing_score is not None
                else questionnaire.passing_score
            )

        # 3. Document defaults
        elif data.type == RequirementType.DOCUMENT:
            requirement.minimum_grade = data.minimum_grade or DEFAULT_MINIMUM_GRADE
            requirement.max_report_age_days = (
                data.max_report_age_days or DEFAULT_MAX_REPORT_AGE_DAYS)

        requirement = self.requirements.create(requirement)
        logger.info(
            f"Requirement {requirement.id} assigned to supplier {requirement.supplier_id}")

        record_audit(
            background_tasks,
            organization_id=company_id,
            user_id=user.id,
            entity_type="Requirement",
            entity_id=requirement.id,
            action=AuditAction.CREATE,
            changes={"title": requirement.title, "type": requirement.type.value},
        )
        self.notify(requirement, RequirementStatus.PENDING)
        return requirement

    def update(
        self,
        user: User,
        requirement_id: uuid.UUID,
        data: RequirementUpdate,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Requirement:
        """Edits the terms. Only allowed while the requirement is pending."""
        requirement = self.get_for_company(requirement_id, user.organization_id)
        if not requirement.is_editable:
            raise NotEditableError("This requirement can only be edited while pending.")

        values = data.model_dump(exclude_unset=True)
        reject_nulls(values, REQUIRED_FIELDS)

        # Constraints only apply to their own requirement type
        if requirement.type != RequirementType.QUESTIONNAIRE:
            values.pop("passing_score", None)
        if requirement.type != RequirementType.DOCUMENT:
            values.pop("minimum_grade", None)
            values.pop("max_report_age_days", None)

        if "due_date" in values:
            values["due_date"] = as_naive_utc(values["due_date"])
            # A new deadline gets its own reminder
            values["reminder_sent_at"] = None

        if not values:
            return requirement

        updated = self.requirements.update_where(
            requirement.id,
            values,
            Requirement.status == RequirementStatus.PENDING,
        )
        if not updated:
            raise NotEditableError("This requirement can only be edited while pending.")

        record_audit(
            background_tasks,
            organization_id=user.organization_id,
            user_id=user.id,
            entity_type="Requirement",
            entity_id=requirement.id,
            action=AuditAction.UPDATE,
            changes={k: str(v) if v is not None else None for k, v in values.items()},
        )
        return self.requirements.get_by_id(requirement.id)

    def stats(self, company_id: uuid.UUID, now: Optional[datetime] = None) -> RequirementStats:
        now = now or utcnow()
        rows = self.session.exec(
            select(Requirement.status, Requirement.due_date)
            .where(Requirement.company_id == company_id)
        ).all()

        stats = RequirementStats(
            total=len(rows),
            by_status={s.value: 0 for s in RequirementStatus},
        )
        for status, due_date in rows:
            stats.by_status[status.value] += 1
            if due_date is not None and due_date < now and status in OPEN_REQUIREMENT_STATUSES:
                stats.overdue += 1
        return stats

    # ==========================================================================
    # TRANSITIONS
    # ==========================================================================

    def transition(
        self,
        requirement: Requirement,
        target: RequirementStatus,
        changed_by: Optional[uuid.UUID],
        reason: Optional[str] = None,
        action_label: str = "update",
        extra_values: Optional[Dict[str, Any]] = None,
        organization_id: Optional[uuid.UUID] = None,
        background_tasks: Optional[BackgroundTasks] = None,
        now: Optional[datetime] = None,
    ) -> Requirement:
        """
        Moves `requirement` from the status it was read with to `target`.

        The write is filtered on that status; if another request changed it
        in between, nothing is written and InvalidTransitionError is raised.
        """
        old_status = requirement.status
        if not old_status.can_transition_to(target):
            raise InvalidTransitionError(f"Cannot {action_label} this requirement.")

        now = now or utcnow()
        history = list(requirement.status_history or []) + [
            status_change(old_status, target, changed_by, reason, now)
        ]
        values = {"status": target, "status_history": history}
        values.update(extra_values or {})

        updated = self.requirements.update_where(
            requirement.id, values, Requirement.status == old_status)
        if not updated:
            raise InvalidTransitionError(f"Cannot {action_label} this requirement.")

        logger.info(f"Requirement {requirement.id}: {old_status.value} -> {target.value}")

        record_audit(
            background_tasks,
            organization_id=organization_id,
            user_id=changed_by,
            entity_type="Requirement",
            entity_id=requirement.id,
            action=AuditAction.STATUS_CHANGE,
            changes={"from": old_status.value, "to": target.value, "reason": reason},
        )
        requirement = self.requirements.get_by_id(requirement.id)
        self.notify(requirement, target, reason)
        return requirement

    def start(self, user: User, requirement_id: uuid.UUID,
              background_tasks: Optional[BackgroundTasks] = None) -> Requirement:
        """Supplier begins work, or resumes it after a revision request."""
        requirement = self.get_for_supplier(requirement_id, user.organization_id)
        reason = (
            "Revision started"
            if requirement.status == RequirementStatus.REVISION_REQUESTED else None
        )
        return self.transition(
            requirement,
            RequirementStatus.IN_PROGRESS,
            user.id,
            reason,
            action_label="start",
            organization_id=user.organization_id,
            background_tasks=background_tasks,
        )

    def submit(self, user: User, requirement_id: uuid.UUID,
               background_tasks: Optional[BackgroundTasks] = None) -> Requirement:
        requirement = self.get_for_supplier(requirement_id, user.organization_id)
        return self.transition(
            requirement,
            RequirementStatus.SUBMITTED,
            user.id,
            None,
            action_label="submit",
            organization_id=user.organization_id,
            background_tasks=background_tasks,
        )

    # ==========================================================================
    # SWEEPS (system driven)
    # ==========================================================================

    def expire(self, requirement: Requirement, now: Optional[datetime] = None) -> Requirement:
        return self.transition(
            requirement,
            RequirementStatus.EXPIRED,
            None,
            EXPIRY_REASON,
            action_label="expire",
            organization_id=requirement.company_id,
            now=now,
        )

    def expire_overdue(self, now: Optional[datetime] = None) -> int:
        """
        Expires every pending or in-progress requirement past its due date.

        Only open statuses are selected and each write is filtered on the
        status it was read with, so running the sweep again changes nothing.
        """
        now = now or utcnow()
        candidates = self.requirements.find(
            col(Requirement.due_date) < now,
            col(Requirement.status).in_(OPEN_REQUIREMENT_STATUSES),
        )

        expired = 0
        for requirement in candidates:
            try:
                self.expire(requirement, now=now)
                expired += 1
            except InvalidTransitionError:
                # Moved on (e.g. submitted) since it was selected
                logger.info(f"Requirement {requirement.id} changed during expiry sweep, skipped")

        logger.info(f"Expiry sweep: {expired} requirement(s) expired")
        return expired

    def find_due_for_reminder(self, days_before: int, now: datetime) -> List[Requirement]:
        return self.requirements.find(
            col(Requirement.due_date) >= now,
            col(Requirement.due_date) <= now + timedelta(days=days_before),
            col(Requirement.reminder_sent_at).is_(None),
            col(Requirement.status).in_(OPEN_REQUIREMENT_STATUSES),
        )

    def send_reminders(self, days_before: Optional[int] = None,
                       now: Optional[datetime] = None) -> int:
        """
        Mails a reminder for every open requirement due within `days_before`
        days, then stamps `reminder_sent_at`. The stamp is written only where
        it is still empty, so each requirement is marked once.
        """
        now = now or utcnow()
        days_before = settings.reminder_days_before if days_before is None else days_before

        sent = 0
        for requirement in self.find_due_for_reminder(days_before, now):
            rel = self.relationships.get_by_id(requirement.relationship_id)
            if rel is None:
                continue

            try:
                self.mail.send_requirement_reminder(
                    rel.invited_email,
                    requirement.title,
                    requirement.due_date.date().isoformat(),
                    self.requirement_link(requirement, for_supplier=True),
                )
            except MailDeliveryError:
                # Left unmarked so the next sweep retries
                logger.warning(
                    f"Reminder for requirement {requirement.id} could not be delivered",
                    exc_info=True)
                continue

            marked = self.requirements.update_where(
                requirement.id,
                {"reminder_sent_at": now},
                col(Requirement.reminder_sent_at).is_(None),
            )
            if marked:
                sent += 1

        logger.info(f"Reminder sweep: {sent} reminder(s) sent")
        return sent

    # ==========================================================================
    # NOTIFICATIONS
    # ==========================================================================

    @staticmethod
    def requirement_link(requirement: Requirement, for_supplier: bool) -> str:
        base = settings.magic_link_base_url.rstrip("/")
        if for_supplier:
            return f"{base}/supplier/requirements/{requirement.id}"
        return f"{base}/requirements/{requirement.id}"

    def notify(self, requirement: Requirement, status: RequirementStatus,
               reason: Optional[str] = None) -> None:
        """
        Workflow email for a requirement that just reached `status`.
        Delivery problems are logged only; the state change stands.
        """
        try:
            self._send_notification(requirement, status, reason)
        except MailDeliveryError:
            logger.warning(
                f"Notification '{status.value}' for requirement {requirement.id} "
                f"could not be delivered", exc_info=True)

    def _send_notification(self, requirement: Requirement, status: RequirementStatus,
                           reason: Optional[str]):
        rel = self.relationships.get_by_id(requirement.relationship_id)
        if rel is None:
            return

        company = self.organizations.get_by_id(requirement.company_id)
        company_name = company.name if company else ""
        supplier_link = self.requirement_link(requirement, for_supplier=True)
        title = requirement.title

        if status == RequirementStatus.PENDING:
            due_date = requirement.due_date.date().isoformat() if requirement.due_date else None
            self.mail.send_requirement_assigned(
                rel.invited_email, company_name, title, due_date, supplier_link)

        elif status == RequirementStatus.SUBMITTED:
            # Goes to the Company user who assigned the requirement
            assigner = self.users.get_by_id(requirement.assigned_by_user_id)
            if assigner is None or assigner.is_deleted or not assigner.is_active:
                return
            supplier = self.organizations.get_by_id(requirement.supplier_id)
            self.mail.send_submission_received(
                assigner.email, supplier.name if supplier else "", title,
                self.requirement_link(requirement, for_supplier=False))

        elif status == RequirementStatus.APPROVED:
            self.mail.send_submission_approved(
                rel.invited_email, company_name, title, reason, supplier_link)

        elif status == RequirementStatus.REJECTED:
            self.mail.send_submission_rejected(
                rel.invited_email, company_name, title, reason or "", supplier_link)

        elif status == RequirementStatus.REVISION_REQUESTED:
            self.mail.send_revision_requested(
                rel.invited_email, company_name, title, reason or "", supplier_link)

        elif status == RequirementStatus.EXPIRED:
            self.mail.send_requirement_overdue(rel.invited_email, title, supplier_link)
