import uuid
from typing import Any, Dict, List, Optional, Tuple

from fastapi import BackgroundTasks
from loguru import logger
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from app.core.audit import record_audit
from app.core.config import settings
from app.core.errors import (
    AlreadyExistsError, CannotModifyError, InvalidTransitionError, NotFoundError,
)
from app.db.repository import Page, Repository
from app.db.schema import (
    AuditAction, Organization, RelationshipStatus, SupplierClassification,
    SupplierRelationship, User, status_change,
)
from app.models.relationship import (
    InvitationRead, RelationshipDetailsUpdate, RelationshipInvite, RelationshipStats,
)
from app.services.mail import MailDeliveryError, MailService
from app.utils.dates import utcnow

# Relationships in these states free up the (company, email) pair again
CLOSED_STATUSES = (RelationshipStatus.TERMINATED, RelationshipStatus.REJECTED)


class RelationshipService:
    """
    Company/Supplier relationship lifecycle.

    pending -> active | rejected
    active -> suspended | terminated
    suspended -> active | terminated

    Every transition is one conditional write filtered on the status that was
    read, with the history entry appended in the same statement.
    """

    def __init__(self, session: Session, mail: Optional[MailService] = None):
        self.session = session
        self.relationships = Repository(session, SupplierRelationship)
        self.organizations = Repository(session, Organization)
        self.mail = mail or MailService()

    def _get_for_company(self, relationship_id: uuid.UUID, company_id: uuid.UUID) -> SupplierRelationship:
        rel = self.relationships.get_by_id(relationship_id)
        if not rel or rel.company_id != company_id:
            raise NotFoundError("Relationship not found.")
        return rel

    def _transition(
        self,
        rel: SupplierRelationship,
        target: RelationshipStatus,
        user: User,
        reason: Optional[str],
        action_label: str,
        background_tasks: Optional[BackgroundTasks] = None,
        extra_values: Optional[Dict[str, Any]] = None,
        extra_conditions: tuple = (),
    ) -> SupplierRelationship:
        """
        Validates `rel.status -> target` and applies it atomically.
        A lost race (the status changed since it was read) is reported the
        same way as a forbidden transition.
        """
        old_status = rel.status
        if not old_status.can_transition_to(target):
            raise InvalidTransitionError(f"Cannot {action_label} this relationship.")

        now = utcnow()
        history = list(rel.status_history or []) + [
            status_change(old_status, target, user.id, reason, now)
        ]
        values = {"status": target, "status_history": history}
        values.update(extra_values or {})

        updated = self.relationships.update_where(
            rel.id,
            values,
            SupplierRelationship.status == old_status,
            *extra_conditions,
        )
        if not updated:
            raise InvalidTransitionError(f"Cannot {action_label} this relationship.")

        logger.info(
            f"Relationship {rel.id}: {old_status.value} -> {target.value} by user {user.id}")

        record_audit(
            background_tasks,
            organization_id=user.organization_id,
            user_id=user.id,
            entity_type="SupplierRelationship",
            entity_id=rel.id,
            action=AuditAction.STATUS_CHANGE,
            changes={"from": old_status.value, "to": target.value, "reason": reason},
        )
        return self.relationships.get_by_id(rel.id)

    # ==========================================================================
    # COMPANY ACTIONS
    # ==========================================================================

    def invite(
        self,
        user: User,
        data: RelationshipInvite,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> SupplierRelationship:
        """
        Creates a pending relationship for an email address.

        1. Rejects a second open relationship for the same (company, email).
        2. Persists the relationship with its first history entry.
        3. Mails the invitation. Delivery problems are logged only.
        """
        company = self.organizations.get_by_id(user.organization_id)
        if not company:
            raise NotFoundError("Organization not found.")

        email = str(data.email).strip().lower()

        open_count = self.relationships.count(
            SupplierRelationship.company_id == company.id,
            SupplierRelationship.invited_email == email,
            col(SupplierRelationship.status).notin_(CLOSED_STATUSES),
        )
        if open_count:
            raise AlreadyExistsError("A relationship with this supplier already exists.")

        now = utcnow()
        rel = SupplierRelationship(
            company_id=company.id,
            invited_email=email,
            invited_by_user_id=user.id,
            invited_at=now,
            status=RelationshipStatus.PENDING,
            status_history=[
                status_change(None, RelationshipStatus.PENDING, user.id, "Invitation sent", now)
            ],
            classification=data.classification,
            notes=data.notes,
            services_provided=list(data.services_provided or []),
            contract_ref=data.contract_ref,
        )

        try:
            rel = self.relationships.create(rel)
        except IntegrityError:
            # A concurrent invite for the same pair won
            self.session.rollback()
            raise AlreadyExistsError("A relationship with this supplier already exists.")

        logger.info(f"Company {company.id} invited {email} (relationship {rel.id})")

        invite_url = f"{settings.magic_link_base_url.rstrip('/')}/supplier/invitations"
        try:
            self.mail.send_invitation(email, company.name, invite_url)
        except MailDeliveryError:
            logger.warning(f"Invitation email to {email} could not be delivered", exc_info=True)

        record_audit(
            background_tasks,
            organization_id=company.id,
            user_id=user.id,
            entity_type="SupplierRelationship",
            entity_id=rel.id,
            action=AuditAction.CREATE,
            changes={"invited_email": email, "classification": rel.classification.value},
        )
        return rel

    def get(self, user: User, relationship_id: uuid.UUID) -> SupplierRelationship:
        """Visible to the owning Company and, once accepted, to the Supplier."""
        rel = self.relationships.get_by_id(relationship_id)
        if not rel or user.organization_id not in (rel.company_id, rel.supplier_id):
            raise NotFoundError("Relationship not found.")
        return rel

    def list_for_company(
        self,
        company_id: uuid.UUID,
        status: Optional[RelationshipStatus] = None,
        classification: Optional[SupplierClassification] = None,
        page: Optional[Page] = None,
    ) -> Tuple[List[SupplierRelationship], int]:
        filters = dict(company_id=company_id, status=status, classification=classification)
        return (
            self.relationships.list(page=page, **filters),
            self.relationships.count(**filters),
        )

    def suspend(self, user: User, relationship_id: uuid.UUID, reason: Optional[str] = None,
                background_tasks: Optional[BackgroundTasks] = None) -> SupplierRelationship:
        rel = self._get_for_company(relationship_id, user.organization_id)
        return self._transition(
            rel, RelationshipStatus.SUSPENDED, user, reason, "suspend", background_tasks)

    def reactivate(self, user: User, relationship_id: uuid.UUID, reason: Optional[str] = None,
                   background_tasks: Optional[BackgroundTasks] = None) -> SupplierRelationship:
        rel = self._get_for_company(relationship_id, user.organization_id)
        # pending -> active is reserved for the supplier accepting
        if rel.status != RelationshipStatus.SUSPENDED:
            raise InvalidTransitionError("Cannot reactivate this relationship.")
        return self._transition(
            rel, RelationshipStatus.ACTIVE, user, reason, "reactivate", background_tasks)

    def terminate(self, user: User, relationship_id: uuid.UUID, reason: Optional[str] = None,
                  background_tasks: Optional[BackgroundTasks] = None) -> SupplierRelationship:
        rel = self._get_for_company(relationship_id, user.organization_id)
        return self._transition(
            rel, RelationshipStatus.TERMINATED, user, reason, "terminate", background_tasks)

    def _update_fields(
        self,
        user: User,
        relationship_id: uuid.UUID,
        values: Dict[str, Any],
        background_tasks: Optional[BackgroundTasks],
    ) -> SupplierRelationship:
        rel = self._get_for_company(relationship_id, user.organization_id)
        if rel.status.is_terminal:
            raise CannotModifyError("Cannot modify this relationship.")
        if not values:
            return rel

        # Filtered on "still open" so a concurrent termination wins
        updated = self.relationships.update_where(
            rel.id,
            values,
            col(SupplierRelationship.status).notin_(CLOSED_STATUSES),
        )
        if not updated:
            raise CannotModifyError("Cannot modify this relationship.")

        record_audit(
            background_tasks,
            organization_id=user.organization_id,
            user_id=user.id,
            entity_type="SupplierRelationship",
            entity_id=rel.id,
            action=AuditAction.UPDATE,
            changes={k: (v.value if isinstance(v, SupplierClassification) else v)
                     for k, v in values.items()},
        )
        return self.relationships.get_by_id(rel.id)

    def update_classification(
        self,
        user: User,
        relationship_id: uuid.UUID,
        classification: SupplierClassification,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> SupplierRelationship:
        return self._update_fields(
            user, relationship_id, {"classification": classification}, background_tasks)

    def update_details(
        self,
        user: User,
        relationship_id: uuid.UUID,
        data: RelationshipDetailsUpdate,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> SupplierRelationship:
        values = data.model_dump(exclude_unset=True)
        if "services_provided" in values:
            values["services_provided"] = list(values["services_provided"] or [])
        return self._update_fields(user, relationship_id, values, background_tasks)

    def stats(self, company_id: uuid.UUID) -> RelationshipStats:
        rows = self.session.exec(
            select(SupplierRelationship.status, SupplierRelationship.classification)
            .where(SupplierRelationship.company_id == company_id)
        ).all()

        stats = RelationshipStats(
            total=len(rows),
            by_classification={c.value: 0 for c in SupplierClassification},
        )
        for status, classification in rows:
            setattr(stats, status.value, getattr(stats, status.value) + 1)
            stats.by_classification[classification.value] += 1
        return stats

    # ==========================================================================
    # SUPPLIER ACTIONS (The Invited Party)
    # ==========================================================================

    def list_pending_invitations(self, email: str) -> List[InvitationRead]:
        email = email.strip().lower()
        rows = self.session.exec(
            select(SupplierRelationship, Organization)
            .join(Organization, SupplierRelationship.company_id == Organization.id)
            .where(SupplierRelationship.invited_email == email)
            .where(SupplierRelationship.status == RelationshipStatus.PENDING)
            .order_by(col(SupplierRelationship.invited_at).desc())
        ).all()

        return [
            InvitationRead(
                id=rel.id,
                company_id=company.id,
                company_name=company.name,
                invited_email=rel.invited_email,
                invited_at=rel.invited_at,
                classification=rel.classification,
                services_provided=rel.services_provided or [],
            )
            for rel, company in rows
        ]

    def list_for_supplier(
        self,
        supplier_id: uuid.UUID,
        status: Optional[RelationshipStatus] = None,
        page: Optional[Page] = None,
    ) -> Tuple[List[SupplierRelationship], int]:
        filters = dict(supplier_id=supplier_id, status=status)
        return (
            self.relationships.list(page=page, **filters),
            self.relationships.count(**filters),
        )

    def _get_invitation(self, user: User, relationship_id: uuid.UUID) -> SupplierRelationship:
        # Only the invited address can see the invitation
        rel = self.relationships.get_by_id(relationship_id)
        if not rel or rel.invited_email != user.email.lower():
            raise NotFoundError("Invitation not found.")
        return rel

    def accept(self, user: User, relationship_id: uuid.UUID,
               background_tasks: Optional[BackgroundTasks] = None) -> SupplierRelationship:
        """Links the accepting user's Supplier organization and activates."""
        rel = self._get_invitation(user, relationship_id)
        if rel.status != RelationshipStatus.PENDING:
            raise InvalidTransitionError("Cannot accept this invitation.")

        return self._transition(
            rel,
            RelationshipStatus.ACTIVE,
            user,
            "Invitation accepted",
            "accept",
            background_tasks,
            extra_values={"supplier_id": user.organization_id, "accepted_at": utcnow()},
            extra_conditions=(col(SupplierRelationship.supplier_id).is_(None),),
        )

    def decline(self, user: User, relationship_id: uuid.UUID, reason: Optional[str] = None,
                background_tasks: Optional[BackgroundTasks] = None) -> SupplierRelationship:
        rel = self._get_invitation(user, relationship_id)
        if rel.status != RelationshipStatus.PENDING:
            raise InvalidTransitionError("Cannot decline this invitation.")

        return self._transition(
            rel,
            RelationshipStatus.REJECTED,
            user,
            reason or "Invitation declined",
            "decline",
            background_tasks,
            extra_values={"rejected_at": utcnow()},
        )
