from typing import List, Optional, Tuple

from fastapi import BackgroundTasks
from loguru import logger
from sqlmodel import Session

from app.core.audit import record_audit
from app.core.errors import ForbiddenError, NotFoundError
from app.db.repository import Page, Repository, reject_nulls
from app.db.schema import AuditAction, Organization, User
from app.models.organization import OrganizationUpdate


class OrganizationService:
    def __init__(self, session: Session):
        self.session = session
        self.organizations = Repository(session, Organization)
        self.users = Repository(session, User)

    def get_current(self, user: User) -> Organization:
        organization = self.organizations.get_by_id(user.organization_id)
        if organization is None or organization.is_deleted:
            raise NotFoundError("Organization not found.", code="organization_not_found")
        return organization

    def update_current(
        self,
        user: User,
        data: OrganizationUpdate,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Organization:
        """
        Partial update of the caller's own organization. Admins only.
        """
        if not user.is_admin:
            raise ForbiddenError("Only administrators can update the organization.")

        organization = self.get_current(user)
        values = data.model_dump(exclude_unset=True)
        reject_nulls(values, ("name",))
        if "settings" in values:
            values["settings"] = values["settings"] or {}
        if not values:
            return organization

        for key, value in values.items():
            setattr(organization, key, value)
        organization = self.organizations.update(organization)
        logger.info(f"Organization {organization.id} updated by user {user.id}")

        record_audit(
            background_tasks,
            organization_id=organization.id,
            user_id=user.id,
            entity_type="Organization",
            entity_id=organization.id,
            action=AuditAction.UPDATE,
            changes={"fields": sorted(values.keys())},
        )
        return organization

    def list_users(self, user: User, page: Optional[Page] = None) -> Tuple[List[User], int]:
        conditions = (
            User.organization_id == user.organization_id,
            User.deleted_at == None,  # noqa: E711
        )
        return (
            self.users.find(*conditions, page=page or Page()),
            self.users.count(*conditions),
        )

