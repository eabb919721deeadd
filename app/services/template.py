import json
import uuid
from typing import Any, Dict, List, Optional, Tuple, Union

from fastapi import BackgroundTasks
from loguru import logger
from pydantic import ValidationError
from sqlalchemy import and_, or_
from sqlmodel import Session

from app.core.audit import record_audit
from app.core.errors import (
    CannotModifyError, ForbiddenError, InvalidTransitionError, NotEditableError,
    NotFoundError, ValidationFailedError,
)
from app.db.repository import Page, Repository, reject_nulls
from app.db.schema import (
    AuditAction, QuestionnaireTemplate, TemplateCategory, TemplateVisibility, User,
)
from app.models.template import TemplateCreate, TemplateTopic, TemplateUpdate
from app.utils.dates import utcnow

TEMPLATE_REQUIRED_FIELDS = ("name", "version", "default_passing_score", "estimated_minutes")


def build_topics(topics: List[TemplateTopic]) -> List[Dict[str, Any]]:
    """Topics keep their input order; missing ids are generated."""
    built = []
    seen = set()
    for order, topic in enumerate(topics, start=1):
        topic_id = topic.id or uuid.uuid4().hex[:12]
        if topic_id in seen:
            raise ValidationFailedError(f"Duplicate topic id '{topic_id}'.")
        seen.add(topic_id)
        built.append({
            "id": topic_id,
            "name": topic.name,
            "description": topic.description,
            "order": order,
        })
    return built


class TemplateService:
    """
    Questionnaire templates.

    System templates are read-only and visible to everyone. Company templates
    start as drafts, belong to the creating Company and become visible to
    other Companies only when published globally. A template that has been
    used to start a questionnaire can no longer be deleted or unpublished.
    """

    def __init__(self, session: Session):
        self.session = session
        self.templates = Repository(session, QuestionnaireTemplate)

    def _audit(self, background_tasks, user: User, entity_id: uuid.UUID,
               action: AuditAction, changes: dict):
        record_audit(
            background_tasks,
            organization_id=user.organization_id,
            user_id=user.id,
            entity_type="QuestionnaireTemplate",
            entity_id=entity_id,
            action=action,
            changes=changes,
        )

    # ==========================================================================
    # READ
    # ==========================================================================

    def get(self, organization_id: uuid.UUID, template_id: uuid.UUID) -> QuestionnaireTemplate:
        template = self.templates.get_by_id(template_id)
        if not template or not template.is_visible_to(organization_id):
            raise NotFoundError("Template not found.")
        return template

    def _get_owned(self, user: User, template_id: uuid.UUID) -> QuestionnaireTemplate:
        template = self.get(user.organization_id, template_id)
        if template.is_system:
            raise NotEditableError("System templates cannot be changed.")
        if not template.is_owned_by(user.organization_id):
            raise ForbiddenError("Only the owning company can change this template.")
        return template

    def list_available(
        self,
        organization_id: uuid.UUID,
        category: Optional[TemplateCategory] = None,
        page: Optional[Page] = None,
    ) -> Tuple[List[QuestionnaireTemplate], int]:
        """System, globally published and the Company's own published templates."""
        conditions = [or_(
            QuestionnaireTemplate.is_system == True,  # noqa: E712
            QuestionnaireTemplate.visibility == TemplateVisibility.GLOBAL,
            and_(QuestionnaireTemplate.created_by_org_id == organization_id,
                 QuestionnaireTemplate.visibility == TemplateVisibility.LOCAL),
        )]
        if category is not None:
            conditions.append(QuestionnaireTemplate.category == category)
        return (
            self.templates.find(*conditions, page=page or Page()),
            self.templates.count(*conditions),
        )

    def list_mine(
        self,
        organization_id: uuid.UUID,
        page: Optional[Page] = None,
    ) -> Tuple[List[QuestionnaireTemplate], int]:
        """Every template the Company created, drafts included."""
        filters = dict(created_by_org_id=organization_id)
        return (
            self.templates.list(page=page, **filters),
            self.templates.count(**filters),
        )

    # ==========================================================================
    # WRITE
    # ==========================================================================

    def create(self, user: User, data: TemplateCreate,
               background_tasks: Optional[BackgroundTasks] = None) -> QuestionnaireTemplate:
        template = QuestionnaireTemplate(
            name=data.name,
            description=data.description,
            category=data.category,
            version=data.version,
            is_system=False,
            created_by_org_id=user.organization_id,
            created_by_user_id=user.id,
            visibility=TemplateVisibility.DRAFT,
            default_passing_score=data.default_passing_score,
            estimated_minutes=data.estimated_minutes,
            topics=build_topics(data.topics),
            tags=list(data.tags),
        )
        template = self.templates.create(template)
        logger.info(f"Template {template.id} created by company {user.organization_id}")

        self._audit(background_tasks, user, template.id, AuditAction.CREATE,
                    {"name": template.name, "category": template.category.value})
        return template

    def import_template(self, user: User, payload: Union[bytes, str, Dict[str, Any]],
                        background_tasks: Optional[BackgroundTasks] = None) -> QuestionnaireTemplate:
        """
        Creates a draft template from an exported JSON document.

        1. Parse the document (raw JSON or an already decoded object).
        2. Category names are accepted in any case ("ISO27001", "gdpr").
        3. The result goes through the same validation as `create`.
        """
        if isinstance(payload, (bytes, str)):
            try:
                payload = json.loads(payload)
            except ValueError as e:
                raise ValidationFailedError(f"Template file is not valid JSON: {e}") from e

        if not isinstance(payload, dict):
            raise ValidationFailedError("Template file must contain a JSON object.")
        if not payload.get("name") or not payload.get("category"):
            raise ValidationFailedError("Template file needs a name and a category.")

        document = dict(payload)
        document["category"] = str(document["category"]).lower()
        # Exported files carry server-side fields that are not imported
        allowed = set(TemplateCreate.model_fields)
        document = {k: v for k, v in document.items() if k in allowed}

        try:
            data = TemplateCreate.model_validate(document)
        except ValidationError as e:
            first = e.errors()[0]
            location = ".".join(str(part) for part in first["loc"])
            raise ValidationFailedError(f"Invalid template file: {location}: {first['msg']}") from e

        return self.create(user, data, background_tasks)

    def update(self, user: User, template_id: uuid.UUID, data: TemplateUpdate,
               background_tasks: Optional[BackgroundTasks] = None) -> QuestionnaireTemplate:
        template = self._get_owned(user, template_id)

        values = data.model_dump(exclude_unset=True)
        reject_nulls(values, TEMPLATE_REQUIRED_FIELDS)
        if "topics" in values:
            values["topics"] = build_topics(data.topics or [])
            if not values["topics"] and not template.is_draft:
                raise ValidationFailedError("A published template needs at least one topic.")
        if "tags" in values:
            values["tags"] = values["tags"] or []

        if not values:
            return template

        self.templates.update_where(template.id, values)
        self._audit(background_tasks, user, template.id, AuditAction.UPDATE,
                    {"fields": sorted(values.keys())})
        return self.templates.get_by_id(template.id)

    def delete(self, user: User, template_id: uuid.UUID,
               background_tasks: Optional[BackgroundTasks] = None) -> None:
        template = self._get_owned(user, template_id)
        if template.is_in_use:
            raise CannotModifyError("This template is in use and cannot be deleted.")

        deleted = self.templates.delete_where(
            QuestionnaireTemplate.id == template.id,
            QuestionnaireTemplate.usage_count == 0,
        )
        if not deleted:
            raise CannotModifyError("This template is in use and cannot be deleted.")

        logger.info(f"Template {template_id} deleted")
        self._audit(background_tasks, user, template_id, AuditAction.DELETE, {})

    def publish(self, user: User, template_id: uuid.UUID, visibility: TemplateVisibility,
                background_tasks: Optional[BackgroundTasks] = None) -> QuestionnaireTemplate:
        """draft -> local | global. Needs at least one topic."""
        if visibility == TemplateVisibility.DRAFT:
            raise ValidationFailedError("Templates are published either 'local' or 'global'.")

        template = self._get_owned(user, template_id)
        if not template.is_draft:
            raise InvalidTransitionError("This template is already published.")
        if not template.topics:
            raise ValidationFailedError("A template needs at least one topic to be published.")

        updated = self.templates.update_where(
            template.id,
            {"visibility": visibility, "published_at": utcnow()},
            QuestionnaireTemplate.visibility == TemplateVisibility.DRAFT,
        )
        if not updated:
            raise InvalidTransitionError("This template is already published.")

        logger.info(f"Template {template.id} published ({visibility.value})")
        self._audit(background_tasks, user, template.id, AuditAction.STATUS_CHANGE,
                    {"from": "draft", "to": visibility.value})
        return self.templates.get_by_id(template.id)

    def unpublish(self, user: User, template_id: uuid.UUID,
                  background_tasks: Optional[BackgroundTasks] = None) -> QuestionnaireTemplate:
        """local | global -> draft, while nobody has used the template."""
        template = self._get_owned(user, template_id)
        if template.is_draft:
            raise InvalidTransitionError("This template is not published.")
        if template.is_in_use:
            raise CannotModifyError("This template is in use and cannot be unpublished.")

        previous = template.visibility
        updated = self.templates.update_where(
            template.id,
            {"visibility": TemplateVisibility.DRAFT, "published_at": None},
            QuestionnaireTemplate.visibility == previous,
            QuestionnaireTemplate.usage_count == 0,
        )
        if not updated:
            raise CannotModifyError("This template is in use and cannot be unpublished.")

        self._audit(background_tasks, user, template.id, AuditAction.STATUS_CHANGE,
                    {"from": previous.value, "to": "draft"})
        return self.templates.get_by_id(template.id)
