import uuid
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, Query, Response, status

from app.core.dependencies import (
    get_page, get_questionnaire_service, get_template_service, require_company,
    require_company_admin,
)
from app.db.repository import Page
from app.db.schema import TemplateCategory, User
from app.models.common import PaginatedResponse
from app.models.questionnaire import QuestionnaireRead
from app.models.template import (
    TemplateCreate, TemplateInstantiate, TemplatePublish, TemplateRead, TemplateUpdate,
)
from app.services.questionnaire import QuestionnaireService
from app.services.template import TemplateService

router = APIRouter()


@router.get(
    "/",
    response_model=PaginatedResponse[TemplateRead],
    status_code=status.HTTP_200_OK,
    summary="List Available Templates",
    description="System templates, globally published ones and the company's own published templates."
)
def list_templates(
    category: Optional[TemplateCategory] = Query(None),
    page: Page = Depends(get_page),
    current_user: User = Depends(require_company),
    service: TemplateService = Depends(get_template_service)
):
    items, total = service.list_available(current_user.organization_id, category, page)
    return PaginatedResponse[TemplateRead].build(
        [TemplateRead.model_validate(t) for t in items], total, page.page, page.limit)


# Declared before "/{template_id}" so "mine" is not parsed as an id
@router.get(
    "/mine",
    response_model=PaginatedResponse[TemplateRead],
    status_code=status.HTTP_200_OK,
    summary="List My Templates",
    description="Every template created by the company, drafts included."
)
def list_my_templates(
    page: Page = Depends(get_page),
    current_user: User = Depends(require_company),
    service: TemplateService = Depends(get_template_service)
):
    items, total = service.list_mine(current_user.organization_id, page)
    return PaginatedResponse[TemplateRead].build(
        [TemplateRead.model_validate(t) for t in items], total, page.page, page.limit)


@router.post(
    "/",
    response_model=TemplateRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create Template",
)
def create_template(
    data: TemplateCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: TemplateService = Depends(get_template_service)
):
    return TemplateRead.model_validate(service.create(current_user, data, background_tasks))


@router.post(
    "/import",
    response_model=TemplateRead,
    status_code=status.HTTP_201_CREATED,
    summary="Import Template",
    description="Creates a draft template from an exported template document."
)
def import_template(
    background_tasks: BackgroundTasks,
    document: Dict[str, Any] = Body(...),
    current_user: User = Depends(require_company_admin),
    service: TemplateService = Depends(get_template_service)
):
    return TemplateRead.model_validate(
        service.import_template(current_user, document, background_tasks))


@router.get(
    "/{template_id}",
    response_model=TemplateRead,
    status_code=status.HTTP_200_OK,
    summary="Get Template",
)
def get_template(
    template_id: uuid.UUID,
    current_user: User = Depends(require_company),
    service: TemplateService = Depends(get_template_service)
):
    return TemplateRead.model_validate(service.get(current_user.organization_id, template_id))


@router.patch(
    "/{template_id}",
    response_model=TemplateRead,
    status_code=status.HTTP_200_OK,
    summary="Update Template",
    description="Company templates only; system templates are read-only."
)
def update_template(
    template_id: uuid.UUID,
    data: TemplateUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: TemplateService = Depends(get_template_service)
):
    return TemplateRead.model_validate(
        service.update(current_user, template_id, data, background_tasks))


@router.delete(
    "/{template_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Template",
    description="Only while no questionnaire has been created from it."
)
def delete_template(
    template_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: TemplateService = Depends(get_template_service)
):
    service.delete(current_user, template_id, background_tasks)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{template_id}/publish",
    response_model=TemplateRead,
    status_code=status.HTTP_200_OK,
    summary="Publish Template",
    description="draft -> local (own company) or global (every company). Needs at least one topic."
)
def publish_template(
    template_id: uuid.UUID,
    data: TemplatePublish,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: TemplateService = Depends(get_template_service)
):
    return TemplateRead.model_validate(
        service.publish(current_user, template_id, data.visibility, background_tasks))


@router.post(
    "/{template_id}/unpublish",
    response_model=TemplateRead,
    status_code=status.HTTP_200_OK,
    summary="Unpublish Template",
    description="Back to draft, while no questionnaire has been created from it."
)
def unpublish_template(
    template_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: TemplateService = Depends(get_template_service)
):
    return TemplateRead.model_validate(
        service.unpublish(current_user, template_id, background_tasks))


@router.post(
    "/{template_id}/questionnaires",
    response_model=QuestionnaireRead,
    status_code=status.HTTP_201_CREATED,
    summary="Start Questionnaire From Template",
    description="Creates a draft questionnaire with the template topics and passing score."
)
def instantiate_template(
    template_id: uuid.UUID,
    data: TemplateInstantiate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    questionnaire = service.create_from_template(
        current_user, template_id, data.name, background_tasks)
    return QuestionnaireRead.model_validate(questionnaire)
