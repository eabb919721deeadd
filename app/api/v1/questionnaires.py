import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status

from app.core.dependencies import (
    get_page, get_questionnaire_service, require_company, require_company_admin,
)
from app.db.repository import Page
from app.db.schema import QuestionnaireStatus, User
from app.models.common import PaginatedResponse
from app.models.questionnaire import (
    QuestionCreate, QuestionnaireCreate, QuestionnaireDetail, QuestionnaireRead,
    QuestionnaireUpdate, QuestionRead, QuestionUpdate,
)
from app.services.questionnaire import QuestionnaireService

router = APIRouter()


def _detail(service: QuestionnaireService, questionnaire) -> QuestionnaireDetail:
    detail = QuestionnaireDetail.model_validate(questionnaire)
    detail.questions = [QuestionRead.model_validate(q)
                        for q in service.list_questions(questionnaire.id)]
    return detail


@router.post(
    "/",
    response_model=QuestionnaireRead,
    status_code=status.HTTP_201_CREATED,
    summary="Create Questionnaire",
    description="Creates a draft questionnaire. Questions are added separately."
)
def create_questionnaire(
    data: QuestionnaireCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    return QuestionnaireRead.model_validate(service.create(current_user, data, background_tasks))


@router.get(
    "/",
    response_model=PaginatedResponse[QuestionnaireRead],
    status_code=status.HTTP_200_OK,
    summary="List Questionnaires",
)
def list_questionnaires(
    status_filter: Optional[QuestionnaireStatus] = Query(None, alias="status"),
    page: Page = Depends(get_page),
    current_user: User = Depends(require_company),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    items, total = service.list(current_user.organization_id, status_filter, page)
    return PaginatedResponse[QuestionnaireRead].build(
        [QuestionnaireRead.model_validate(q) for q in items], total, page.page, page.limit)


@router.get(
    "/{questionnaire_id}",
    response_model=QuestionnaireDetail,
    status_code=status.HTTP_200_OK,
    summary="Get Questionnaire",
    description="Questionnaire with its questions in display order."
)
def get_questionnaire(
    questionnaire_id: uuid.UUID,
    current_user: User = Depends(require_company),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    return _detail(service, service.get(current_user.organization_id, questionnaire_id))


@router.patch(
    "/{questionnaire_id}",
    response_model=QuestionnaireRead,
    status_code=status.HTTP_200_OK,
    summary="Update Questionnaire",
    description="Draft questionnaires only."
)
def update_questionnaire(
    questionnaire_id: uuid.UUID,
    data: QuestionnaireUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    questionnaire = service.update(current_user, questionnaire_id, data, background_tasks)
    return QuestionnaireRead.model_validate(questionnaire)


@router.delete(
    "/{questionnaire_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Questionnaire",
    description="Draft questionnaires only. Removes its questions too."
)
def delete_questionnaire(
    questionnaire_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    service.delete(current_user, questionnaire_id, background_tasks)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/{questionnaire_id}/publish",
    response_model=QuestionnaireRead,
    status_code=status.HTTP_200_OK,
    summary="Publish Questionnaire",
    description="draft -> published. Needs at least one question. Published questionnaires can be assigned."
)
def publish_questionnaire(
    questionnaire_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    return QuestionnaireRead.model_validate(
        service.publish(current_user, questionnaire_id, background_tasks))


@router.post(
    "/{questionnaire_id}/archive",
    response_model=QuestionnaireRead,
    status_code=status.HTTP_200_OK,
    summary="Archive Questionnaire",
    description="published -> archived."
)
def archive_questionnaire(
    questionnaire_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    return QuestionnaireRead.model_validate(
        service.archive(current_user, questionnaire_id, background_tasks))


# ==============================================================================
# QUESTIONS
# ==============================================================================


@router.post(
    "/{questionnaire_id}/questions",
    response_model=QuestionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Add Question",
)
def add_question(
    questionnaire_id: uuid.UUID,
    data: QuestionCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    return QuestionRead.model_validate(
        service.add_question(current_user, questionnaire_id, data, background_tasks))


@router.patch(
    "/{questionnaire_id}/questions/{question_id}",
    response_model=QuestionRead,
    status_code=status.HTTP_200_OK,
    summary="Update Question",
)
def update_question(
    questionnaire_id: uuid.UUID,
    question_id: uuid.UUID,
    data: QuestionUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    return QuestionRead.model_validate(service.update_question(
        current_user, questionnaire_id, question_id, data, background_tasks))


@router.delete(
    "/{questionnaire_id}/questions/{question_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Question",
)
def delete_question(
    questionnaire_id: uuid.UUID,
    question_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: QuestionnaireService = Depends(get_questionnaire_service)
):
    service.delete_question(current_user, questionnaire_id, question_id, background_tasks)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
