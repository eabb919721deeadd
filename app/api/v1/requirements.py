import uuid
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.core.dependencies import (
    get_page, get_requirement_service, get_review_service, require_company,
    require_company_admin,
)
from app.db.repository import Page
from app.db.schema import RequirementPriority, RequirementStatus, RequirementType, User
from app.models.common import PaginatedResponse
from app.models.requirement import (
    RequirementCreate, RequirementRead, RequirementStats, RequirementUpdate,
    ReviewApprove, ReviewDecision,
)
from app.models.response import ResponseRead, SubmissionRead, SubmissionReview
from app.services.requirement import RequirementService
from app.services.review import ReviewService

router = APIRouter()


@router.post(
    "/",
    response_model=RequirementRead,
    status_code=status.HTTP_201_CREATED,
    summary="Assign Requirement",
    description=(
        "Assigns a questionnaire or document requirement to a Supplier through an "
        "active relationship. Questionnaires must be published."
    )
)
def create_requirement(
    data: RequirementCreate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: RequirementService = Depends(get_requirement_service)
):
    return RequirementRead.model_validate(service.create(current_user, data, background_tasks))


@router.get(
    "/",
    response_model=PaginatedResponse[RequirementRead],
    status_code=status.HTTP_200_OK,
    summary="List Requirements",
)
def list_requirements(
    status_filter: Optional[RequirementStatus] = Query(None, alias="status"),
    type_filter: Optional[RequirementType] = Query(None, alias="type"),
    priority: Optional[RequirementPriority] = Query(None),
    page: Page = Depends(get_page),
    current_user: User = Depends(require_company),
    service: RequirementService = Depends(get_requirement_service)
):
    items, total = service.list_for_company(
        current_user.organization_id, status_filter, type_filter, priority, page)
    return PaginatedResponse[RequirementRead].build(
        [RequirementRead.model_validate(r) for r in items], total, page.page, page.limit)


@router.get(
    "/stats",
    response_model=RequirementStats,
    status_code=status.HTTP_200_OK,
    summary="Requirement KPIs",
    description="Counts per status and the number of overdue open requirements."
)
def requirement_stats(
    current_user: User = Depends(require_company),
    service: RequirementService = Depends(get_requirement_service)
):
    return service.stats(current_user.organization_id)


@router.get(
    "/{requirement_id}",
    response_model=RequirementRead,
    status_code=status.HTTP_200_OK,
    summary="Get Requirement",
)
def get_requirement(
    requirement_id: uuid.UUID,
    current_user: User = Depends(require_company),
    service: RequirementService = Depends(get_requirement_service)
):
    return RequirementRead.model_validate(
        service.get_for_company(requirement_id, current_user.organization_id))


@router.patch(
    "/{requirement_id}",
    response_model=RequirementRead,
    status_code=status.HTTP_200_OK,
    summary="Update Requirement",
    description="Terms can only be changed while the requirement is pending."
)
def update_requirement(
    requirement_id: uuid.UUID,
    data: RequirementUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: RequirementService = Depends(get_requirement_service)
):
    return RequirementRead.model_validate(
        service.update(current_user, requirement_id, data, background_tasks))


# ==============================================================================
# REVIEW
# ==============================================================================


@router.get(
    "/{requirement_id}/submission",
    response_model=SubmissionReview,
    status_code=status.HTTP_200_OK,
    summary="Get Submission for Review",
    description="The Supplier's response, its scored submission and the effective score."
)
def get_submission(
    requirement_id: uuid.UUID,
    current_user: User = Depends(require_company),
    service: ReviewService = Depends(get_review_service)
):
    response, submission = service.get_submission_for_review(current_user, requirement_id)
    return SubmissionReview(
        response=ResponseRead.model_validate(response),
        submission=SubmissionRead.model_validate(submission) if submission else None,
        effective_score=service.effective_score(response, submission),
    )


@router.post(
    "/{requirement_id}/approve",
    response_model=RequirementRead,
    status_code=status.HTTP_200_OK,
    summary="Approve Requirement",
    description="submitted -> approved. Notes, grade and score override are optional."
)
def approve_requirement(
    requirement_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    data: ReviewApprove = ReviewApprove(),
    current_user: User = Depends(require_company_admin),
    service: ReviewService = Depends(get_review_service)
):
    requirement = service.approve(
        current_user, requirement_id, data.notes, data.score_override, data.grade,
        background_tasks)
    return RequirementRead.model_validate(requirement)


@router.post(
    "/{requirement_id}/reject",
    response_model=RequirementRead,
    status_code=status.HTTP_200_OK,
    summary="Reject Requirement",
    description="submitted -> rejected. A reason is required. Terminal."
)
def reject_requirement(
    requirement_id: uuid.UUID,
    data: ReviewDecision,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: ReviewService = Depends(get_review_service)
):
    requirement = service.reject(
        current_user, requirement_id, data.reason, data.score_override, data.grade,
        background_tasks)
    return RequirementRead.model_validate(requirement)


@router.post(
    "/{requirement_id}/request-revision",
    response_model=RequirementRead,
    status_code=status.HTTP_200_OK,
    summary="Request Revision",
    description="submitted -> revision_requested. A reason is required; the Supplier can start again."
)
def request_revision(
    requirement_id: uuid.UUID,
    data: ReviewDecision,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: ReviewService = Depends(get_review_service)
):
    requirement = service.request_revision(
        current_user, requirement_id, data.reason, background_tasks)
    return RequirementRead.model_validate(requirement)
