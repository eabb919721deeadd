import uuid
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.core.dependencies import (
    get_page, get_relationship_service, get_requirement_service, get_response_service,
    require_supplier, require_supplier_admin,
)
from app.db.repository import Page
from app.db.schema import RelationshipStatus, RequirementStatus, User
from app.models.common import PaginatedResponse
from app.models.relationship import InvitationRead, RelationshipRead, RelationshipStatusChange
from app.models.requirement import RequirementRead
from app.models.response import (
    DocumentSubmit, DraftAnswers, ResponseRead, SubmissionRead, SubmitAnswers,
)
from app.services.relationship import RelationshipService
from app.services.requirement import RequirementService
from app.services.response import ResponseService

router = APIRouter()

# ==============================================================================
# INVITATIONS
# ==============================================================================


@router.get(
    "/invitations",
    response_model=List[InvitationRead],
    status_code=status.HTTP_200_OK,
    summary="List Pending Invitations",
    description="Pending invitations sent to the caller's email address."
)
def list_invitations(
    current_user: User = Depends(require_supplier),
    service: RelationshipService = Depends(get_relationship_service)
):
    return service.list_pending_invitations(current_user.email)


@router.post(
    "/invitations/{relationship_id}/accept",
    response_model=RelationshipRead,
    status_code=status.HTTP_200_OK,
    summary="Accept Invitation",
    description="pending -> active. Links the caller's organization as the Supplier."
)
def accept_invitation(
    relationship_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_supplier_admin),
    service: RelationshipService = Depends(get_relationship_service)
):
    return RelationshipRead.model_validate(
        service.accept(current_user, relationship_id, background_tasks))


@router.post(
    "/invitations/{relationship_id}/decline",
    response_model=RelationshipRead,
    status_code=status.HTTP_200_OK,
    summary="Decline Invitation",
    description="pending -> rejected. Terminal."
)
def decline_invitation(
    relationship_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    data: RelationshipStatusChange = RelationshipStatusChange(),
    current_user: User = Depends(require_supplier_admin),
    service: RelationshipService = Depends(get_relationship_service)
):
    return RelationshipRead.model_validate(
        service.decline(current_user, relationship_id, data.reason, background_tasks))


@router.get(
    "/relationships",
    response_model=PaginatedResponse[RelationshipRead],
    status_code=status.HTTP_200_OK,
    summary="List my Customers",
)
def list_relationships(
    status_filter: Optional[RelationshipStatus] = Query(None, alias="status"),
    page: Page = Depends(get_page),
    current_user: User = Depends(require_supplier),
    service: RelationshipService = Depends(get_relationship_service)
):
    items, total = service.list_for_supplier(current_user.organization_id, status_filter, page)
    return PaginatedResponse[RelationshipRead].build(
        [RelationshipRead.model_validate(r) for r in items], total, page.page, page.limit)


# ==============================================================================
# REQUIREMENTS & RESPONSES
# ==============================================================================


@router.get(
    "/requirements",
    response_model=PaginatedResponse[RequirementRead],
    status_code=status.HTTP_200_OK,
    summary="List my Requirements",
)
def list_requirements(
    status_filter: Optional[RequirementStatus] = Query(None, alias="status"),
    page: Page = Depends(get_page),
    current_user: User = Depends(require_supplier),
    service: RequirementService = Depends(get_requirement_service)
):
    items, total = service.list_for_supplier(current_user.organization_id, status_filter, page)
    return PaginatedResponse[RequirementRead].build(
        [RequirementRead.model_validate(r) for r in items], total, page.page, page.limit)


@router.get(
    "/requirements/{requirement_id}",
    response_model=RequirementRead,
    status_code=status.HTTP_200_OK,
    summary="Get Requirement",
)
def get_requirement(
    requirement_id: uuid.UUID,
    current_user: User = Depends(require_supplier),
    service: RequirementService = Depends(get_requirement_service)
):
    return RequirementRead.model_validate(
        service.get_for_supplier(requirement_id, current_user.organization_id))


@router.post(
    "/requirements/{requirement_id}/start",
    response_model=ResponseRead,
    status_code=status.HTTP_200_OK,
    summary="Start Requirement",
    description=(
        "pending | revision_requested -> in_progress. Returns the response to fill in; "
        "calling it again while in progress returns the same response."
    )
)
def start_requirement(
    requirement_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_supplier_admin),
    service: ResponseService = Depends(get_response_service)
):
    return ResponseRead.model_validate(
        service.start_response(current_user, requirement_id, background_tasks))


@router.put(
    "/responses/{response_id}/draft",
    response_model=ResponseRead,
    status_code=status.HTTP_200_OK,
    summary="Save Draft Answers",
    description="Merges the given answers into the draft, keyed by question."
)
def save_draft(
    response_id: uuid.UUID,
    data: DraftAnswers,
    current_user: User = Depends(require_supplier_admin),
    service: ResponseService = Depends(get_response_service)
):
    return ResponseRead.model_validate(
        service.save_draft_answers(current_user, response_id, data.answers))


@router.post(
    "/responses/{response_id}/submit",
    response_model=SubmissionRead,
    status_code=status.HTTP_201_CREATED,
    summary="Submit Questionnaire",
    description="Scores the answers and moves the requirement to submitted."
)
def submit_questionnaire(
    response_id: uuid.UUID,
    data: SubmitAnswers,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_supplier_admin),
    service: ResponseService = Depends(get_response_service)
):
    submission, _, _ = service.submit_questionnaire_response(
        current_user, response_id, data.answers, background_tasks)
    return SubmissionRead.model_validate(submission)


@router.post(
    "/responses/{response_id}/submit-document",
    response_model=ResponseRead,
    status_code=status.HTTP_200_OK,
    summary="Submit Document Result",
    description="Self-reported grade and report date for a document requirement."
)
def submit_document(
    response_id: uuid.UUID,
    data: DocumentSubmit,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_supplier_admin),
    service: ResponseService = Depends(get_response_service)
):
    response, _ = service.submit_document_response(
        current_user, response_id, data, background_tasks)
    return ResponseRead.model_validate(response)
