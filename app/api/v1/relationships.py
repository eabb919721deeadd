import uuid
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, status

from app.core.dependencies import (
    get_page, get_relationship_service, get_requirement_service, require_company,
    require_company_admin,
)
from app.db.repository import Page
from app.db.schema import RelationshipStatus, SupplierClassification, User
from app.models.common import PaginatedResponse
from app.models.relationship import (
    RelationshipClassificationUpdate, RelationshipDetailsUpdate, RelationshipInvite,
    RelationshipRead, RelationshipStats, RelationshipStatusChange,
)
from app.models.requirement import RequirementRead
from app.services.relationship import RelationshipService
from app.services.requirement import RequirementService

router = APIRouter()


@router.post(
    "/",
    response_model=RelationshipRead,
    status_code=status.HTTP_201_CREATED,
    summary="Invite a Supplier",
    description=(
        "Creates a pending relationship for the given email and sends an invitation. "
        "Only one open (non-terminated, non-rejected) relationship may exist per email."
    )
)
def invite_supplier(
    data: RelationshipInvite,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: RelationshipService = Depends(get_relationship_service)
):
    return RelationshipRead.model_validate(service.invite(current_user, data, background_tasks))


@router.get(
    "/",
    response_model=PaginatedResponse[RelationshipRead],
    status_code=status.HTTP_200_OK,
    summary="List Relationships",
)
def list_relationships(
    status_filter: Optional[RelationshipStatus] = Query(None, alias="status"),
    classification: Optional[SupplierClassification] = Query(None),
    page: Page = Depends(get_page),
    current_user: User = Depends(require_company),
    service: RelationshipService = Depends(get_relationship_service)
):
    items, total = service.list_for_company(
        current_user.organization_id, status_filter, classification, page)
    return PaginatedResponse[RelationshipRead].build(
        [RelationshipRead.model_validate(r) for r in items], total, page.page, page.limit)


@router.get(
    "/stats",
    response_model=RelationshipStats,
    status_code=status.HTTP_200_OK,
    summary="Relationship KPIs",
    description="Counts per status and per classification."
)
def relationship_stats(
    current_user: User = Depends(require_company),
    service: RelationshipService = Depends(get_relationship_service)
):
    return service.stats(current_user.organization_id)


@router.get(
    "/{relationship_id}",
    response_model=RelationshipRead,
    status_code=status.HTTP_200_OK,
    summary="Get Relationship",
)
def get_relationship(
    relationship_id: uuid.UUID,
    current_user: User = Depends(require_company),
    service: RelationshipService = Depends(get_relationship_service)
):
    return RelationshipRead.model_validate(service.get(current_user, relationship_id))


@router.get(
    "/{relationship_id}/requirements",
    response_model=List[RequirementRead],
    status_code=status.HTTP_200_OK,
    summary="List Requirements of a Relationship",
)
def list_relationship_requirements(
    relationship_id: uuid.UUID,
    current_user: User = Depends(require_company),
    service: RelationshipService = Depends(get_relationship_service),
    requirement_service: RequirementService = Depends(get_requirement_service)
):
    rel = service.get(current_user, relationship_id)
    return [RequirementRead.model_validate(r)
            for r in requirement_service.list_for_relationship(rel.id)]


@router.patch(
    "/{relationship_id}/classification",
    response_model=RelationshipRead,
    status_code=status.HTTP_200_OK,
    summary="Change Classification",
    description="Not allowed once the relationship is terminated or rejected."
)
def update_classification(
    relationship_id: uuid.UUID,
    data: RelationshipClassificationUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: RelationshipService = Depends(get_relationship_service)
):
    rel = service.update_classification(
        current_user, relationship_id, data.classification, background_tasks)
    return RelationshipRead.model_validate(rel)


@router.patch(
    "/{relationship_id}",
    response_model=RelationshipRead,
    status_code=status.HTTP_200_OK,
    summary="Update Relationship Details",
    description="Notes, services provided and contract reference."
)
def update_details(
    relationship_id: uuid.UUID,
    data: RelationshipDetailsUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_company_admin),
    service: RelationshipService = Depends(get_relationship_service)
):
    rel = service.update_details(current_user, relationship_id, data, background_tasks)
    return RelationshipRead.model_validate(rel)


# ==============================================================================
# STATUS CHANGES
# ==============================================================================


@router.post(
    "/{relationship_id}/suspend",
    response_model=RelationshipRead,
    status_code=status.HTTP_200_OK,
    summary="Suspend Relationship",
    description="active -> suspended. Suspended suppliers cannot receive new requirements."
)
def suspend_relationship(
    relationship_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    data: RelationshipStatusChange = RelationshipStatusChange(),
    current_user: User = Depends(require_company_admin),
    service: RelationshipService = Depends(get_relationship_service)
):
    rel = service.suspend(current_user, relationship_id, data.reason, background_tasks)
    return RelationshipRead.model_validate(rel)


@router.post(
    "/{relationship_id}/reactivate",
    response_model=RelationshipRead,
    status_code=status.HTTP_200_OK,
    summary="Reactivate Relationship",
    description="suspended -> active."
)
def reactivate_relationship(
    relationship_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    data: RelationshipStatusChange = RelationshipStatusChange(),
    current_user: User = Depends(require_company_admin),
    service: RelationshipService = Depends(get_relationship_service)
):
    rel = service.reactivate(current_user, relationship_id, data.reason, background_tasks)
    return RelationshipRead.model_validate(rel)


@router.post(
    "/{relationship_id}/terminate",
    response_model=RelationshipRead,
    status_code=status.HTTP_200_OK,
    summary="Terminate Relationship",
    description="active | suspended -> terminated. Terminal: no further changes are possible."
)
def terminate_relationship(
    relationship_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    data: RelationshipStatusChange = RelationshipStatusChange(),
    current_user: User = Depends(require_company_admin),
    service: RelationshipService = Depends(get_relationship_service)
):
    rel = service.terminate(current_user, relationship_id, data.reason, background_tasks)
    return RelationshipRead.model_validate(rel)
