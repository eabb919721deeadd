from fastapi import APIRouter, BackgroundTasks, Depends, status

from app.core.dependencies import (
    get_current_user, get_organization_service, get_page, require_admin,
)
from app.db.repository import Page
from app.db.schema import User
from app.models.common import PaginatedResponse
from app.models.organization import OrganizationRead, OrganizationUpdate, UserRead
from app.services.organization import OrganizationService

router = APIRouter()


@router.get(
    "/me",
    response_model=OrganizationRead,
    status_code=status.HTTP_200_OK,
    summary="Get my organization",
)
def get_my_organization(
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service)
):
    return OrganizationRead.model_validate(service.get_current(current_user))


@router.patch(
    "/me",
    response_model=OrganizationRead,
    status_code=status.HTTP_200_OK,
    summary="Update my organization",
    description="Partial update of name, domain, contact email or settings. Admins only."
)
def update_my_organization(
    data: OrganizationUpdate,
    background_tasks: BackgroundTasks,
    current_user: User = Depends(require_admin),
    service: OrganizationService = Depends(get_organization_service)
):
    organization = service.update_current(current_user, data, background_tasks)
    return OrganizationRead.model_validate(organization)


@router.get(
    "/me/users",
    response_model=PaginatedResponse[UserRead],
    status_code=status.HTTP_200_OK,
    summary="List organization members",
)
def list_my_users(
    page: Page = Depends(get_page),
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_organization_service)
):
    users, total = service.list_users(current_user, page)
    return PaginatedResponse[UserRead].build(
        [UserRead.model_validate(u) for u in users], total, page.page, page.limit)
