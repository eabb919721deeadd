from typing import Optional, Tuple

from fastapi import Depends, Query
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlmodel import Session

from app.core.errors import ForbiddenError, UnauthorizedError
from app.core.security import decode_token
from app.db.core import get_session
from app.db.repository import Page
from app.db.schema import Organization, OrganizationType, User

from app.services.auth import AuthService
from app.services.organization import OrganizationService
from app.services.relationship import RelationshipService
from app.services.questionnaire import QuestionnaireService
from app.services.requirement import RequirementService
from app.services.response import ResponseService
from app.services.review import ReviewService
from app.services.template import TemplateService

# auto_error=False: a missing header is reported with our own 401 body
bearer_scheme = HTTPBearer(auto_error=False)


def get_auth_service(session: Session = Depends(get_session)) -> AuthService:
    """Creates an AuthService instance using the active DB session."""
    return AuthService(session)


def get_organization_service(session: Session = Depends(get_session)) -> OrganizationService:
    return OrganizationService(session)


def get_relationship_service(session: Session = Depends(get_session)) -> RelationshipService:
    return RelationshipService(session)


def get_questionnaire_service(session: Session = Depends(get_session)) -> QuestionnaireService:
    return QuestionnaireService(session)


def get_template_service(session: Session = Depends(get_session)) -> TemplateService:
    return TemplateService(session)


def get_requirement_service(session: Session = Depends(get_session)) -> RequirementService:
    return RequirementService(session)


def get_response_service(
    requirement_service: RequirementService = Depends(get_requirement_service),
) -> ResponseService:
    return ResponseService(requirement_service.session, requirement_service)


def get_review_service(
    requirement_service: RequirementService = Depends(get_requirement_service),
) -> ReviewService:
    return ReviewService(requirement_service.session, requirement_service)


def get_page(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at", max_length=50),
    sort_desc: bool = Query(True),
) -> Page:
    return Page(page=page, limit=limit, sort_by=sort_by, sort_desc=sort_desc)


def get_current_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    service: AuthService = Depends(get_auth_service),
) -> Tuple[User, Organization]:
    """
    Validates the access token and loads the caller.
    This is the gatekeeper for protected routes.
    """
    if credentials is None or not credentials.credentials:
        raise UnauthorizedError()

    # 1. Verify the token
    token_data = decode_token(credentials.credentials)

    # 2. The user and organization must still be active
    user, organization = service.load_active_context(token_data.user_id)
    if organization.id != token_data.organization_id:
        raise UnauthorizedError()

    return user, organization


def get_current_user(
    context: Tuple[User, Organization] = Depends(get_current_context),
) -> User:
    return context[0]


def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise ForbiddenError()
    return user


def require_company(
    context: Tuple[User, Organization] = Depends(get_current_context),
) -> User:
    user, organization = context
    if organization.type != OrganizationType.COMPANY:
        raise ForbiddenError("This action is only available to companies.")
    return user


def require_company_admin(user: User = Depends(require_company)) -> User:
    if not user.is_admin:
        raise ForbiddenError()
    return user


def require_supplier(
    context: Tuple[User, Organization] = Depends(get_current_context),
) -> User:
    user, organization = context
    if organization.type != OrganizationType.SUPPLIER:
        raise ForbiddenError("This action is only available to suppliers.")
    return user


def require_supplier_admin(user: User = Depends(require_supplier)) -> User:
    if not user.is_admin:
        raise ForbiddenError()
    return user
