from fastapi import APIRouter, BackgroundTasks, Depends, Request, status
from loguru import logger

from app.core.dependencies import get_auth_service, get_current_context, get_current_user
from app.core.errors import InvalidLinkError
from app.services.auth import AuthService
from app.db.schema import User
from app.models.auth import (
    AuthResponse, MagicLinkRequest, MagicLinkVerify, MessageResponse, Token, TokenRefresh,
    UserContext,
)
from app.models.organization import OrganizationRead, UserRead


router = APIRouter()

MAGIC_LINK_SENT = "If an account exists for this email, a login link has been sent."


@router.post(
    "/magic-link",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Request a login link",
    description=(
        "Mails a single-use login link. The response is the same whether or not "
        "the address belongs to an account. Limited to a few requests per hour per address."
    )
)
def request_magic_link(
    data: MagicLinkRequest,
    request: Request,
    service: AuthService = Depends(get_auth_service)
):
    """
    1. Rate limit (429 is the only distinguishable outcome).
    2. Silent no-op for unknown or inactive accounts.
    3. Issues the link and mails it.
    """
    service.request_magic_link(
        data.email,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return MessageResponse(message=MAGIC_LINK_SENT)


@router.post(
    "/verify",
    response_model=AuthResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify a login link",
    description="Redeems the link once and returns an access/refresh token pair."
)
def verify_magic_link(
    data: MagicLinkVerify,
    background_tasks: BackgroundTasks,
    service: AuthService = Depends(get_auth_service)
):
    try:
        tokens, user, organization = service.verify_magic_link(data.token, background_tasks)
    except InvalidLinkError as e:
        # Missing, expired and used links look the same to the caller
        logger.info(f"Magic link verification failed: {e.code}")
        raise InvalidLinkError()

    return AuthResponse(
        tokens=tokens,
        user=UserRead.model_validate(user),
        organization=OrganizationRead.model_validate(organization),
    )


@router.post(
    "/refresh",
    response_model=Token,
    status_code=status.HTTP_200_OK,
    summary="Refresh Session",
    description="Exchanges a valid Refresh Token for a new pair of Access/Refresh tokens."
)
def refresh_token(
    refresh_data: TokenRefresh,
    service: AuthService = Depends(get_auth_service)
):
    """
    1. Validates the signature of the refresh token.
    2. Ensures the token is actually a 'refresh' type (not an access token).
    3. Verifies the user still exists and is active.
    4. Returns a fresh pair of tokens.
    """
    return service.refresh(refresh_data.refresh_token)


@router.post(
    "/logout",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Logout",
    description="Tokens are stateless; the client is expected to discard them."
)
def logout(
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service)
):
    service.logout(current_user)
    return MessageResponse(message="Logged out.")


@router.get(
    "/me",
    response_model=UserContext,
    status_code=status.HTTP_200_OK,
    summary="Get current user",
    description="Returns the authenticated user and their organization."
)
def get_me(context=Depends(get_current_context)):
    user, organization = context
    return UserContext(
        user=UserRead.model_validate(user),
        organization=OrganizationRead.model_validate(organization),
    )
