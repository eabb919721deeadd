from uuid import UUID
from sqlmodel import SQLModel, Field
from pydantic import EmailStr, StringConstraints
from typing_extensions import Annotated

from app.db.schema import OrganizationType, UserRole
from app.models.organization import OrganizationRead, UserRead


class Token(SQLModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token lifetime in seconds.")


class TokenRefresh(SQLModel):
    refresh_token: str


class TokenData(SQLModel):
    user_id: UUID
    organization_id: UUID
    role: UserRole
    organization_type: OrganizationType


class MagicLinkRequest(SQLModel):
    email: Annotated[EmailStr, StringConstraints(to_lower=True, strip_whitespace=True)] = Field(
        description="Email address to send the login link to.",
        max_length=255
    )


class MagicLinkVerify(SQLModel):
    token: str = Field(
        min_length=1,
        max_length=128,
        description="The secure identifier from the magic link URL."
    )


class MessageResponse(SQLModel):
    message: str


class AuthResponse(SQLModel):
    """Returned after a successful magic-link verification."""
    tokens: Token
    user: UserRead
    organization: OrganizationRead


class UserContext(SQLModel):
    user: UserRead
    organization: OrganizationRead
