import uuid
from datetime import timedelta

import jwt
from jwt.exceptions import InvalidTokenError

from app.core.config import settings
from app.core.errors import UnauthorizedError
from app.db.schema import Organization, User
from app.models.auth import Token, TokenData
from app.utils.dates import utcnow

ALGORITHM = "HS256"
ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


def _create_jwt(user: User, organization: Organization, expires_delta: timedelta, type: str) -> str:
    """Helper to sign JWTs with specific types."""
    now = utcnow()
    to_encode = {
        "sub": str(user.id),
        "org": str(organization.id),
        "role": user.role.value,
        "org_type": organization.type.value,
        "type": type,
        "iat": now,
        "exp": now + expires_delta,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=ALGORITHM)


def create_token_pair(user: User, organization: Organization) -> Token:
    access_delta = timedelta(minutes=settings.access_token_expire_minutes)
    refresh_delta = timedelta(minutes=settings.refresh_token_expire_minutes)
    return Token(
        access_token=_create_jwt(user, organization, access_delta, ACCESS_TOKEN),
        refresh_token=_create_jwt(user, organization, refresh_delta, REFRESH_TOKEN),
        expires_in=int(access_delta.total_seconds()),
    )


def decode_token(token: str, expected_type: str = ACCESS_TOKEN) -> TokenData:
    """
    Verifies signature, expiry and token type.
    Any failure is reported as UnauthorizedError.
    """
    try:
        payload = jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except InvalidTokenError:
        raise UnauthorizedError()

    if payload.get("type") != expected_type:
        raise UnauthorizedError()

    try:
        return TokenData(
            user_id=uuid.UUID(payload["sub"]),
            organization_id=uuid.UUID(payload["org"]),
            role=payload["role"],
            organization_type=payload["org_type"],
        )
    except (KeyError, ValueError):
        raise UnauthorizedError()
