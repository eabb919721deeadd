import uuid
from typing import Optional, Tuple

from fastapi import BackgroundTasks
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session

from app.core.audit import record_audit
from app.core.config import settings
from app.core.errors import UnauthorizedError, NotFoundError
from app.core.security import REFRESH_TOKEN, create_token_pair, decode_token
from app.db.repository import Repository
from app.db.schema import AuditAction, Organization, SecureLinkType, User
from app.models.auth import Token
from app.services.mail import MailDeliveryError, MailService
from app.services.secure_link import TokenIssuer
from app.utils.dates import utcnow


class AuthService:
    """
    Passwordless login: a magic link is mailed, redeemed once, and traded
    for an access/refresh JWT pair.
    """

    def __init__(self, session: Session, mail: Optional[MailService] = None):
        self.session = session
        self.users = Repository(session, User)
        self.organizations = Repository(session, Organization)
        self.issuer = TokenIssuer(session)
        self.mail = mail or MailService()

    @staticmethod
    def build_magic_link_url(identifier: str) -> str:
        return f"{settings.magic_link_base_url.rstrip('/')}/auth/verify/{identifier}"

    def get_user_by_email(self, email: str) -> Optional[User]:
        return self.users.get_by(email=email.strip().lower())

    def load_active_context(self, user_id: uuid.UUID) -> Tuple[User, Organization]:
        user = self.users.get_by_id(user_id)
        if user is None or user.is_deleted or not user.is_active:
            raise UnauthorizedError()

        organization = self.organizations.get_by_id(user.organization_id)
        if organization is None or organization.is_deleted:
            raise UnauthorizedError()

        return user, organization

    # ==========================================================================
    # MAGIC LINK
    # ==========================================================================

    def request_magic_link(
        self,
        email: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        """
        Mails a login link if the email belongs to an active user.

        Returns silently for unknown or disabled accounts so callers cannot
        tell which addresses exist. Only RateLimitExceededError escapes.
        """
        email = email.strip().lower()

        # 1. Rate limit counts every request for the address
        self.issuer.check_rate_limit(email)

        # 2. Resolve the account
        user = self.get_user_by_email(email)
        if user is None or user.is_deleted or not user.is_active:
            logger.info(f"Magic link requested for unknown or inactive account {email}")
            return

        organization = self.organizations.get_by_id(user.organization_id)
        if organization is None or organization.is_deleted:
            logger.info(f"Magic link requested for {email} of a missing organization")
            return

        # 3. Issue and deliver
        link = self.issuer.issue(
            email,
            SecureLinkType.AUTH,
            user_id=user.id,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        try:
            self.mail.send_magic_link(
                email, user.name, self.build_magic_link_url(link.secure_identifier))
        except MailDeliveryError:
            logger.exception(f"Magic link email to {email} could not be delivered")

    def verify_magic_link(
        self,
        identifier: str,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Tuple[Token, User, Organization]:
        link = self.issuer.redeem(identifier)

        if link.user_id is None:
            raise NotFoundError("User not found.", code="user_not_found")

        user = self.users.get_by_id(link.user_id)
        if user is None or user.is_deleted:
            raise NotFoundError("User not found.", code="user_not_found")
        if not user.is_active:
            raise UnauthorizedError("User is inactive.", code="user_inactive")

        organization = self.organizations.get_by_id(user.organization_id)
        if organization is None or organization.is_deleted:
            raise NotFoundError("Organization not found.", code="organization_not_found")

        # Stamping the login time must not block the login itself
        try:
            self.users.update_where(user.id, {"last_login_at": utcnow()})
        except SQLAlchemyError:
            self.session.rollback()
            logger.warning(f"Could not update last login for user {user.id}", exc_info=True)

        tokens = create_token_pair(user, organization)
        logger.info(f"User {user.id} signed in via magic link")

        record_audit(
            background_tasks,
            organization_id=organization.id,
            user_id=user.id,
            entity_type="User",
            entity_id=user.id,
            action=AuditAction.LOGIN,
            changes={"method": "magic_link", "link_id": str(link.id)},
        )

        self.session.refresh(user)
        return tokens, user, organization

    # ==========================================================================
    # SESSION TOKENS
    # ==========================================================================

    def refresh(self, refresh_token: str) -> Token:
        token_data = decode_token(refresh_token, expected_type=REFRESH_TOKEN)
        user, organization = self.load_active_context(token_data.user_id)
        return create_token_pair(user, organization)

    def logout(self, user: User) -> None:
        # Tokens are stateless; the client discards them
        logger.info(f"User {user.id} logged out")

    def get_user_context(self, user_id: uuid.UUID) -> Tuple[User, Organization]:
        user = self.users.get_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found.", code="user_not_found")
        organization = self.organizations.get_by_id(user.organization_id)
        if organization is None:
            raise NotFoundError("Organization not found.", code="organization_not_found")
        return user, organization
