import secrets
import uuid
from datetime import datetime, timedelta
from typing import Optional

from loguru import logger
from sqlalchemy import update
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, col

from app.core.config import settings
from app.core.errors import (
    AlreadyUsedError, ExpiredError, InvalidLinkError, LinkNotFoundError,
    RateLimitExceededError,
)
from app.db.repository import Repository
from app.db.schema import SecureLink, SecureLinkType
from app.utils.dates import utcnow


def generate_secure_identifier() -> str:
    """64 hex characters from 32 random bytes."""
    return secrets.token_hex(32)


class TokenIssuer:
    """
    Issues and redeems single-use secure links (magic links, invitations).

    A link is usable iff `is_valid and used_at is None and now < expires_at`.
    Redemption flips both flags in one conditional update, so at most one
    caller can ever redeem a given identifier.
    """

    def __init__(
        self,
        session: Session,
        rate_limit_count: Optional[int] = None,
        rate_limit_window_minutes: Optional[int] = None,
    ):
        self.session = session
        self.links = Repository(session, SecureLink)
        self.rate_limit_count = rate_limit_count or settings.magic_link_rate_limit_count
        self.rate_limit_window_minutes = (
            rate_limit_window_minutes or settings.magic_link_rate_limit_window_minutes
        )

    @staticmethod
    def default_validity(link_type: SecureLinkType) -> timedelta:
        if link_type == SecureLinkType.INVITATION:
            return timedelta(minutes=settings.invitation_expire_minutes)
        return timedelta(minutes=settings.magic_link_expire_minutes)

    # ==========================================================================
    # ISSUANCE
    # ==========================================================================

    def count_recent(self, email: str, window_minutes: Optional[int] = None,
                     now: Optional[datetime] = None) -> int:
        since = (now or utcnow()) - timedelta(
            minutes=window_minutes or self.rate_limit_window_minutes)
        return self.links.count(
            SecureLink.email == email,
            col(SecureLink.created_at) >= since,
        )

    def check_rate_limit(self, email: str, now: Optional[datetime] = None):
        if self.count_recent(email, now=now) >= self.rate_limit_count:
            logger.warning(f"Magic link rate limit reached for {email}")
            raise RateLimitExceededError()

    def invalidate_all_for_email(self, email: str,
                                 link_type: SecureLinkType = SecureLinkType.AUTH) -> int:
        """Clears `is_valid` on every still-valid link of this type for the email."""
        statement = (
            update(SecureLink)
            .where(
                SecureLink.email == email,
                SecureLink.type == link_type,
                SecureLink.is_valid == True,  # noqa: E712
            )
            .values(is_valid=False)
        )
        result = self.session.connection().execute(statement)
        self.session.commit()
        return result.rowcount

    def issue(
        self,
        email: str,
        link_type: SecureLinkType = SecureLinkType.AUTH,
        user_id: Optional[uuid.UUID] = None,
        relationship_id: Optional[uuid.UUID] = None,
        validity: Optional[timedelta] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> SecureLink:
        """
        Creates a new link for `email`.

        1. Rate limit: too many links in the trailing window fails before
           anything is written.
        2. Auth links supersede every older valid auth link for the email.
           This is best effort; a failure is logged and issuance continues.
        3. The identifier is generated and the link persisted.
        """
        email = email.strip().lower()
        now = now or utcnow()

        self.check_rate_limit(email, now=now)

        if link_type == SecureLinkType.AUTH:
            try:
                self.invalidate_all_for_email(email, SecureLinkType.AUTH)
            except SQLAlchemyError:
                self.session.rollback()
                logger.warning(
                    f"Could not invalidate previous auth links for {email}", exc_info=True)

        link = SecureLink(
            secure_identifier=generate_secure_identifier(),
            type=link_type,
            email=email,
            user_id=user_id,
            relationship_id=relationship_id,
            expires_at=now + (validity or self.default_validity(link_type)),
            is_valid=True,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=now,
        )
        link = self.links.create(link)
        logger.info(f"Issued {link_type.value} link {link.id} for {email}")
        return link

    # ==========================================================================
    # REDEMPTION
    # ==========================================================================

    def get_by_identifier(self, identifier: str) -> Optional[SecureLink]:
        return self.links.get_by(secure_identifier=identifier)

    def redeem(self, identifier: str, now: Optional[datetime] = None) -> SecureLink:
        """
        Consumes a link. The checks run in a fixed order: missing, expired
        (whatever the other flags say), already used, otherwise invalid.
        """
        now = now or utcnow()
        link = self.get_by_identifier(identifier)

        if link is None:
            raise LinkNotFoundError()
        if link.is_expired(now):
            raise ExpiredError()
        if link.is_used:
            raise AlreadyUsedError()
        if not link.is_valid:
            raise InvalidLinkError()

        marked = self.links.update_where(
            link.id,
            {"used_at": now, "is_valid": False},
            SecureLink.is_valid == True,  # noqa: E712
            col(SecureLink.used_at).is_(None),
        )
        if not marked:
            # Lost the race against a concurrent redemption
            raise AlreadyUsedError()

        logger.info(f"Redeemed {link.type.value} link {link.id}")
        return self.links.get_by_id(link.id)

    # ==========================================================================
    # RETENTION
    # ==========================================================================

    def purge_expired(self, now: Optional[datetime] = None) -> int:
        """Deletes links past their expiry, used or not."""
        deleted = self.links.delete_where(col(SecureLink.expires_at) < (now or utcnow()))
        logger.info(f"Purged {deleted} expired secure links")
        return deleted
