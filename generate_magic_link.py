"""
Generates a magic link without sending any email (development use).

    python generate_magic_link.py --email admin@company.example.com
    python generate_magic_link.py --email ops@supplier.example.com --type invitation \
        --relationship-id 6f1c...
"""
import argparse
import uuid

from loguru import logger
from sqlmodel import Session

from app.core.config import settings
from app.core.errors import DomainError
from app.db.core import engine, init_db
from app.db.repository import Repository
from app.db.schema import (
    Organization, RelationshipStatus, SecureLinkType, SupplierRelationship, User,
)
from app.services.secure_link import TokenIssuer


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generates a single-use magic link for a user (development use).")
    parser.add_argument("--email", required=True, help="User email to generate the link for.")
    parser.add_argument(
        "--base-url",
        default=None,
        help="Frontend base URL. Defaults to MAGIC_LINK_BASE_URL.",
    )
    parser.add_argument(
        "--type",
        choices=[t.value for t in SecureLinkType],
        default=SecureLinkType.AUTH.value,
        help="Link type (default: auth).",
    )
    parser.add_argument(
        "--relationship-id",
        type=uuid.UUID,
        default=None,
        help="Pending relationship the invitation link belongs to (invitation links only).",
    )
    return parser


def generate(session: Session, email: str, link_type: SecureLinkType,
             relationship_id=None, base_url=None) -> str:
    """
    1. Auth links need an active user of a live organization.
    2. Invitation links need a pending relationship invited at this address.
    3. The link is issued through the regular TokenIssuer (rate limit included).
    """
    email = email.strip().lower()
    users = Repository(session, User)
    user = users.get_by(email=email)

    if link_type == SecureLinkType.AUTH:
        if user is None or user.is_deleted:
            raise SystemExit(f"Error: no user found with email '{email}'")
        if not user.is_active:
            raise SystemExit(f"Error: user '{email}' is inactive")
        organization = Repository(session, Organization).get_by_id(user.organization_id)
        if organization is None or organization.is_deleted:
            raise SystemExit(f"Error: organization not found for user '{email}'")
    else:
        if relationship_id is None:
            raise SystemExit("Error: --relationship-id is required for invitation links")
        rel = Repository(session, SupplierRelationship).get_by_id(relationship_id)
        if rel is None or rel.invited_email != email:
            raise SystemExit(f"Error: no invitation for '{email}' in relationship {relationship_id}")
        if rel.status != RelationshipStatus.PENDING:
            raise SystemExit(f"Error: relationship {relationship_id} is {rel.status.value}")

    link = TokenIssuer(session).issue(
        email,
        link_type,
        user_id=user.id if user else None,
        relationship_id=relationship_id,
    )

    base_url = (base_url or settings.magic_link_base_url).rstrip("/")
    url = f"{base_url}/auth/verify/{link.secure_identifier}"

    print()
    print("=== Magic Link Generated ===")
    print(f"  Email:   {email}")
    print(f"  Type:    {link_type.value}")
    print(f"  Expires: {link.expires_at.isoformat()}Z")
    print()
    print(url)
    print()
    return url


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    init_db()

    with Session(engine) as session:
        try:
            generate(
                session,
                args.email,
                SecureLinkType(args.type),
                relationship_id=args.relationship_id,
                base_url=args.base_url,
            )
        except DomainError as e:
            logger.error(f"Could not generate link: {e.message}")
            return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
