import argparse

from loguru import logger
from sqlmodel import Session, select
from app.db.core import engine, init_db
from app.db.schema import (
    Organization, OrganizationType, QuestionnaireTemplate, TemplateCategory, TemplateVisibility,
    User, UserRole,
)
from app.utils.dates import utcnow


# 1. Default organizations with their first administrator
DEFAULT_ORGANIZATIONS = [
    {
        "type": OrganizationType.COMPANY,
        "name": "Demo Company",
        "slug": "demo-company",
        "domain": "company.example.com",
        "admin": {"email": "admin@company.example.com", "name": "Company Admin"},
    },
    {
        "type": OrganizationType.SUPPLIER,
        "name": "Demo Supplier",
        "slug": "demo-supplier",
        "domain": "supplier.example.com",
        "admin": {"email": "admin@supplier.example.com", "name": "Supplier Admin"},
    },
]


# 2. System questionnaire templates (read-only, visible to every company)
SYSTEM_TEMPLATES = [
    {
        "name": "ISO 27001 Basic Assessment",
        "description": "Essential information security controls based on ISO/IEC 27001.",
        "category": TemplateCategory.ISO27001,
        "default_passing_score": 70,
        "estimated_minutes": 45,
        "topics": [
            ("info-security-policy", "Information Security Policy"),
            ("access-control", "Access Control"),
            ("cryptography", "Cryptography"),
            ("physical-security", "Physical Security"),
            ("operations-security", "Operations Security"),
            ("incident-management", "Incident Management"),
            ("business-continuity", "Business Continuity"),
            ("compliance", "Compliance"),
        ],
    },
    {
        "name": "GDPR Quick Assessment",
        "description": "Short check of the core GDPR obligations of a data processor.",
        "category": TemplateCategory.GDPR,
        "default_passing_score": 75,
        "estimated_minutes": 30,
        "topics": [
            ("data-processing", "Data Processing"),
            ("consent", "Consent"),
            ("individual-rights", "Individual Rights"),
            ("security-measures", "Security Measures"),
            ("third-party-management", "Third Party Management"),
        ],
    },
    {
        "name": "NIS2 Quick Readiness Check",
        "description": "First look at the NIS2 readiness of a supplier.",
        "category": TemplateCategory.NIS2,
        "default_passing_score": 70,
        "estimated_minutes": 30,
        "topics": [
            ("scope-classification", "Scope and Classification"),
            ("basic-security", "Basic Security Measures"),
            ("incident-reporting", "Incident Reporting"),
            ("supply-chain", "Supply Chain Overview"),
            ("management-awareness", "Management Awareness"),
        ],
    },
]


def seed_organization(session: Session, data: dict) -> Organization:
    """Creates the organization if its slug is unknown. Returns it either way."""
    organization = session.exec(
        select(Organization).where(Organization.slug == data["slug"])).first()

    if not organization:
        organization = Organization(
            type=data["type"],
            name=data["name"],
            slug=data["slug"],
            domain=data["domain"],
            contact_email=data["admin"]["email"],
        )
        session.add(organization)
        session.flush()
        logger.info(f"Created Organization: {organization.name} ({organization.type.value})")
    else:
        logger.info(f"Existing Organization: {organization.name}")

    return organization


def seed_admin(session: Session, organization: Organization, email: str, name: str) -> User:
    email = email.strip().lower()
    user = session.exec(select(User).where(User.email == email)).first()

    if not user:
        user = User(
            organization_id=organization.id,
            email=email,
            name=name,
            role=UserRole.ADMIN,
            is_active=True,
        )
        session.add(user)
        logger.info(f"Created Admin: {email} -> {organization.name}")
    elif user.organization_id != organization.id:
        logger.warning(f"User {email} already belongs to another organization, skipped")
    else:
        logger.info(f"Existing Admin: {email}")

    return user


def seed_system_template(session: Session, data: dict) -> QuestionnaireTemplate:
    """System templates are matched by name and never overwritten."""
    template = session.exec(
        select(QuestionnaireTemplate)
        .where(QuestionnaireTemplate.is_system == True)  # noqa: E712
        .where(QuestionnaireTemplate.name == data["name"])).first()

    if template:
        logger.info(f"Existing Template: {template.name}")
        return template

    template = QuestionnaireTemplate(
        name=data["name"],
        description=data["description"],
        category=data["category"],
        is_system=True,
        visibility=TemplateVisibility.GLOBAL,
        default_passing_score=data["default_passing_score"],
        estimated_minutes=data["estimated_minutes"],
        topics=[
            {"id": topic_id, "name": name, "description": None, "order": order}
            for order, (topic_id, name) in enumerate(data["topics"], start=1)
        ],
        tags=[data["category"].value],
        published_at=utcnow(),
    )
    session.add(template)
    logger.info(f"Created Template: {template.name}")
    return template


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Creates the schema, a demo company and supplier with admin users, and the system templates.")
    parser.add_argument("--company-email", default=None, help="Override the company admin email.")
    parser.add_argument("--supplier-email", default=None, help="Override the supplier admin email.")
    args = parser.parse_args(argv)

    overrides = {
        OrganizationType.COMPANY: args.company_email,
        OrganizationType.SUPPLIER: args.supplier_email,
    }

    # Tables are created from the models (no migrations)
    init_db()

    with Session(engine) as session:
        try:
            for data in DEFAULT_ORGANIZATIONS:
                # 1. Organization
                organization = seed_organization(session, data)

                # 2. Administrator
                email = overrides[data["type"]] or data["admin"]["email"]
                seed_admin(session, organization, email, data["admin"]["name"])

            for data in SYSTEM_TEMPLATES:
                seed_system_template(session, data)

            session.commit()
            logger.info("Database seeding completed successfully.")

        except Exception as e:
            session.rollback()
            logger.error(f"Seeding failed: {e}")
            raise e


if __name__ == "__main__":
    main()
