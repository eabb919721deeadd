import os
import pathlib
import sys
import tempfile

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

# Settings are read at import time: configure before importing the app
_TMP_DIR = tempfile.mkdtemp(prefix="compliance-tests-")
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP_DIR}/test.db"
os.environ["LOG_FILE"] = f"{_TMP_DIR}/application.log"
os.environ["MAGIC_LINK_BASE_URL"] = "http://frontend.test"
os.environ["MAIL_SERVICE_URL"] = ""

from fastapi.testclient import TestClient  # noqa: E402
from sqlmodel import Session, SQLModel, select  # noqa: E402

from app.core.security import create_token_pair  # noqa: E402
from app.db.core import engine, get_session, init_db  # noqa: E402
from app.db.schema import (  # noqa: E402
    Organization, OrganizationType, Question, QuestionType, Questionnaire,
    QuestionnaireStatus, RelationshipStatus, SupplierRelationship, User, UserRole,
    status_change,
)
from app.main import app  # noqa: E402
from app.utils.dates import utcnow  # noqa: E402


@pytest.fixture(autouse=True)
def reset_db():
    SQLModel.metadata.drop_all(engine)
    init_db(engine)
    yield


@pytest.fixture
def session():
    with Session(engine) as session:
        yield session


@pytest.fixture
def client():
    def _get_session():
        with Session(engine) as s:
            yield s

    app.dependency_overrides[get_session] = _get_session
    yield TestClient(app)
    app.dependency_overrides.clear()


# ==============================================================================
# FACTORIES
# ==============================================================================


@pytest.fixture
def make_org(session):
    def _make(type=OrganizationType.COMPANY, name="Acme", slug=None):
        org = Organization(type=type, name=name, slug=slug or name.lower().replace(" ", "-"))
        session.add(org)
        session.commit()
        session.refresh(org)
        return org
    return _make


@pytest.fixture
def make_user(session):
    def _make(org, email, role=UserRole.ADMIN, name="Test User", is_active=True):
        user = User(organization_id=org.id, email=email, name=name, role=role, is_active=is_active)
        session.add(user)
        session.commit()
        session.refresh(user)
        return user
    return _make


@pytest.fixture
def auth_headers(session):
    def _headers(user):
        org = session.get(Organization, user.organization_id)
        tokens = create_token_pair(user, org)
        return {"Authorization": f"Bearer {tokens.access_token}"}
    return _headers


@pytest.fixture
def company(make_org):
    return make_org(OrganizationType.COMPANY, "Acme Company")


@pytest.fixture
def company_admin(make_user, company):
    return make_user(company, "admin@acme.example.com", name="Alice Admin")


@pytest.fixture
def supplier(make_org):
    return make_org(OrganizationType.SUPPLIER, "Parts Supplier")


@pytest.fixture
def supplier_admin(make_user, supplier):
    return make_user(supplier, "ops@parts.example.com", name="Sam Supplier")


@pytest.fixture
def active_relationship(session, company, company_admin, supplier, supplier_admin):
    """A relationship already accepted by the supplier."""
    now = utcnow()
    rel = SupplierRelationship(
        company_id=company.id,
        supplier_id=supplier.id,
        invited_email=supplier_admin.email,
        invited_by_user_id=company_admin.id,
        status=RelationshipStatus.ACTIVE,
        status_history=[
            status_change(None, RelationshipStatus.PENDING, company_admin.id, "Invitation sent", now),
            status_change(RelationshipStatus.PENDING, RelationshipStatus.ACTIVE,
                          supplier_admin.id, "Invitation accepted", now),
        ],
        accepted_at=now,
    )
    session.add(rel)
    session.commit()
    session.refresh(rel)
    return rel


@pytest.fixture
def published_questionnaire(session, company):
    """Two single-choice questions worth 10 points each, 70% to pass."""
    questionnaire = Questionnaire(
        company_id=company.id,
        name="Security Basics",
        status=QuestionnaireStatus.PUBLISHED,
        passing_score=70,
        question_count=2,
        max_possible_score=20,
        published_at=utcnow(),
    )
    session.add(questionnaire)
    session.commit()
    session.refresh(questionnaire)

    for order, text in enumerate(["Do you encrypt data at rest?", "Do you run backups?"], start=1):
        session.add(Question(
            questionnaire_id=questionnaire.id,
            text=text,
            type=QuestionType.SINGLE_CHOICE,
            order=order,
            max_points=10,
            options=[
                {"id": "yes", "text": "Yes", "points": 10, "is_correct": True, "order": 1},
                {"id": "no", "text": "No", "points": 0, "is_correct": False, "order": 2},
            ],
        ))
    session.commit()
    return questionnaire


@pytest.fixture
def questions(session, published_questionnaire):
    return list(session.exec(
        select(Question)
        .where(Question.questionnaire_id == published_questionnaire.id)
        .order_by(Question.order)
    ).all())
