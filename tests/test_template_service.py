import json

import pytest

from app.core.errors import (
    CannotModifyError, ForbiddenError, InvalidTransitionError, NotEditableError,
    NotFoundError, ValidationFailedError,
)
from app.db.schema import (
    OrganizationType, QuestionnaireStatus, QuestionnaireTemplate, TemplateCategory,
    TemplateVisibility,
)
from app.models.questionnaire import QuestionnaireCreate
from app.models.template import TemplateCreate, TemplateTopic, TemplateUpdate
from app.services.questionnaire import QuestionnaireService
from app.services.template import TemplateService


@pytest.fixture
def service(session):
    return TemplateService(session)


@pytest.fixture
def other_admin(make_org, make_user):
    other = make_org(OrganizationType.COMPANY, "Other Company")
    return make_user(other, "admin@other.example.com")


@pytest.fixture
def system_template(session):
    template = QuestionnaireTemplate(
        name="GDPR Quick Assessment",
        category=TemplateCategory.GDPR,
        is_system=True,
        visibility=TemplateVisibility.GLOBAL,
        default_passing_score=75,
        topics=[{"id": "consent", "name": "Consent", "description": None, "order": 1}],
    )
    session.add(template)
    session.commit()
    session.refresh(template)
    return template


@pytest.fixture
def draft(service, company_admin):
    return service.create(company_admin, TemplateCreate(
        name="Cloud Baseline",
        category=TemplateCategory.CUSTOM,
        default_passing_score=80,
        topics=[TemplateTopic(id="iam", name="Identity"), TemplateTopic(name="Logging")],
    ))


def test_create_starts_as_owned_draft(draft, company_admin):
    assert draft.visibility == TemplateVisibility.DRAFT
    assert draft.is_system is False
    assert draft.created_by_org_id == company_admin.organization_id
    assert [t["order"] for t in draft.topics] == [1, 2]
    assert draft.topics[0]["id"] == "iam"
    # Missing topic ids are generated
    assert draft.topics[1]["id"]


def test_duplicate_topic_ids_rejected(service, company_admin):
    with pytest.raises(ValidationFailedError):
        service.create(company_admin, TemplateCreate(
            name="Twice", topics=[TemplateTopic(id="a", name="A"), TemplateTopic(id="a", name="B")]))


def test_drafts_are_private(service, draft, other_admin):
    with pytest.raises(NotFoundError):
        service.get(other_admin.organization_id, draft.id)

    items, total = service.list_available(other_admin.organization_id)
    assert total == 0 and items == []


def test_local_templates_stay_inside_the_company(service, draft, company_admin, other_admin):
    service.publish(company_admin, draft.id, TemplateVisibility.LOCAL)

    items, _ = service.list_available(company_admin.organization_id)
    assert [t.id for t in items] == [draft.id]
    with pytest.raises(NotFoundError):
        service.get(other_admin.organization_id, draft.id)


def test_global_templates_are_shared(service, draft, company_admin, other_admin):
    published = service.publish(company_admin, draft.id, TemplateVisibility.GLOBAL)
    assert published.published_at is not None

    assert service.get(other_admin.organization_id, draft.id).id == draft.id
    with pytest.raises(ForbiddenError):
        service.update(other_admin, draft.id, TemplateUpdate(name="Hijacked"))


def test_list_available_filters_by_category(service, system_template, company_admin):
    items, total = service.list_available(company_admin.organization_id, TemplateCategory.GDPR)
    assert total == 1 and items[0].id == system_template.id

    _, total = service.list_available(company_admin.organization_id, TemplateCategory.NIS2)
    assert total == 0


def test_list_mine_includes_drafts(service, draft, system_template, company_admin):
    items, total = service.list_mine(company_admin.organization_id)
    assert total == 1
    assert items[0].id == draft.id


def test_system_templates_are_read_only(service, system_template, company_admin):
    with pytest.raises(NotEditableError):
        service.update(company_admin, system_template.id, TemplateUpdate(name="Changed"))
    with pytest.raises(NotEditableError):
        service.delete(company_admin, system_template.id)


def test_publish_rules(service, company_admin):
    empty = service.create(company_admin, TemplateCreate(name="No Topics"))
    with pytest.raises(ValidationFailedError):
        service.publish(company_admin, empty.id, TemplateVisibility.LOCAL)
    with pytest.raises(ValidationFailedError):
        service.publish(company_admin, empty.id, TemplateVisibility.DRAFT)

    service.update(company_admin, empty.id, TemplateUpdate(topics=[TemplateTopic(name="Scope")]))
    service.publish(company_admin, empty.id, TemplateVisibility.LOCAL)
    with pytest.raises(InvalidTransitionError):
        service.publish(company_admin, empty.id, TemplateVisibility.GLOBAL)


def test_unpublish_returns_to_draft(service, draft, company_admin):
    with pytest.raises(InvalidTransitionError):
        service.unpublish(company_admin, draft.id)

    service.publish(company_admin, draft.id, TemplateVisibility.GLOBAL)
    reverted = service.unpublish(company_admin, draft.id)
    assert reverted.visibility == TemplateVisibility.DRAFT
    assert reverted.published_at is None


def test_update_cannot_clear_required_fields(service, draft, company_admin):
    with pytest.raises(ValidationFailedError):
        service.update(company_admin, draft.id, TemplateUpdate(name=None))

    updated = service.update(company_admin, draft.id, TemplateUpdate(description=None, tags=None))
    assert updated.name == "Cloud Baseline"
    assert updated.tags == []


def test_import_accepts_uppercase_category(service, company_admin):
    document = {
        "name": "Imported NIS2",
        "category": "NIS2",
        "default_passing_score": 60,
        "topics": [{"name": "Incident Reporting"}],
        "usage_count": 99,
    }
    template = service.import_template(company_admin, json.dumps(document).encode())

    assert template.category == TemplateCategory.NIS2
    assert template.visibility == TemplateVisibility.DRAFT
    assert template.usage_count == 0
    assert template.topics[0]["name"] == "Incident Reporting"


@pytest.mark.parametrize("payload", [
    b"{not json",
    b"[]",
    json.dumps({"category": "gdpr"}).encode(),
    json.dumps({"name": "No Category"}).encode(),
    json.dumps({"name": "Bad Category", "category": "sox"}).encode(),
    json.dumps({"name": "Bad Score", "category": "gdpr", "default_passing_score": 120}).encode(),
])
def test_import_rejects_invalid_documents(service, company_admin, payload):
    with pytest.raises(ValidationFailedError):
        service.import_template(company_admin, payload)


# ==============================================================================
# QUESTIONNAIRES FROM TEMPLATES
# ==============================================================================


def test_questionnaire_from_template_copies_topics(session, system_template, company_admin):
    questionnaires = QuestionnaireService(session)

    questionnaire = questionnaires.create(company_admin, QuestionnaireCreate(
        name="Our GDPR Check", template_id=system_template.id))

    assert questionnaire.status == QuestionnaireStatus.DRAFT
    assert questionnaire.template_id == system_template.id
    assert questionnaire.passing_score == 75
    assert [t["id"] for t in questionnaire.topics] == ["consent"]

    session.refresh(system_template)
    assert system_template.usage_count == 1


def test_used_template_cannot_be_deleted_or_unpublished(session, service, draft, company_admin):
    service.publish(company_admin, draft.id, TemplateVisibility.LOCAL)
    QuestionnaireService(session).create_from_template(company_admin, draft.id)

    with pytest.raises(CannotModifyError):
        service.unpublish(company_admin, draft.id)
    with pytest.raises(CannotModifyError):
        service.delete(company_admin, draft.id)


def test_unused_template_can_be_deleted(service, draft, company_admin):
    service.delete(company_admin, draft.id)
    with pytest.raises(NotFoundError):
        service.get(company_admin.organization_id, draft.id)


def test_foreign_draft_cannot_be_instantiated(session, draft, other_admin):
    with pytest.raises(NotFoundError):
        QuestionnaireService(session).create_from_template(other_admin, draft.id)
