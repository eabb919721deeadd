from datetime import timedelta
from unittest.mock import Mock

import pytest

from app.core.errors import (
    InvalidTransitionError, NotEditableError, NotFoundError, ValidationFailedError,
)
from app.db.schema import (
    QuestionnaireStatus, RelationshipStatus, RequirementStatus, RequirementType,
)
from app.models.requirement import RequirementCreate, RequirementUpdate
from app.services.mail import MailDeliveryError
from app.services.requirement import EXPIRY_REASON, RequirementService
from app.utils.dates import utcnow


@pytest.fixture
def mail():
    return Mock()


@pytest.fixture
def service(session, mail):
    return RequirementService(session, mail=mail)


@pytest.fixture
def make_requirement(service, company_admin, active_relationship, published_questionnaire):
    def _make(due_in=timedelta(days=30), type=RequirementType.QUESTIONNAIRE, **kwargs):
        data = RequirementCreate(
            relationship_id=active_relationship.id,
            type=type,
            title=kwargs.pop("title", "Annual security review"),
            questionnaire_id=published_questionnaire.id if type == RequirementType.QUESTIONNAIRE else None,
            due_date=utcnow() + due_in if due_in is not None else None,
            **kwargs,
        )
        return service.create(company_admin, data)
    return _make


def test_create_questionnaire_requirement(make_requirement, published_questionnaire, supplier):
    requirement = make_requirement()

    assert requirement.status == RequirementStatus.PENDING
    assert requirement.supplier_id == supplier.id
    assert requirement.passing_score == published_questionnaire.passing_score
    assert requirement.status_history[0]["from_status"] is None
    assert requirement.status_history[0]["to_status"] == "pending"


def test_create_document_requirement_defaults(make_requirement):
    requirement = make_requirement(type=RequirementType.DOCUMENT)
    assert requirement.minimum_grade == "C"
    assert requirement.max_report_age_days == 90
    assert requirement.questionnaire_id is None


def test_create_needs_active_relationship(service, session, company_admin, active_relationship,
                                          published_questionnaire):
    active_relationship.status = RelationshipStatus.SUSPENDED
    session.add(active_relationship)
    session.commit()

    with pytest.raises(ValidationFailedError) as exc:
        service.create(company_admin, RequirementCreate(
            relationship_id=active_relationship.id,
            type=RequirementType.QUESTIONNAIRE,
            title="Blocked",
            questionnaire_id=published_questionnaire.id,
        ))
    assert exc.value.code == "relationship_not_active"


def test_create_needs_published_questionnaire(service, session, company_admin, active_relationship,
                                              published_questionnaire):
    published_questionnaire.status = QuestionnaireStatus.DRAFT
    session.add(published_questionnaire)
    session.commit()

    with pytest.raises(ValidationFailedError):
        service.create(company_admin, RequirementCreate(
            relationship_id=active_relationship.id,
            type=RequirementType.QUESTIONNAIRE,
            title="Draft questionnaire",
            questionnaire_id=published_questionnaire.id,
        ))


def test_update_only_while_pending(service, make_requirement, company_admin, supplier_admin):
    requirement = make_requirement()

    updated = service.update(company_admin, requirement.id, RequirementUpdate(title="Renamed"))
    assert updated.title == "Renamed"

    service.start(supplier_admin, requirement.id)
    with pytest.raises(NotEditableError):
        service.update(company_admin, requirement.id, RequirementUpdate(title="Too late"))


def test_new_due_date_resets_reminder(service, session, make_requirement, company_admin):
    requirement = make_requirement()
    requirement.reminder_sent_at = utcnow()
    session.add(requirement)
    session.commit()

    updated = service.update(
        company_admin, requirement.id, RequirementUpdate(due_date=utcnow() + timedelta(days=60)))
    assert updated.reminder_sent_at is None


def test_supplier_cannot_submit_before_start(service, make_requirement, supplier_admin):
    requirement = make_requirement()
    with pytest.raises(InvalidTransitionError):
        service.submit(supplier_admin, requirement.id)


def test_company_cannot_start_for_supplier(service, make_requirement, company_admin):
    requirement = make_requirement()
    with pytest.raises(NotFoundError):
        service.start(company_admin, requirement.id)


def test_lost_race_is_reported(service, session, make_requirement, supplier_admin):
    requirement = make_requirement()
    # A second writer still holding the pending copy
    stale = service.get_for_supplier(requirement.id, supplier_admin.organization_id)
    session.expunge(stale)

    service.start(supplier_admin, requirement.id)

    assert stale.status == RequirementStatus.PENDING
    with pytest.raises(InvalidTransitionError):
        service.transition(stale, RequirementStatus.IN_PROGRESS, supplier_admin.id)


def test_expiry_sweep_is_idempotent(service, make_requirement, supplier_admin):
    overdue_pending = make_requirement(due_in=timedelta(days=-1), title="Pending overdue")
    overdue_started = make_requirement(due_in=timedelta(days=-2), title="Started overdue")
    service.start(supplier_admin, overdue_started.id)
    future = make_requirement(due_in=timedelta(days=5), title="Not yet due")

    assert service.expire_overdue() == 2
    assert service.expire_overdue() == 0

    expired = service.requirements.get_by_id(overdue_pending.id)
    assert expired.status == RequirementStatus.EXPIRED
    assert expired.status_history[-1]["reason"] == EXPIRY_REASON
    assert expired.status_history[-1]["changed_by"] is None
    assert len([h for h in expired.status_history if h["to_status"] == "expired"]) == 1

    assert service.requirements.get_by_id(overdue_started.id).status == RequirementStatus.EXPIRED
    assert service.requirements.get_by_id(future.id).status == RequirementStatus.PENDING


def test_submitted_requirements_do_not_expire(service, make_requirement, supplier_admin):
    requirement = make_requirement(due_in=timedelta(days=-1))
    service.start(supplier_admin, requirement.id)
    service.submit(supplier_admin, requirement.id)

    assert service.expire_overdue() == 0


def test_overdue_flags(make_requirement):
    overdue = make_requirement(due_in=timedelta(days=-3), title="Late")
    upcoming = make_requirement(due_in=timedelta(days=10, hours=1), title="Later")
    undated = make_requirement(due_in=None, title="Whenever")

    assert overdue.is_overdue is True
    assert overdue.days_until_due == -3
    assert upcoming.is_overdue is False
    assert upcoming.days_until_due in (10, 11)
    assert undated.days_until_due is None


def test_reminders_sent_once(service, mail, make_requirement, supplier_admin):
    due_soon = make_requirement(due_in=timedelta(days=2), title="Due soon")
    make_requirement(due_in=timedelta(days=20), title="Due later")

    assert service.send_reminders(days_before=3) == 1
    assert service.send_reminders(days_before=3) == 0

    mail.send_requirement_reminder.assert_called_once()
    recipient = mail.send_requirement_reminder.call_args.args[0]
    assert recipient == supplier_admin.email
    assert service.requirements.get_by_id(due_soon.id).reminder_sent_at is not None


def test_failed_reminder_is_retried(service, mail, make_requirement):
    requirement = make_requirement(due_in=timedelta(days=1))
    mail.send_requirement_reminder.side_effect = MailDeliveryError("down")

    assert service.send_reminders(days_before=3) == 0
    assert service.requirements.get_by_id(requirement.id).reminder_sent_at is None

    mail.send_requirement_reminder.side_effect = None
    assert service.send_reminders(days_before=3) == 1


def test_stats_count_overdue(service, make_requirement, company):
    make_requirement(due_in=timedelta(days=-1), title="Late")
    make_requirement(due_in=timedelta(days=4), title="On time")

    stats = service.stats(company.id)
    assert stats.total == 2
    assert stats.overdue == 1
    assert stats.by_status["pending"] == 2


@pytest.mark.parametrize("field", ["title", "priority"])
def test_update_cannot_clear_required_fields(service, make_requirement, company_admin, field):
    requirement = make_requirement()

    with pytest.raises(ValidationFailedError):
        service.update(company_admin, requirement.id, RequirementUpdate(**{field: None}))

    stored = service.requirements.get_by_id(requirement.id)
    assert stored.title == "Annual security review"
    assert stored.priority is not None


def test_update_can_clear_optional_fields(service, make_requirement, company_admin):
    requirement = make_requirement(description="Yearly check")
    updated = service.update(
        company_admin, requirement.id, RequirementUpdate(description=None, due_date=None))
    assert updated.description is None
    assert updated.due_date is None


# ==============================================================================
# NOTIFICATIONS
# ==============================================================================


def test_supplier_is_told_about_new_requirement(mail, make_requirement, supplier_admin, company):
    requirement = make_requirement(due_in=timedelta(days=5), title="Pen test report")

    mail.send_requirement_assigned.assert_called_once()
    email, company_name, title, due_date, link = mail.send_requirement_assigned.call_args.args
    assert email == supplier_admin.email
    assert company_name == company.name
    assert title == "Pen test report"
    assert due_date == requirement.due_date.date().isoformat()
    assert link.endswith(f"/supplier/requirements/{requirement.id}")


def test_failed_assignment_mail_keeps_requirement(service, mail, make_requirement):
    mail.send_requirement_assigned.side_effect = MailDeliveryError("down")

    requirement = make_requirement()
    assert service.requirements.get_by_id(requirement.id).status == RequirementStatus.PENDING


def test_assigner_is_told_about_submission(service, mail, make_requirement, company_admin,
                                           supplier, supplier_admin):
    requirement = make_requirement()
    service.start(supplier_admin, requirement.id)
    service.submit(supplier_admin, requirement.id)

    mail.send_submission_received.assert_called_once()
    email, supplier_name, _, link = mail.send_submission_received.call_args.args
    assert email == company_admin.email
    assert supplier_name == supplier.name
    assert link.endswith(f"/requirements/{requirement.id}")
    assert "/supplier/" not in link


def test_expiry_sends_overdue_notice_once(service, mail, make_requirement, supplier_admin):
    make_requirement(due_in=timedelta(days=-1), title="Late")

    assert service.expire_overdue() == 1
    assert service.expire_overdue() == 0

    mail.send_requirement_overdue.assert_called_once()
    assert mail.send_requirement_overdue.call_args.args[0] == supplier_admin.email
    assert mail.send_requirement_overdue.call_args.args[1] == "Late"
