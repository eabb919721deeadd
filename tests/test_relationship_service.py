from unittest.mock import Mock

import pytest

from app.core.errors import (
    AlreadyExistsError, CannotModifyError, InvalidTransitionError, NotFoundError,
)
from app.db.schema import OrganizationType, RelationshipStatus, SupplierClassification
from app.models.relationship import (
    RelationshipDetailsUpdate, RelationshipInvite, RelationshipRead,
)
from app.services.mail import MailDeliveryError
from app.services.relationship import RelationshipService


@pytest.fixture
def mail():
    return Mock()


@pytest.fixture
def service(session, mail):
    return RelationshipService(session, mail=mail)


@pytest.fixture
def invited(service, company_admin, supplier_admin):
    return service.invite(company_admin, RelationshipInvite(email=supplier_admin.email))


def test_invite_creates_pending_relationship(invited, mail, supplier_admin):
    assert invited.status == RelationshipStatus.PENDING
    assert invited.supplier_id is None
    assert invited.invited_email == supplier_admin.email
    assert [h["to_status"] for h in invited.status_history] == ["pending"]
    mail.send_invitation.assert_called_once()


def test_second_open_invite_is_rejected(service, company_admin, invited):
    with pytest.raises(AlreadyExistsError):
        service.invite(company_admin, RelationshipInvite(email=invited.invited_email.upper()))


def test_invite_allowed_again_after_decline(service, company_admin, supplier_admin, invited):
    service.decline(supplier_admin, invited.id)
    again = service.invite(company_admin, RelationshipInvite(email=supplier_admin.email))
    assert again.id != invited.id
    assert again.status == RelationshipStatus.PENDING


def test_accept_links_supplier(service, invited, supplier_admin, supplier):
    rel = service.accept(supplier_admin, invited.id)

    assert rel.status == RelationshipStatus.ACTIVE
    assert rel.supplier_id == supplier.id
    assert rel.accepted_at is not None
    assert rel.status_history[-1]["reason"] == "Invitation accepted"


def test_only_invited_address_can_accept(service, invited, make_org, make_user):
    other = make_user(make_org(OrganizationType.SUPPLIER, "Other Supplier"), "intruder@other.example.com")
    with pytest.raises(NotFoundError):
        service.accept(other, invited.id)


def test_accept_twice_fails(service, invited, supplier_admin):
    service.accept(supplier_admin, invited.id)
    with pytest.raises(InvalidTransitionError):
        service.accept(supplier_admin, invited.id)


def test_suspend_reactivate_terminate(service, company_admin, active_relationship):
    rel = service.suspend(company_admin, active_relationship.id, "Audit pending")
    assert rel.status == RelationshipStatus.SUSPENDED

    rel = service.reactivate(company_admin, rel.id)
    assert rel.status == RelationshipStatus.ACTIVE

    rel = service.terminate(company_admin, rel.id, "Contract ended")
    assert rel.status == RelationshipStatus.TERMINATED
    assert rel.status_history[-1]["reason"] == "Contract ended"
    assert rel.status_history[-1]["from_status"] == "active"


def test_terminated_relationship_is_closed(service, company_admin, active_relationship):
    service.terminate(company_admin, active_relationship.id)

    for action in (service.suspend, service.reactivate, service.terminate):
        with pytest.raises(InvalidTransitionError):
            action(company_admin, active_relationship.id)

    with pytest.raises(CannotModifyError):
        service.update_classification(
            company_admin, active_relationship.id, SupplierClassification.CRITICAL)
    with pytest.raises(CannotModifyError):
        service.update_details(
            company_admin, active_relationship.id, RelationshipDetailsUpdate(notes="late note"))


def test_pending_relationship_cannot_be_suspended(service, company_admin, invited):
    with pytest.raises(InvalidTransitionError):
        service.suspend(company_admin, invited.id)


def test_other_company_cannot_see_relationship(service, active_relationship, make_org, make_user):
    other = make_user(make_org(name="Rival Corp"), "boss@rival.example.com")
    with pytest.raises(NotFoundError):
        service.terminate(other, active_relationship.id)


def test_update_classification_and_details(service, company_admin, active_relationship):
    rel = service.update_classification(
        company_admin, active_relationship.id, SupplierClassification.CRITICAL)
    assert rel.classification == SupplierClassification.CRITICAL

    rel = service.update_details(
        company_admin, rel.id,
        RelationshipDetailsUpdate(notes="Hosts our ERP", services_provided=["Hosting"]))
    assert rel.notes == "Hosts our ERP"
    assert rel.services_provided == ["Hosting"]
    assert rel.status == RelationshipStatus.ACTIVE


def test_stats_and_pending_invitations(service, company, company_admin, supplier_admin, invited):
    stats = service.stats(company.id)
    assert stats.total == 1
    assert stats.pending == 1
    assert stats.by_classification["standard"] == 1

    invitations = service.list_pending_invitations(supplier_admin.email)
    assert [i.id for i in invitations] == [invited.id]
    assert invitations[0].company_name == company.name


def test_invite_survives_mail_failure(session, company_admin):
    failing = Mock()
    failing.send_invitation.side_effect = MailDeliveryError("down")

    rel = RelationshipService(session, mail=failing).invite(
        company_admin, RelationshipInvite(email="new@vendor.example.com"))
    assert rel.status == RelationshipStatus.PENDING


def test_pending_relationship_cannot_be_reactivated(service, company_admin, invited):
    with pytest.raises(InvalidTransitionError):
        service.reactivate(company_admin, invited.id, "Skip acceptance")

    rel = service.relationships.get_by_id(invited.id)
    assert rel.status == RelationshipStatus.PENDING
    assert rel.supplier_id is None
    assert rel.accepted_at is None


def test_pending_relationship_cannot_be_terminated(service, company_admin, invited):
    with pytest.raises(InvalidTransitionError):
        service.terminate(company_admin, invited.id)
    assert service.relationships.get_by_id(invited.id).status == RelationshipStatus.PENDING


def test_active_relationship_cannot_be_reactivated(service, company_admin, active_relationship):
    with pytest.raises(InvalidTransitionError):
        service.reactivate(company_admin, active_relationship.id)


def test_clearing_services_stores_empty_list(service, company_admin, active_relationship):
    service.update_details(
        company_admin, active_relationship.id,
        RelationshipDetailsUpdate(services_provided=["Hosting"]))

    rel = service.update_details(
        company_admin, active_relationship.id,
        RelationshipDetailsUpdate(services_provided=None, notes=None))

    assert rel.services_provided == []
    assert rel.notes is None
    assert RelationshipRead.model_validate(rel).services_provided == []
