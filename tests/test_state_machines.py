import pytest

from app.db.schema import (
    RELATIONSHIP_TRANSITIONS, REQUIREMENT_TRANSITIONS, RelationshipStatus, RequirementStatus,
)


@pytest.mark.parametrize("source,target", [
    (RelationshipStatus.PENDING, RelationshipStatus.ACTIVE),
    (RelationshipStatus.PENDING, RelationshipStatus.REJECTED),
    (RelationshipStatus.ACTIVE, RelationshipStatus.SUSPENDED),
    (RelationshipStatus.ACTIVE, RelationshipStatus.TERMINATED),
    (RelationshipStatus.SUSPENDED, RelationshipStatus.ACTIVE),
    (RelationshipStatus.SUSPENDED, RelationshipStatus.TERMINATED),
])
def test_relationship_allowed_transitions(source, target):
    assert source.can_transition_to(target)


def test_relationship_table_has_no_other_edges():
    allowed = {(s, t) for s, targets in RELATIONSHIP_TRANSITIONS.items() for t in targets}
    assert len(allowed) == 6
    assert not RelationshipStatus.PENDING.can_transition_to(RelationshipStatus.SUSPENDED)
    assert not RelationshipStatus.ACTIVE.can_transition_to(RelationshipStatus.PENDING)


@pytest.mark.parametrize("terminal", [RelationshipStatus.TERMINATED, RelationshipStatus.REJECTED])
def test_closed_relationships_accept_nothing(terminal):
    assert terminal.is_terminal
    assert all(not terminal.can_transition_to(target) for target in RelationshipStatus)


def test_requirement_allowed_transitions():
    assert RequirementStatus.PENDING.can_transition_to(RequirementStatus.IN_PROGRESS)
    assert RequirementStatus.IN_PROGRESS.can_transition_to(RequirementStatus.SUBMITTED)
    assert RequirementStatus.SUBMITTED.can_transition_to(RequirementStatus.APPROVED)
    assert RequirementStatus.SUBMITTED.can_transition_to(RequirementStatus.REJECTED)
    assert RequirementStatus.SUBMITTED.can_transition_to(RequirementStatus.REVISION_REQUESTED)
    assert RequirementStatus.REVISION_REQUESTED.can_transition_to(RequirementStatus.IN_PROGRESS)


def test_only_open_requirements_can_expire():
    expirable = {s for s, targets in REQUIREMENT_TRANSITIONS.items()
                 if RequirementStatus.EXPIRED in targets}
    assert expirable == {RequirementStatus.PENDING, RequirementStatus.IN_PROGRESS}


def test_requirement_cannot_skip_review():
    assert not RequirementStatus.PENDING.can_transition_to(RequirementStatus.SUBMITTED)
    assert not RequirementStatus.IN_PROGRESS.can_transition_to(RequirementStatus.APPROVED)
    assert not RequirementStatus.REVISION_REQUESTED.can_transition_to(RequirementStatus.SUBMITTED)


@pytest.mark.parametrize("terminal", [
    RequirementStatus.APPROVED, RequirementStatus.REJECTED, RequirementStatus.EXPIRED,
])
def test_terminal_requirement_statuses(terminal):
    assert terminal.is_terminal
    assert all(not terminal.can_transition_to(target) for target in RequirementStatus)
