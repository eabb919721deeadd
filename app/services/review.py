import uuid
from typing import Optional, Tuple

from fastapi import BackgroundTasks
from loguru import logger
from sqlmodel import Session

from app.core.errors import CannotReviewError, InvalidTransitionError, NotFoundError, ValidationFailedError
from app.db.repository import Repository
from app.db.schema import (
    QuestionnaireSubmission, Requirement, RequirementStatus, SupplierResponse, User,
)
from app.services.requirement import RequirementService
from app.utils.dates import utcnow


class ReviewService:
    """
    Company review of a submitted requirement.

    approve / reject / request_revision are only valid from `submitted`.
    Reject and request_revision need a reason. Review notes, grade and score
    override land on the SupplierResponse; the submission itself is never
    touched.
    """

    def __init__(self, session: Session, requirement_service: Optional[RequirementService] = None):
        self.session = session
        self.responses = Repository(session, SupplierResponse)
        self.submissions = Repository(session, QuestionnaireSubmission)
        self.requirement_service = requirement_service or RequirementService(session)

    def _review(
        self,
        user: User,
        requirement_id: uuid.UUID,
        target: RequirementStatus,
        reason: Optional[str],
        action_label: str,
        score_override: Optional[int] = None,
        grade: Optional[str] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Requirement:
        requirement = self.requirement_service.get_for_company(requirement_id, user.organization_id)
        if not requirement.can_be_reviewed:
            raise CannotReviewError(f"Cannot {action_label} this requirement.")

        try:
            requirement = self.requirement_service.transition(
                requirement,
                target,
                user.id,
                reason,
                action_label=action_label,
                organization_id=user.organization_id,
                background_tasks=background_tasks,
            )
        except InvalidTransitionError:
            # Reviewed concurrently by someone else
            raise CannotReviewError(f"Cannot {action_label} this requirement.")

        response = self.responses.get_by(requirement_id=requirement.id)
        if response is not None:
            values = {
                "reviewed_by_user_id": user.id,
                "reviewed_at": utcnow(),
                "review_notes": reason,
            }
            if score_override is not None:
                values["score_override"] = score_override
            if grade is not None:
                values["grade"] = grade
            self.responses.update_where(response.id, values)

        logger.info(f"Requirement {requirement.id} reviewed: {target.value} by user {user.id}")
        return requirement

    @staticmethod
    def _required_reason(reason: Optional[str]) -> str:
        reason = (reason or "").strip()
        if not reason:
            raise ValidationFailedError("A reason is required.", code="reason_required")
        return reason

    def approve(self, user: User, requirement_id: uuid.UUID, notes: Optional[str] = None,
                score_override: Optional[int] = None, grade: Optional[str] = None,
                background_tasks: Optional[BackgroundTasks] = None) -> Requirement:
        return self._review(
            user, requirement_id, RequirementStatus.APPROVED,
            (notes or "").strip() or None, "approve",
            score_override, grade, background_tasks)

    def reject(self, user: User, requirement_id: uuid.UUID, reason: str,
               score_override: Optional[int] = None, grade: Optional[str] = None,
               background_tasks: Optional[BackgroundTasks] = None) -> Requirement:
        return self._review(
            user, requirement_id, RequirementStatus.REJECTED,
            self._required_reason(reason), "reject",
            score_override, grade, background_tasks)

    def request_revision(self, user: User, requirement_id: uuid.UUID, reason: str,
                         background_tasks: Optional[BackgroundTasks] = None) -> Requirement:
        """Sends the requirement back to the Supplier, who can start it again."""
        return self._review(
            user, requirement_id, RequirementStatus.REVISION_REQUESTED,
            self._required_reason(reason), "request revision for",
            background_tasks=background_tasks)

    def get_submission_for_review(
        self, user: User, requirement_id: uuid.UUID
    ) -> Tuple[SupplierResponse, Optional[QuestionnaireSubmission]]:
        requirement = self.requirement_service.get_for_company(requirement_id, user.organization_id)

        response = self.responses.get_by(requirement_id=requirement.id)
        if response is None:
            raise NotFoundError("No submission to review.", code="no_submission")

        submission = None
        if response.submission_id is not None:
            submission = self.submissions.get_by_id(response.submission_id)
        return response, submission

    @staticmethod
    def effective_score(response: SupplierResponse,
                        submission: Optional[QuestionnaireSubmission]) -> Optional[int]:
        """The reviewer's override when present, the computed score otherwise."""
        if response.score_override is not None:
            return response.score_override
        if submission is not None:
            return submission.total_score
        return response.score
