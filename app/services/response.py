import uuid
from typing import List, Optional, Tuple

from fastapi import BackgroundTasks
from loguru import logger
from sqlmodel import Session

from app.core.audit import record_audit
from app.core.errors import (
    CannotModifyError, InvalidTransitionError, NotFoundError, ValidationFailedError,
)
from app.db.repository import Repository
from app.db.schema import (
    AuditAction, Question, Questionnaire, QuestionnaireSubmission, Requirement,
    RequirementStatus, RequirementType, SupplierResponse, User,
)
from app.models.response import AnswerInput, DocumentSubmit
from app.services.requirement import RequirementService
from app.services.scoring import AnswerValidationError, document_passes, score_submission
from app.utils.dates import as_naive_utc, utcnow

REOPENABLE_STATUSES = (RequirementStatus.PENDING, RequirementStatus.REVISION_REQUESTED)


class ResponseService:
    """
    Supplier side of a requirement: one response per requirement, draft
    answers while in progress, and the scored submission.
    """

    def __init__(self, session: Session, requirement_service: Optional[RequirementService] = None):
        self.session = session
        self.responses = Repository(session, SupplierResponse)
        self.submissions = Repository(session, QuestionnaireSubmission)
        self.questionnaires = Repository(session, Questionnaire)
        self.questions = Repository(session, Question)
        self.requirement_service = requirement_service or RequirementService(session)

    def get_for_supplier(self, response_id: uuid.UUID, supplier_id: uuid.UUID) -> SupplierResponse:
        response = self.responses.get_by_id(response_id)
        if not response or response.supplier_id != supplier_id:
            raise NotFoundError("Response not found.")
        return response

    def get_by_requirement(self, requirement_id: uuid.UUID) -> Optional[SupplierResponse]:
        return self.responses.get_by(requirement_id=requirement_id)

    def get_submission(self, submission_id: uuid.UUID) -> QuestionnaireSubmission:
        submission = self.submissions.get_by_id(submission_id)
        if not submission:
            raise NotFoundError("Submission not found.")
        return submission

    def _load_open(self, user: User, response_id: uuid.UUID) -> Tuple[SupplierResponse, Requirement]:
        response = self.get_for_supplier(response_id, user.organization_id)
        if response.is_submitted:
            raise CannotModifyError(
                "This response has already been submitted.", code="response_already_submitted")

        requirement = self.requirement_service.get_for_supplier(
            response.requirement_id, user.organization_id)
        if requirement.status != RequirementStatus.IN_PROGRESS:
            raise CannotModifyError("This requirement is not in progress.")
        return response, requirement

    # ==========================================================================
    # START / DRAFT
    # ==========================================================================

    def start_response(self, user: User, requirement_id: uuid.UUID,
                       background_tasks: Optional[BackgroundTasks] = None) -> SupplierResponse:
        """
        Starts (or resumes) work on a requirement.

        1. pending / revision_requested requirements move to in_progress.
        2. An unsubmitted response is reused; after a revision request the
           submitted response is reopened; otherwise a new one is created.
        """
        requirement = self.requirement_service.get_for_supplier(requirement_id, user.organization_id)
        existing = self.get_by_requirement(requirement.id)

        if existing and existing.is_submitted and requirement.status != RequirementStatus.REVISION_REQUESTED:
            raise CannotModifyError(
                "This response has already been submitted.", code="response_already_submitted")

        if requirement.status in REOPENABLE_STATUSES:
            requirement = self.requirement_service.start(user, requirement.id, background_tasks)
        elif requirement.status != RequirementStatus.IN_PROGRESS:
            raise InvalidTransitionError("Cannot start this requirement.")

        now = utcnow()
        if existing is None:
            response = self.responses.create(SupplierResponse(
                requirement_id=requirement.id,
                supplier_id=user.organization_id,
                started_at=now,
            ))
            logger.info(f"Response {response.id} started for requirement {requirement.id}")
            return response

        if existing.is_submitted:
            # Revision: reopen, keeping the previous submission row untouched
            self.responses.update_where(existing.id, {
                "submitted_at": None,
                "started_at": now,
                "reviewed_at": None,
                "reviewed_by_user_id": None,
            })
            logger.info(f"Response {existing.id} reopened for revision")
            return self.responses.get_by_id(existing.id)

        return existing

    def save_draft_answers(self, user: User, response_id: uuid.UUID,
                           answers: List[AnswerInput]) -> SupplierResponse:
        """Merges the given answers into the draft, keyed by question."""
        response, _ = self._load_open(user, response_id)

        merged = {a["question_id"]: a for a in response.draft_answers or []}
        for answer in answers:
            merged[str(answer.question_id)] = answer.model_dump(mode="json")

        updated = self.responses.update_where(
            response.id,
            {"draft_answers": list(merged.values())},
            SupplierResponse.submitted_at == None,  # noqa: E711
        )
        if not updated:
            raise CannotModifyError(
                "This response has already been submitted.", code="response_already_submitted")
        return self.responses.get_by_id(response.id)

    # ==========================================================================
    # SUBMIT
    # ==========================================================================

    def submit_questionnaire_response(
        self,
        user: User,
        response_id: uuid.UUID,
        answers: List[AnswerInput],
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Tuple[QuestionnaireSubmission, SupplierResponse, Requirement]:
        """
        Scores the answers and submits the requirement.

        1. Answers are validated and scored before anything is written.
        2. The requirement moves in_progress -> submitted; that conditional
           write decides between concurrent submissions.
        3. The immutable submission is stored and the response updated.
        """
        response, requirement = self._load_open(user, response_id)

        if requirement.type != RequirementType.QUESTIONNAIRE or not requirement.questionnaire_id:
            raise ValidationFailedError("This requirement is not a questionnaire.")

        questionnaire = self.questionnaires.get_by_id(requirement.questionnaire_id)
        if not questionnaire:
            raise NotFoundError("Questionnaire not found.")
        questions = self.questions.find(Question.questionnaire_id == questionnaire.id)

        passing_score = (
            requirement.passing_score if requirement.passing_score is not None
            else questionnaire.passing_score
        )

        # 1. Score
        try:
            score = score_submission(
                questions,
                answers,
                passing_score=passing_score,
                scoring_mode=questionnaire.scoring_mode,
                topics=questionnaire.topics,
            )
        except AnswerValidationError as e:
            raise ValidationFailedError(str(e))

        # 2. Requirement transition
        requirement = self.requirement_service.submit(user, requirement.id, background_tasks)

        # 3. Persist
        now = utcnow()
        submission = self.submissions.create(QuestionnaireSubmission(
            response_id=response.id,
            questionnaire_id=questionnaire.id,
            supplier_id=user.organization_id,
            answers=[a.as_dict() for a in score.answers],
            total_score=score.total_score,
            max_possible_score=score.max_possible_score,
            percentage_score=score.percentage_score,
            passed=score.passed,
            must_pass_failed=score.must_pass_failed,
            topic_scores=[t.as_dict() for t in score.topic_scores],
            completion_time_minutes=int((now - response.started_at).total_seconds() // 60),
            started_at=response.started_at,
            submitted_at=now,
        ))

        self.responses.update_where(response.id, {
            "submission_id": submission.id,
            "score": score.total_score,
            "max_score": score.max_possible_score,
            "passed": score.passed,
            "draft_answers": [],
            "submitted_at": now,
        })

        logger.info(
            f"Response {response.id} submitted: {score.total_score}/{score.max_possible_score} "
            f"({score.percentage_score}%), passed={score.passed}")

        record_audit(
            background_tasks,
            organization_id=user.organization_id,
            user_id=user.id,
            entity_type="QuestionnaireSubmission",
            entity_id=submission.id,
            action=AuditAction.CREATE,
            changes={"score": score.total_score, "passed": score.passed},
        )
        return submission, self.responses.get_by_id(response.id), requirement

    def submit_document_response(
        self,
        user: User,
        response_id: uuid.UUID,
        data: DocumentSubmit,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> Tuple[SupplierResponse, Requirement]:
        """Records a self-reported report grade for a document requirement."""
        response, requirement = self._load_open(user, response_id)

        if requirement.type != RequirementType.DOCUMENT:
            raise ValidationFailedError("This requirement is not a document requirement.")

        now = utcnow()
        passed = document_passes(
            data.grade,
            as_naive_utc(data.report_date),
            requirement.minimum_grade or "C",
            requirement.max_report_age_days or 90,
            now,
        )

        requirement = self.requirement_service.submit(user, requirement.id, background_tasks)

        self.responses.update_where(response.id, {
            "grade": data.grade.upper(),
            "passed": passed,
            "draft_answers": [],
            "submitted_at": now,
        })
        logger.info(f"Document response {response.id} submitted with grade {data.grade}")
        return self.responses.get_by_id(response.id), requirement
