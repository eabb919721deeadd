import uuid
from typing import List, Optional, Tuple

from fastapi import BackgroundTasks
from loguru import logger
from sqlmodel import Session, col

from app.core.audit import record_audit
from app.core.errors import (
    InvalidTransitionError, NotEditableError, NotFoundError, ValidationFailedError,
)
from app.db.repository import Page, Repository, reject_nulls
from app.db.schema import (
    AuditAction, Question, Questionnaire, QuestionnaireStatus, QuestionnaireTemplate, ScoringMode, User,
)
from app.models.questionnaire import (
    QuestionCreate, QuestionnaireCreate, QuestionnaireUpdate, QuestionUpdate,
)
from app.services.scoring import calculate_max_points
from app.utils.dates import utcnow

QUESTIONNAIRE_REQUIRED_FIELDS = ("name", "passing_score", "scoring_mode")
QUESTION_REQUIRED_FIELDS = ("text", "order", "weight", "max_points", "is_must_pass")


class QuestionnaireService:
    """
    Company-owned questionnaires.
    Only drafts can be edited or deleted; only published ones can be assigned.
    """

    def __init__(self, session: Session):
        self.session = session
        self.questionnaires = Repository(session, Questionnaire)
        self.questions = Repository(session, Question)
        self.templates = Repository(session, QuestionnaireTemplate)

    def _audit(self, background_tasks, user: User, entity_id: uuid.UUID,
               action: AuditAction, changes: dict, entity_type: str = "Questionnaire"):
        record_audit(
            background_tasks,
            organization_id=user.organization_id,
            user_id=user.id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            changes=changes,
        )

    def get(self, company_id: uuid.UUID, questionnaire_id: uuid.UUID) -> Questionnaire:
        questionnaire = self.questionnaires.get_by_id(questionnaire_id)
        if not questionnaire or questionnaire.company_id != company_id:
            raise NotFoundError("Questionnaire not found.")
        return questionnaire

    def _get_editable(self, company_id: uuid.UUID, questionnaire_id: uuid.UUID) -> Questionnaire:
        questionnaire = self.get(company_id, questionnaire_id)
        if not questionnaire.is_editable:
            raise NotEditableError("Only draft questionnaires can be edited.")
        return questionnaire

    def list(
        self,
        company_id: uuid.UUID,
        status: Optional[QuestionnaireStatus] = None,
        page: Optional[Page] = None,
    ) -> Tuple[List[Questionnaire], int]:
        filters = dict(company_id=company_id, status=status)
        return (
            self.questionnaires.list(page=page, **filters),
            self.questionnaires.count(**filters),
        )

    def list_questions(self, questionnaire_id: uuid.UUID) -> List[Question]:
        questions = self.questions.find(Question.questionnaire_id == questionnaire_id)
        return sorted(questions, key=lambda q: (q.order, q.created_at))

    def _refresh_statistics(self, questionnaire_id: uuid.UUID):
        questions = self.list_questions(questionnaire_id)
        self.questionnaires.update_where(
            questionnaire_id,
            {
                "question_count": len(questions),
                "max_possible_score": sum(q.max_points * (q.weight or 1) for q in questions),
            },
        )

    # ==========================================================================
    # QUESTIONNAIRE
    # ==========================================================================

    def create(self, user: User, data: QuestionnaireCreate,
               background_tasks: Optional[BackgroundTasks] = None) -> Questionnaire:
        if data.template_id is not None:
            return self.create_from_template(
                user, data.template_id, data.name, background_tasks)

        questionnaire = Questionnaire(
            company_id=user.organization_id,
            name=data.name,
            description=data.description,
            passing_score=data.passing_score,
            scoring_mode=data.scoring_mode,
            topics=[t.model_dump() for t in data.topics],
        )
        questionnaire = self.questionnaires.create(questionnaire)
        logger.info(f"Questionnaire {questionnaire.id} created by company {user.organization_id}")

        self._audit(background_tasks, user, questionnaire.id, AuditAction.CREATE,
                    {"name": questionnaire.name})
        return questionnaire

    def create_from_template(self, user: User, template_id: uuid.UUID, name: Optional[str] = None,
                             background_tasks: Optional[BackgroundTasks] = None) -> Questionnaire:
        """
        Starts a draft questionnaire from a template.

        1. The template must be visible to the company; drafts only to their owner.
        2. Topics, description and the default passing score are copied.
        3. The template usage count goes up, which locks it against deletion.
        """
        template = self.templates.get_by_id(template_id)
        if not template or not template.is_visible_to(user.organization_id):
            raise NotFoundError("Template not found.")

        questionnaire = Questionnaire(
            company_id=user.organization_id,
            template_id=template.id,
            name=name or template.name,
            description=template.description,
            passing_score=template.default_passing_score,
            scoring_mode=ScoringMode.PERCENTAGE,
            topics=[dict(t) for t in template.topics or []],
        )
        questionnaire = self.questionnaires.create(questionnaire)

        self.templates.update_where(
            template.id, {"usage_count": QuestionnaireTemplate.usage_count + 1})
        logger.info(f"Questionnaire {questionnaire.id} created from template {template.id}")

        self._audit(background_tasks, user, questionnaire.id, AuditAction.CREATE,
                    {"name": questionnaire.name, "template_id": str(template.id)})
        return questionnaire

    def update(self, user: User, questionnaire_id: uuid.UUID, data: QuestionnaireUpdate,
               background_tasks: Optional[BackgroundTasks] = None) -> Questionnaire:
        questionnaire = self._get_editable(user.organization_id, questionnaire_id)

        values = data.model_dump(exclude_unset=True)
        reject_nulls(values, QUESTIONNAIRE_REQUIRED_FIELDS)
        if "topics" in values:
            values["topics"] = values["topics"] or []

        scoring_mode = values.get("scoring_mode", questionnaire.scoring_mode)
        passing_score = values.get("passing_score", questionnaire.passing_score)
        if scoring_mode == ScoringMode.PERCENTAGE and passing_score is not None and passing_score > 100:
            raise ValidationFailedError("A percentage passing score cannot exceed 100.")

        if not values:
            return questionnaire

        updated = self.questionnaires.update_where(
            questionnaire.id, values, Questionnaire.status == QuestionnaireStatus.DRAFT)
        if not updated:
            raise NotEditableError("Only draft questionnaires can be edited.")

        self._audit(background_tasks, user, questionnaire.id, AuditAction.UPDATE,
                    {"fields": sorted(values.keys())})
        return self.questionnaires.get_by_id(questionnaire.id)

    def delete(self, user: User, questionnaire_id: uuid.UUID,
               background_tasks: Optional[BackgroundTasks] = None) -> None:
        questionnaire = self._get_editable(user.organization_id, questionnaire_id)

        self.questions.delete_where(Question.questionnaire_id == questionnaire.id)
        self.questionnaires.delete(questionnaire)
        logger.info(f"Questionnaire {questionnaire_id} deleted")

        self._audit(background_tasks, user, questionnaire_id, AuditAction.DELETE, {})

    def publish(self, user: User, questionnaire_id: uuid.UUID,
                background_tasks: Optional[BackgroundTasks] = None) -> Questionnaire:
        """
        draft -> published. Needs at least one question; the statistics are
        recomputed so the published version carries its final maximum score.
        """
        questionnaire = self.get(user.organization_id, questionnaire_id)
        if questionnaire.status != QuestionnaireStatus.DRAFT:
            raise InvalidTransitionError("Cannot publish this questionnaire.")

        questions = self.list_questions(questionnaire.id)
        if not questions:
            raise ValidationFailedError(
                "A questionnaire needs at least one question to be published.")

        updated = self.questionnaires.update_where(
            questionnaire.id,
            {
                "status": QuestionnaireStatus.PUBLISHED,
                "published_at": utcnow(),
                "question_count": len(questions),
                "max_possible_score": sum(q.max_points * (q.weight or 1) for q in questions),
            },
            Questionnaire.status == QuestionnaireStatus.DRAFT,
        )
        if not updated:
            raise InvalidTransitionError("Cannot publish this questionnaire.")

        logger.info(f"Questionnaire {questionnaire.id} published")
        self._audit(background_tasks, user, questionnaire.id, AuditAction.STATUS_CHANGE,
                    {"from": "draft", "to": "published"})
        return self.questionnaires.get_by_id(questionnaire.id)

    def archive(self, user: User, questionnaire_id: uuid.UUID,
                background_tasks: Optional[BackgroundTasks] = None) -> Questionnaire:
        """published -> archived. Existing requirements keep their reference."""
        questionnaire = self.get(user.organization_id, questionnaire_id)
        if questionnaire.status != QuestionnaireStatus.PUBLISHED:
            raise InvalidTransitionError("Cannot archive this questionnaire.")

        updated = self.questionnaires.update_where(
            questionnaire.id,
            {"status": QuestionnaireStatus.ARCHIVED},
            Questionnaire.status == QuestionnaireStatus.PUBLISHED,
        )
        if not updated:
            raise InvalidTransitionError("Cannot archive this questionnaire.")

        self._audit(background_tasks, user, questionnaire.id, AuditAction.STATUS_CHANGE,
                    {"from": "published", "to": "archived"})
        return self.questionnaires.get_by_id(questionnaire.id)

    # ==========================================================================
    # QUESTIONS
    # ==========================================================================

    def _check_topic(self, questionnaire: Questionnaire, topic_id: Optional[str]):
        if topic_id and topic_id not in {t["id"] for t in questionnaire.topics or []}:
            raise ValidationFailedError(f"Unknown topic '{topic_id}'.")

    def _get_question(self, questionnaire: Questionnaire, question_id: uuid.UUID) -> Question:
        question = self.questions.get_by_id(question_id)
        if not question or question.questionnaire_id != questionnaire.id:
            raise NotFoundError("Question not found.")
        return question

    def add_question(self, user: User, questionnaire_id: uuid.UUID, data: QuestionCreate,
                     background_tasks: Optional[BackgroundTasks] = None) -> Question:
        questionnaire = self._get_editable(user.organization_id, questionnaire_id)
        self._check_topic(questionnaire, data.topic_id)

        options = [o.model_dump() for o in data.options]
        order = data.order or self.questions.count(
            col(Question.questionnaire_id) == questionnaire.id) + 1

        question = Question(
            questionnaire_id=questionnaire.id,
            topic_id=data.topic_id,
            text=data.text,
            description=data.description,
            help_text=data.help_text,
            type=data.type,
            order=order,
            weight=data.weight,
            max_points=data.max_points or calculate_max_points(data.type, options),
            is_must_pass=data.is_must_pass,
            options=options,
        )
        question = self.questions.create(question)
        self._refresh_statistics(questionnaire.id)

        self._audit(background_tasks, user, question.id, AuditAction.CREATE,
                    {"questionnaire_id": str(questionnaire.id)}, entity_type="Question")
        return question

    def update_question(self, user: User, questionnaire_id: uuid.UUID, question_id: uuid.UUID,
                        data: QuestionUpdate,
                        background_tasks: Optional[BackgroundTasks] = None) -> Question:
        questionnaire = self._get_editable(user.organization_id, questionnaire_id)
        question = self._get_question(questionnaire, question_id)

        values = data.model_dump(exclude_unset=True)
        reject_nulls(values, QUESTION_REQUIRED_FIELDS)
        if "topic_id" in values:
            self._check_topic(questionnaire, values["topic_id"])

        if "options" in values:
            values["options"] = values["options"] or []
            if question.type.requires_options and not values["options"]:
                raise ValidationFailedError("Choice questions need at least one option.")
            # Options changed: derive the maximum again unless it was given
            if "max_points" not in values:
                values["max_points"] = calculate_max_points(question.type, values["options"])

        for key, value in values.items():
            setattr(question, key, value)
        question = self.questions.update(question)
        self._refresh_statistics(questionnaire.id)

        self._audit(background_tasks, user, question.id, AuditAction.UPDATE,
                    {"fields": sorted(values.keys())}, entity_type="Question")
        return question

    def delete_question(self, user: User, questionnaire_id: uuid.UUID, question_id: uuid.UUID,
                        background_tasks: Optional[BackgroundTasks] = None) -> None:
        questionnaire = self._get_editable(user.organization_id, questionnaire_id)
        question = self._get_question(questionnaire, question_id)

        self.questions.delete(question)
        self._refresh_statistics(questionnaire.id)

        self._audit(background_tasks, user, question_id, AuditAction.DELETE,
                    {"questionnaire_id": str(questionnaire.id)}, entity_type="Question")
