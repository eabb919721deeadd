"""
Questionnaire and document requirement scoring.

Pure functions over questions and answers; nothing here touches the
database. The response service persists the result as an immutable
QuestionnaireSubmission.
"""
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Sequence

from app.db.schema import Question, QuestionType, ScoringMode


class AnswerValidationError(ValueError):
    pass


@dataclass
class ScoredAnswer:
    question_id: uuid.UUID
    selected_options: List[str]
    text_answer: Optional[str]
    points_earned: int
    max_points: int
    is_must_pass_met: Optional[bool] = None

    def as_dict(self) -> Dict[str, Any]:
        return {
            "question_id": str(self.question_id),
            "selected_options": list(self.selected_options),
            "text_answer": self.text_answer,
            "points_earned": self.points_earned,
            "max_points": self.max_points,
            "is_must_pass_met": self.is_must_pass_met,
        }


@dataclass
class TopicScore:
    topic_id: str
    topic_name: str
    score: int = 0
    max_score: int = 0

    @property
    def percentage_score(self) -> float:
        return percentage(self.score, self.max_score)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "topic_id": self.topic_id,
            "topic_name": self.topic_name,
            "score": self.score,
            "max_score": self.max_score,
            "percentage_score": self.percentage_score,
        }


@dataclass
class SubmissionScore:
    answers: List[ScoredAnswer] = field(default_factory=list)
    topic_scores: List[TopicScore] = field(default_factory=list)
    total_score: int = 0
    max_possible_score: int = 0
    percentage_score: float = 0.0
    must_pass_failed: bool = False
    passed: bool = False


def percentage(score: int, max_score: int) -> float:
    """score / max * 100, rounded to two decimals. 0 when max is 0."""
    if max_score <= 0:
        return 0.0
    return round(score / max_score * 100, 2)


def calculate_max_points(question_type: QuestionType, options: Sequence[Dict[str, Any]]) -> int:
    """
    Default `max_points` for a question:
    best option for single choice / yes-no, sum of positive correct options
    for multiple choice, 1 for text. Never below 1.
    """
    if not options:
        return 1

    if question_type in (QuestionType.SINGLE_CHOICE, QuestionType.YES_NO):
        best = max(int(o.get("points", 0)) for o in options)
    elif question_type == QuestionType.MULTIPLE_CHOICE:
        best = sum(int(o.get("points", 0)) for o in options
                   if o.get("is_correct") and int(o.get("points", 0)) > 0)
    else:
        best = 0

    return best if best > 0 else 1


def validate_answer(question: Question, selected_options: Sequence[str], text_answer: Optional[str]):
    option_ids = {o["id"] for o in question.options or []}

    if question.type in (QuestionType.SINGLE_CHOICE, QuestionType.YES_NO):
        if len(selected_options) > 1:
            raise AnswerValidationError(
                f"Question {question.id} accepts a single option.")
    if any(opt not in option_ids for opt in selected_options):
        raise AnswerValidationError(f"Unknown option for question {question.id}.")
    if question.type == QuestionType.TEXT and selected_options:
        raise AnswerValidationError(f"Question {question.id} expects a text answer.")


def score_question(question: Question, selected_options: Sequence[str],
                   text_answer: Optional[str]) -> int:
    """Raw (unweighted) points earned for one answer."""
    if question.type == QuestionType.TEXT:
        return question.max_points if (text_answer or "").strip() else 0

    if not selected_options:
        return 0

    options = {o["id"]: o for o in question.options or []}

    if question.type in (QuestionType.SINGLE_CHOICE, QuestionType.YES_NO):
        chosen = options.get(selected_options[0])
        return int(chosen.get("points", 0)) if chosen else 0

    # Multiple choice: correct selections only
    selected = set(selected_options)
    return sum(int(o.get("points", 0)) for oid, o in options.items()
               if oid in selected and o.get("is_correct"))


def score_submission(
    questions: Iterable[Question],
    answers: Iterable[Any],
    passing_score: int,
    scoring_mode: ScoringMode = ScoringMode.PERCENTAGE,
    topics: Optional[Sequence[Dict[str, Any]]] = None,
) -> SubmissionScore:
    """
    Scores a full submission.

    1. Every question counts towards the maximum; unanswered ones earn 0
       and, if must-pass, are unmet.
    2. Points and maxima are multiplied by the question weight.
    3. A must-pass question is met only with full points.
    4. passed = threshold reached AND no must-pass question failed. The
       threshold is compared with the percentage or the raw total depending
       on the scoring mode.
    """
    questions = list(questions)
    by_id = {q.id: q for q in questions}

    answer_map: Dict[uuid.UUID, Any] = {}
    for answer in answers:
        question_id = answer.question_id
        if not isinstance(question_id, uuid.UUID):
            question_id = uuid.UUID(str(question_id))
        if question_id not in by_id:
            raise AnswerValidationError(f"Unknown question {question_id}.")
        answer_map[question_id] = answer

    topic_scores: Dict[str, TopicScore] = {
        t["id"]: TopicScore(topic_id=t["id"], topic_name=t.get("name", t["id"]))
        for t in topics or []
    }

    result = SubmissionScore()
    for question in sorted(questions, key=lambda q: q.order):
        answer = answer_map.get(question.id)
        selected = list(getattr(answer, "selected_options", None) or [])
        text_answer = getattr(answer, "text_answer", None)

        if answer is not None:
            validate_answer(question, selected, text_answer)

        raw_points = score_question(question, selected, text_answer) if answer is not None else 0
        weight = question.weight or 1

        must_pass_met = None
        if question.is_must_pass:
            must_pass_met = raw_points >= question.max_points
            if not must_pass_met:
                result.must_pass_failed = True

        scored = ScoredAnswer(
            question_id=question.id,
            selected_options=selected,
            text_answer=text_answer,
            points_earned=raw_points * weight,
            max_points=question.max_points * weight,
            is_must_pass_met=must_pass_met,
        )
        result.answers.append(scored)
        result.total_score += scored.points_earned
        result.max_possible_score += scored.max_points

        topic = topic_scores.get(question.topic_id) if question.topic_id else None
        if topic is not None:
            topic.score += scored.points_earned
            topic.max_score += scored.max_points

    result.topic_scores = [t for t in topic_scores.values() if t.max_score > 0]
    result.percentage_score = percentage(result.total_score, result.max_possible_score)
    result.passed = is_passing(
        result.total_score, result.max_possible_score, passing_score, scoring_mode,
        result.must_pass_failed)
    return result


def is_passing(total_score: int, max_score: int, passing_score: int,
               scoring_mode: ScoringMode, must_pass_failed: bool) -> bool:
    """
    Percentage mode compares the exact ratio; the stored percentage is
    rounded for display only.
    """
    if must_pass_failed:
        return False
    if scoring_mode == ScoringMode.POINTS:
        return total_score >= passing_score
    if max_score <= 0:
        return passing_score <= 0
    return total_score * 100 >= passing_score * max_score


# ==============================================================================
# DOCUMENT REQUIREMENTS
# ==============================================================================

GRADE_ORDER = "ABCDEF"


def meets_minimum_grade(grade: str, minimum_grade: str) -> bool:
    """'A' is best. A grade passes when it is at least as good as the minimum."""
    return GRADE_ORDER.index(grade.upper()) <= GRADE_ORDER.index(minimum_grade.upper())


def report_age_days(report_date, now) -> int:
    return (now.date() - report_date.date()).days


def document_passes(grade: str, report_date, minimum_grade: str,
                    max_report_age_days: int, now) -> bool:
    return (meets_minimum_grade(grade, minimum_grade)
            and 0 <= report_age_days(report_date, now) <= max_report_age_days)
