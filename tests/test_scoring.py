import uuid
from datetime import datetime

import pytest

from app.db.schema import Question, QuestionType, ScoringMode
from app.models.response import AnswerInput
from app.services.scoring import (
    AnswerValidationError, calculate_max_points, document_passes, is_passing, meets_minimum_grade,
    percentage, score_submission,
)

YES_NO = [
    {"id": "yes", "text": "Yes", "points": 10, "is_correct": True},
    {"id": "no", "text": "No", "points": 0, "is_correct": False},
]


def _question(order, max_points=10, must_pass=False, weight=1, type=QuestionType.SINGLE_CHOICE,
              options=None, topic_id=None):
    return Question(
        id=uuid.uuid4(),
        questionnaire_id=uuid.uuid4(),
        text=f"Question {order}",
        type=type,
        order=order,
        max_points=max_points,
        weight=weight,
        is_must_pass=must_pass,
        topic_id=topic_id,
        options=YES_NO if options is None else options,
    )


def _answer(question, *options, text=None):
    return AnswerInput(question_id=question.id, selected_options=list(options), text_answer=text)


def test_percentage_is_zero_without_maximum():
    assert percentage(0, 0) == 0.0
    assert percentage(19, 20) == 95.0
    assert percentage(1, 3) == 33.33


def test_calculate_max_points():
    assert calculate_max_points(QuestionType.SINGLE_CHOICE, YES_NO) == 10
    assert calculate_max_points(QuestionType.TEXT, []) == 1
    multi = [
        {"id": "a", "points": 5, "is_correct": True},
        {"id": "b", "points": 3, "is_correct": True},
        {"id": "c", "points": 4, "is_correct": False},
    ]
    assert calculate_max_points(QuestionType.MULTIPLE_CHOICE, multi) == 8


def test_passing_submission():
    q1, q2 = _question(1), _question(2)
    score = score_submission([q1, q2], [_answer(q1, "yes"), _answer(q2, "yes")], passing_score=70)

    assert score.total_score == 20
    assert score.max_possible_score == 20
    assert score.percentage_score == 100.0
    assert score.passed is True
    assert score.must_pass_failed is False


def test_failed_must_pass_overrides_high_score():
    """95% overall still fails when a must-pass question is missed."""
    questions = [_question(i) for i in range(1, 20)]
    critical = _question(20, max_points=10, must_pass=True,
                         options=[{"id": "yes", "points": 10, "is_correct": True},
                                  {"id": "partial", "points": 0, "is_correct": False}])
    answers = [_answer(q, "yes") for q in questions] + [_answer(critical, "partial")]

    score = score_submission(questions + [critical], answers, passing_score=70)

    assert score.percentage_score == 95.0
    assert score.must_pass_failed is True
    assert score.passed is False
    assert score.answers[-1].is_must_pass_met is False


def test_unanswered_questions_count_towards_maximum():
    q1, q2 = _question(1), _question(2, must_pass=True)
    score = score_submission([q1, q2], [_answer(q1, "yes")], passing_score=50)

    assert score.total_score == 10
    assert score.max_possible_score == 20
    assert score.must_pass_failed is True
    assert score.passed is False


def test_points_mode_compares_raw_total():
    q1, q2 = _question(1), _question(2)
    answers = [_answer(q1, "yes"), _answer(q2, "no")]

    by_points = score_submission([q1, q2], answers, passing_score=10, scoring_mode=ScoringMode.POINTS)
    by_percentage = score_submission([q1, q2], answers, passing_score=70)

    assert by_points.passed is True
    assert by_percentage.passed is False


def test_weight_multiplies_points():
    q1 = _question(1, weight=3)
    score = score_submission([q1], [_answer(q1, "yes")], passing_score=100)
    assert score.total_score == 30
    assert score.max_possible_score == 30


def test_multiple_choice_scores_correct_options_only():
    options = [
        {"id": "a", "points": 5, "is_correct": True},
        {"id": "b", "points": 3, "is_correct": True},
        {"id": "c", "points": 4, "is_correct": False},
    ]
    q = _question(1, max_points=8, type=QuestionType.MULTIPLE_CHOICE, options=options)
    score = score_submission([q], [_answer(q, "a", "c")], passing_score=50)
    assert score.total_score == 5


def test_text_answer_earns_full_points_when_filled():
    q = _question(1, max_points=2, type=QuestionType.TEXT, options=[])
    assert score_submission([q], [_answer(q, text="We use AES-256")], 100).total_score == 2
    assert score_submission([q], [_answer(q, text="   ")], 100).total_score == 0


def test_topic_breakdown():
    q1 = _question(1, topic_id="crypto")
    q2 = _question(2, topic_id="ops")
    topics = [{"id": "crypto", "name": "Cryptography"}, {"id": "ops", "name": "Operations"}]

    score = score_submission([q1, q2], [_answer(q1, "yes"), _answer(q2, "no")], 50, topics=topics)

    by_id = {t.topic_id: t for t in score.topic_scores}
    assert by_id["crypto"].percentage_score == 100.0
    assert by_id["ops"].percentage_score == 0.0


def test_unknown_question_is_rejected():
    q1 = _question(1)
    stranger = AnswerInput(question_id=uuid.uuid4(), selected_options=["yes"])
    with pytest.raises(AnswerValidationError):
        score_submission([q1], [stranger], passing_score=50)


def test_unknown_option_is_rejected():
    q1 = _question(1)
    with pytest.raises(AnswerValidationError):
        score_submission([q1], [_answer(q1, "maybe")], passing_score=50)


def test_single_choice_accepts_one_option():
    q1 = _question(1)
    with pytest.raises(AnswerValidationError):
        score_submission([q1], [_answer(q1, "yes", "no")], passing_score=50)


def test_document_grade_and_age():
    now = datetime(2026, 6, 30)
    assert meets_minimum_grade("B", "C")
    assert not meets_minimum_grade("D", "C")
    assert document_passes("A", datetime(2026, 6, 1), "C", 90, now)
    assert not document_passes("A", datetime(2026, 1, 1), "C", 90, now)
    assert not document_passes("E", datetime(2026, 6, 1), "C", 90, now)


def test_pass_uses_exact_ratio_not_rounded_percentage():
    """69.9995% is shown as 70.0 but stays below a 70% threshold."""
    q = _question(1, max_points=200000,
                  options=[{"id": "most", "points": 139999, "is_correct": True}])
    score = score_submission([q], [_answer(q, "most")], passing_score=70)

    assert score.percentage_score == 70.0
    assert score.passed is False
    assert is_passing(140000, 200000, 70, ScoringMode.PERCENTAGE, False) is True
