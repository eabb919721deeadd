from typing import Optional, List
from uuid import UUID
from datetime import datetime
from sqlmodel import SQLModel, Field


class AnswerInput(SQLModel):
    """One answer as sent by the Supplier."""
    question_id: UUID
    selected_options: List[str] = Field(default_factory=list)
    text_answer: Optional[str] = Field(default=None, max_length=5000)


class DraftAnswers(SQLModel):
    answers: List[AnswerInput] = Field(default_factory=list)


class SubmitAnswers(SQLModel):
    answers: List[AnswerInput] = Field(min_length=1)


# ==========================================
# Read Models
# ==========================================


class ScoredAnswer(SQLModel):
    question_id: UUID
    selected_options: List[str] = []
    text_answer: Optional[str] = None
    points_earned: int
    max_points: int
    is_must_pass_met: Optional[bool] = None


class TopicScore(SQLModel):
    topic_id: str
    topic_name: str
    score: int
    max_score: int
    percentage_score: float


class SubmissionRead(SQLModel):
    id: UUID
    response_id: UUID
    questionnaire_id: UUID
    supplier_id: UUID
    answers: List[ScoredAnswer] = []
    total_score: int
    max_possible_score: int
    percentage_score: float
    passed: bool
    must_pass_failed: bool
    topic_scores: List[TopicScore] = []
    completion_time_minutes: int
    started_at: datetime
    submitted_at: datetime


class ResponseRead(SQLModel):
    id: UUID
    requirement_id: UUID
    supplier_id: UUID
    submission_id: Optional[UUID] = None
    score: Optional[int] = None
    max_score: Optional[int] = None
    passed: Optional[bool] = None
    grade: Optional[str] = None
    draft_answers: List[AnswerInput] = []
    reviewed_by_user_id: Optional[UUID] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    score_override: Optional[int] = None
    started_at: datetime
    submitted_at: Optional[datetime] = None


class SubmissionReview(SQLModel):
    """
    Submission plus the reviewer's annotations. The override is advisory:
    `effective_score` prefers it but the stored submission is untouched.
    """
    response: ResponseRead
    submission: Optional[SubmissionRead] = None
    effective_score: Optional[int] = None


class DocumentSubmit(SQLModel):
    """Self-reported result of an external security report."""
    grade: str = Field(regex="^[A-F]$", schema_extra={"examples": ["B"]})
    report_date: datetime = Field(description="Date the report was issued.")
