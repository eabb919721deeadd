from typing import Optional, List
from uuid import UUID
from datetime import datetime
from sqlmodel import SQLModel, Field
from pydantic import model_validator

from app.db.schema import QuestionnaireStatus, ScoringMode, QuestionType


class Topic(SQLModel):
    id: str = Field(min_length=1, max_length=50, schema_extra={"examples": ["access-control"]})
    name: str = Field(min_length=1, max_length=200)
    description: Optional[str] = None
    order: int = 0


class QuestionOption(SQLModel):
    id: str = Field(min_length=1, max_length=50)
    text: str = Field(min_length=1, max_length=500)
    points: int = 0
    is_correct: bool = False
    order: int = 0


# ==========================================
# Questionnaire
# ==========================================


class QuestionnaireCreate(SQLModel):
    name: str = Field(
        min_length=2,
        max_length=200,
        schema_extra={"examples": ["ISO 27001 Supplier Self-Assessment"]},
    )
    description: Optional[str] = Field(default=None, max_length=2000)
    passing_score: int = Field(default=70, ge=0)
    scoring_mode: ScoringMode = Field(default=ScoringMode.PERCENTAGE)
    topics: List[Topic] = Field(default_factory=list)
    # Copies the template topics and passing score instead
    template_id: Optional[UUID] = None

    @model_validator(mode='after')
    def validate_passing_score(self) -> 'QuestionnaireCreate':
        if self.scoring_mode == ScoringMode.PERCENTAGE and self.passing_score > 100:
            raise ValueError("A percentage passing score cannot exceed 100.")
        return self


class QuestionnaireUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    passing_score: Optional[int] = Field(default=None, ge=0)
    scoring_mode: Optional[ScoringMode] = None
    topics: Optional[List[Topic]] = None


class QuestionnaireRead(SQLModel):
    id: UUID
    company_id: UUID
    template_id: Optional[UUID] = None
    name: str
    description: Optional[str] = None
    status: QuestionnaireStatus
    version: int
    passing_score: int
    scoring_mode: ScoringMode
    topics: List[Topic] = []
    question_count: int
    max_possible_score: int
    published_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


# ==========================================
# Question
# ==========================================


class QuestionCreate(SQLModel):
    """
    A single question. Choice types need options; `max_points` is derived
    from the options when omitted.
    """
    text: str = Field(min_length=1, max_length=2000)
    description: Optional[str] = Field(default=None, max_length=2000)
    help_text: Optional[str] = Field(default=None, max_length=2000)
    type: QuestionType
    topic_id: Optional[str] = None
    order: int = 0
    weight: int = Field(default=1, ge=1)
    max_points: Optional[int] = Field(default=None, ge=0)
    is_must_pass: bool = False
    options: List[QuestionOption] = Field(default_factory=list)

    @model_validator(mode='after')
    def validate_options(self) -> 'QuestionCreate':
        if self.type.requires_options and not self.options:
            raise ValueError(f"A '{self.type.value}' question needs at least one option.")
        return self


class QuestionUpdate(SQLModel):
    text: Optional[str] = Field(default=None, min_length=1, max_length=2000)
    description: Optional[str] = Field(default=None, max_length=2000)
    help_text: Optional[str] = Field(default=None, max_length=2000)
    topic_id: Optional[str] = None
    order: Optional[int] = None
    weight: Optional[int] = Field(default=None, ge=1)
    max_points: Optional[int] = Field(default=None, ge=0)
    is_must_pass: Optional[bool] = None
    options: Optional[List[QuestionOption]] = None


class QuestionRead(SQLModel):
    id: UUID
    questionnaire_id: UUID
    topic_id: Optional[str] = None
    text: str
    description: Optional[str] = None
    help_text: Optional[str] = None
    type: QuestionType
    order: int
    weight: int
    max_points: int
    is_must_pass: bool
    options: List[QuestionOption] = []


class QuestionnaireDetail(QuestionnaireRead):
    questions: List[QuestionRead] = []
