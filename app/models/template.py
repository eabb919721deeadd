from typing import Optional, List
from uuid import UUID
from datetime import datetime
from sqlmodel import SQLModel, Field

from app.db.schema import TemplateCategory, TemplateVisibility


class TemplateTopic(SQLModel):
    # Generated when omitted
    id: Optional[str] = Field(default=None, max_length=50)
    name: str = Field(min_length=1, max_length=200, schema_extra={"examples": ["Access Control"]})
    description: Optional[str] = None


# ==========================================
# Template
# ==========================================


class TemplateCreate(SQLModel):
    name: str = Field(
        min_length=2,
        max_length=200,
        schema_extra={"examples": ["Vendor Cloud Security Baseline"]},
    )
    description: Optional[str] = Field(default=None, max_length=2000)
    category: TemplateCategory = Field(default=TemplateCategory.CUSTOM)
    version: str = Field(default="1.0", max_length=20)
    default_passing_score: int = Field(default=70, ge=0, le=100)
    estimated_minutes: int = Field(default=30, ge=0)
    topics: List[TemplateTopic] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)


class TemplateUpdate(SQLModel):
    name: Optional[str] = Field(default=None, min_length=2, max_length=200)
    description: Optional[str] = Field(default=None, max_length=2000)
    version: Optional[str] = Field(default=None, max_length=20)
    default_passing_score: Optional[int] = Field(default=None, ge=0, le=100)
    estimated_minutes: Optional[int] = Field(default=None, ge=0)
    topics: Optional[List[TemplateTopic]] = None
    tags: Optional[List[str]] = None


class TemplatePublish(SQLModel):
    visibility: TemplateVisibility = Field(schema_extra={"examples": ["local"]})


class TemplateInstantiate(SQLModel):
    """Creates a draft questionnaire pre-filled from the template."""
    name: Optional[str] = Field(
        default=None,
        min_length=2,
        max_length=200,
        description="Defaults to the template name.",
    )


class TopicRead(SQLModel):
    id: str
    name: str
    description: Optional[str] = None
    order: int = 0


class TemplateRead(SQLModel):
    id: UUID
    name: str
    description: Optional[str] = None
    category: TemplateCategory
    version: str
    is_system: bool
    created_by_org_id: Optional[UUID] = None
    visibility: TemplateVisibility
    default_passing_score: int
    estimated_minutes: int
    topics: List[TopicRead] = []
    tags: List[str] = []
    usage_count: int
    published_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
