from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum

from pydantic import AliasChoices, BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class _CamelModel(BaseModel):
    # The review UI persists records in camelCase; accept both spellings.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AnnotationStatus(str, Enum):
    pending = 'pending'
    accepted = 'accepted'
    rejected = 'rejected'


class BoundingRect(_CamelModel):
    x1: float
    y1: float
    x2: float
    y2: float
    width: float
    height: float


class AnnotationCoord(_CamelModel):
    page_index: int
    bounding_rect: BoundingRect


class AnnotationColor(_CamelModel):
    rgb: tuple[float, float, float]
    hex: str
    soft: str


class Label(_CamelModel):
    id: str = ''
    name: str
    color: str = ''
    desc: str | None = None


class Rule(_CamelModel):
    id: str = ''
    name: str
    logic: str = ''


class RuleEvaluation(_CamelModel):
    rule_id: str
    passed: bool = Field(validation_alias=AliasChoices('pass', 'passed'), serialization_alias='pass')
    rationale: str = ''
    citations: list[str] = Field(default_factory=list)
    confidence: float | None = None


class Annotation(_CamelModel):
    id: str
    text: str
    label_id: str
    rationale: str = ''
    confidence: float | None = None
    status: AnnotationStatus = AnnotationStatus.pending
    coords: list[AnnotationCoord] | None = None
    color: AnnotationColor | None = None


class ReviewData(_CamelModel):
    annotations: list[Annotation] = Field(default_factory=list)
    rule_evaluations: list[RuleEvaluation] | None = None
    model_used: str | None = None
    processed_at: datetime | None = None
    input_tokens: int | None = None
    output_tokens: int | None = None


class ReviewBundle(_CamelModel):
    """Everything an export needs besides the document bytes."""

    review: ReviewData = Field(default_factory=ReviewData)
    labels: list[Label] = Field(default_factory=list)
    rules: list[Rule] = Field(default_factory=list)
    project_name: str | None = None
    document_name: str | None = None


class LabelCount(_CamelModel):
    label: str
    count: int = 0


class SummaryStats(_CamelModel):
    labels_count: int = 0
    rules_count: int = 0
    accepted_count: int = 0
    rejected_count: int = 0
    input_tokens: int | None = None
    output_tokens: int | None = None
    total_tokens: int | None = None
    annotation_counts: list[LabelCount] = Field(default_factory=list)


class SummaryPayload(_CamelModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    document_name: str
    project_name: str | None = None
    llm_model: str | None = Field(
        default=None,
        validation_alias=AliasChoices('llmModel', 'modelName', 'llm_model'),
        serialization_alias='llmModel',
    )
    generated_at: datetime = Field(default_factory=utcnow)
    version: str = '1.0'
    labels: list[Label] = Field(default_factory=list)
    stats: SummaryStats = Field(default_factory=SummaryStats)
    rules: list[Rule] | None = None
    rule_evaluations: list[RuleEvaluation] | None = None
