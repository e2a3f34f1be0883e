from __future__ import annotations

import math
from collections.abc import Iterable, Mapping
from datetime import datetime
from enum import Enum
from typing import Any, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TOPIC_MAX_LENGTH = 255
TOP_ARTICLE_LIMIT = 5


class CamelModel(BaseModel):
    """Snake_case in Python, camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Provider(str, Enum):
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


class RequestStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (RequestStatus.COMPLETED, RequestStatus.FAILED)


# processing -> processing is a retried job attempt re-entering the pipeline.
ALLOWED_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.PROCESSING, RequestStatus.FAILED}),
    RequestStatus.PROCESSING: frozenset(
        {RequestStatus.PROCESSING, RequestStatus.COMPLETED, RequestStatus.FAILED}
    ),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.FAILED: frozenset(),
}


def can_transition(current: RequestStatus, target: RequestStatus) -> bool:
    return target in ALLOWED_TRANSITIONS[current]


class StepName(str, Enum):
    """Recognized workflow steps, in timeline order."""

    INPUT_PARSING = "Input Parsing"
    DATA_GATHERING = "Data Gathering"
    AI_PROCESSING = "AI Processing"
    RESULT_PERSISTENCE = "Result Persistence"
    ERROR = "Error"

    @classmethod
    def parse(cls, value: str) -> Optional["StepName"]:
        """Return the matching step, or None for legacy/unrecognized names."""
        try:
            return cls(value)
        except ValueError:
            return None


class LogStatus(str, Enum):
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


def normalize_list(values: Any, limit: int) -> list[str]:
    """Trim entries, drop empty ones and keep at most ``limit``."""
    if values is None:
        return []
    if isinstance(values, str):
        values = [values]
    if isinstance(values, Mapping) or not isinstance(values, Iterable):
        raise ValueError(f"expected a list of strings, got {type(values).__name__}")
    cleaned = [str(v).strip() for v in values if v is not None]
    return [v for v in cleaned if v][:limit]


def clamp_score(value: Any) -> float:
    """Bound a score to [0, 10]; anything non-numeric is a ValueError."""
    if isinstance(value, bool):
        raise ValueError("score must be a number, got bool")
    try:
        score = float(value)
    except (TypeError, ValueError):
        raise ValueError(f"score must be a number, got {value!r}") from None
    if math.isnan(score):
        raise ValueError("score must be a number, got NaN")
    return max(0.0, min(10.0, score))


def truncate(value: Any, limit: int) -> Any:
    if isinstance(value, str):
        return value.strip()[:limit]
    return value


# --- AI output value objects ---


class ResearchPlan(CamelModel):
    primary_questions: list[str] = Field(description="Up to 5 key questions")
    search_terms: list[str] = Field(description="Up to 10 search terms")
    expected_findings: list[str] = Field(description="Up to 3 expected findings")
    research_depth: Literal["basic", "intermediate", "comprehensive"]

    @field_validator("primary_questions", mode="before")
    @classmethod
    def _bound_questions(cls, value: Any) -> list[str]:
        return _non_empty(normalize_list(value, 5))

    @field_validator("search_terms", mode="before")
    @classmethod
    def _bound_terms(cls, value: Any) -> list[str]:
        return _non_empty(normalize_list(value, 10))

    @field_validator("expected_findings", mode="before")
    @classmethod
    def _bound_findings(cls, value: Any) -> list[str]:
        return _non_empty(normalize_list(value, 3))

    @field_validator("research_depth", mode="before")
    @classmethod
    def _lower_depth(cls, value: Any) -> Any:
        return value.strip().lower() if isinstance(value, str) else value


def _non_empty(values: list[str]) -> list[str]:
    if not values:
        raise ValueError("must contain at least one non-empty entry")
    return values


class ArticleAnalysis(CamelModel):
    relevance_score: float = Field(description="Relevance to the topic, 0-10")
    credibility_score: float = Field(description="Source credibility, 0-10")
    main_topics: list[str] = Field(default_factory=list, description="Up to 5 topics")
    summary: str = Field(description="Concise summary, at most 500 characters")
    key_insights: list[str] = Field(default_factory=list, description="Up to 3 insights")

    @field_validator("relevance_score", "credibility_score", mode="before")
    @classmethod
    def _clamp_scores(cls, value: Any) -> float:
        return clamp_score(value)

    @field_validator("main_topics", mode="before")
    @classmethod
    def _bound_topics(cls, value: Any) -> list[str]:
        return normalize_list(value, 5)

    @field_validator("key_insights", mode="before")
    @classmethod
    def _bound_insights(cls, value: Any) -> list[str]:
        return normalize_list(value, 3)

    @field_validator("summary", mode="before")
    @classmethod
    def _bound_summary(cls, value: Any) -> Any:
        return truncate(value, 500)


class SummarySource(CamelModel):
    title: str
    relevance: str
    credibility: str

    @field_validator("title", "relevance", "credibility", mode="before")
    @classmethod
    def _as_text(cls, value: Any) -> Any:
        if isinstance(value, (int, float)):
            return str(value)
        return value


class ResearchSummary(CamelModel):
    executive_summary: str = Field(description="At most 500 characters")
    key_findings: list[str] = Field(default_factory=list, description="Up to 8 findings")
    recommendations: list[str] = Field(default_factory=list, description="Up to 5 recommendations")
    confidence_level: float = Field(description="Confidence in completeness, 0-10")
    sources: list[SummarySource] = Field(default_factory=list, description="Up to 5 sources")

    @field_validator("executive_summary", mode="before")
    @classmethod
    def _bound_summary(cls, value: Any) -> Any:
        return truncate(value, 500)

    @field_validator("key_findings", mode="before")
    @classmethod
    def _bound_findings(cls, value: Any) -> list[str]:
        return normalize_list(value, 8)

    @field_validator("recommendations", mode="before")
    @classmethod
    def _bound_recommendations(cls, value: Any) -> list[str]:
        return normalize_list(value, 5)

    @field_validator("confidence_level", mode="before")
    @classmethod
    def _clamp_confidence(cls, value: Any) -> float:
        return clamp_score(value)

    @field_validator("sources", mode="before")
    @classmethod
    def _bound_sources(cls, value: Any) -> Any:
        if isinstance(value, list):
            return value[:5]
        return value


# --- Articles ---


class Article(CamelModel):
    """A gathered article; the score fields are filled in by analysis."""

    title: str
    summary: str
    url: str
    source: str
    relevance_score: Optional[float] = None
    credibility_score: Optional[float] = None
    key_insights: Optional[list[str]] = None

    @property
    def is_analyzed(self) -> bool:
        return self.relevance_score is not None and self.credibility_score is not None

    def enrich(self, analysis: ArticleAnalysis) -> "Article":
        return self.model_copy(
            update={
                "summary": analysis.summary,
                "relevance_score": analysis.relevance_score,
                "credibility_score": analysis.credibility_score,
                "key_insights": list(analysis.key_insights),
            }
        )


# --- Persisted records ---


class ResearchRequest(CamelModel):
    id: UUID
    topic: str
    user_id: Optional[UUID] = None
    status: RequestStatus = RequestStatus.PENDING
    provider: Provider = Provider.ANTHROPIC
    created_at: datetime
    updated_at: datetime


class WorkflowLogEntry(CamelModel):
    id: UUID
    request_id: UUID
    step: str
    status: LogStatus
    message: str = ""
    timestamp: datetime


class ResultMetadata(CamelModel):
    provider: Provider
    total_analyzed: int
    processing_timestamp: datetime


class EnhancedResearchData(CamelModel):
    research_summary: ResearchSummary
    research_plan: ResearchPlan
    metadata: ResultMetadata


class ResearchResult(CamelModel):
    id: UUID
    request_id: UUID
    articles: list[Article]
    keywords: list[str]
    enhanced_data: Optional[EnhancedResearchData] = None
    created_at: datetime
