from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from researchflow.models.research import (
    Article,
    CamelModel,
    ResearchPlan,
    ResearchRequest,
    ResearchResult,
    WorkflowLogEntry,
)


# --- Requests ---


class SubmitResearchRequest(CamelModel):
    # Loosely typed so that bad values reach our own 400 validation.
    topic: Any = None
    provider: Any = None
    user_id: Any = None


class TopicRequest(CamelModel):
    topic: Any = None
    provider: Any = None


class KeywordsRequest(TopicRequest):
    articles: list[Article] = []


# --- Responses ---


class ResearchDetailResponse(CamelModel):
    request: ResearchRequest
    logs: list[WorkflowLogEntry]
    result: Optional[ResearchResult] = None


class ResearchPlanResponse(CamelModel):
    topic: str
    provider: str
    plan: ResearchPlan
    generated_at: datetime


class KeywordsResponse(CamelModel):
    topic: str
    provider: str
    keywords: list[str]
    generated_at: datetime


class ProviderInfo(CamelModel):
    id: str
    name: str
    model: str
    description: str


class ProvidersResponse(CamelModel):
    providers: list[ProviderInfo]
