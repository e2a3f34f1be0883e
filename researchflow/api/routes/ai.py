from __future__ import annotations

import json as _json
from datetime import datetime, timezone

from fastapi import APIRouter
from sse_starlette.sse import EventSourceResponse

from researchflow.agents.analysis import AnalysisEngine
from researchflow.api.deps import validate_provider, validate_topic
from researchflow.models.schemas import (
    KeywordsRequest,
    KeywordsResponse,
    ResearchPlanResponse,
    TopicRequest,
)
from researchflow.services import logger as log_service

router = APIRouter(prefix="/api/ai", tags=["ai"])


@router.post("/research-plan", response_model=ResearchPlanResponse)
async def research_plan(body: TopicRequest):
    """Generate a research plan without creating a research request."""
    topic = validate_topic(body.topic)
    provider = validate_provider(body.provider)

    plan = await AnalysisEngine(provider).generate_research_plan(topic)
    return ResearchPlanResponse(
        topic=topic,
        provider=provider.value,
        plan=plan,
        generated_at=datetime.now(timezone.utc),
    )


@router.post("/keywords", response_model=KeywordsResponse)
async def keywords(body: KeywordsRequest):
    topic = validate_topic(body.topic)
    provider = validate_provider(body.provider)

    result = await AnalysisEngine(provider).generate_keywords(topic, body.articles)
    return KeywordsResponse(
        topic=topic,
        provider=provider.value,
        keywords=result,
        generated_at=datetime.now(timezone.utc),
    )


@router.post("/stream-analysis")
async def stream_analysis(body: TopicRequest):
    """SSE endpoint that streams a research plan as it is written."""
    topic = validate_topic(body.topic)
    provider = validate_provider(body.provider)
    engine = AnalysisEngine(provider)

    async def event_generator():
        try:
            async for chunk in engine.stream_research_plan(topic):
                yield {"event": "chunk", "data": _json.dumps({"text": chunk})}
            yield {"event": "done", "data": "[DONE]"}
        except Exception as e:
            log_service.log_event(
                event_type="stream_error",
                message="Research plan stream failed",
                error=str(e),
                provider=provider.value,
            )
            yield {
                "event": "error",
                "data": _json.dumps({"error": "Failed to generate analysis"}),
            }

    return EventSourceResponse(event_generator())
