"""Research job pipeline.

One job takes a request through four stages, in order:

1. Input Parsing       - generate the research plan
2. Data Gathering      - fetch articles from the first working source
3. AI Processing       - analyze, rank, extract keywords, summarize
4. Result Persistence  - store the result and complete the request

Progress lives entirely in the request status and the workflow log, so a
retried attempt simply starts again from stage 1.
"""
from __future__ import annotations

from datetime import datetime, timezone
from uuid import UUID

from loguru import logger

from researchflow.agents.analysis import AnalysisEngine
from researchflow.errors import InvalidStatusTransitionError, NotFoundError
from researchflow.models.research import (
    EnhancedResearchData,
    LogStatus,
    Provider,
    RequestStatus,
    ResearchResult,
    ResultMetadata,
    StepName,
)
from researchflow.services import database as db
from researchflow.services import logger as log_service
from researchflow.tools import article_sources

UNKNOWN_ERROR_MESSAGE = "Unknown error occurred"


async def _log_step(
    request_id: UUID, step: StepName, status: LogStatus, message: str, **data
) -> None:
    await db.create_workflow_log(request_id, step.value, status, message)
    log_service.log_research_step(str(request_id), step.value, status.value, data or None)


async def run_research_job(
    request_id: UUID | str,
    topic: str,
    provider: Provider | str = Provider.ANTHROPIC,
    *,
    final_attempt: bool = True,
    engine: AnalysisEngine | None = None,
) -> ResearchResult | None:
    """Run every stage for one research request.

    On failure the error is re-raised for the queue's retry policy. Only the
    final attempt marks the request failed and appends the terminal ``Error``
    entry; earlier attempts record the failing stage and leave the request
    processing. Returns None without side effects when the request already
    reached a terminal status (a redelivered job).
    """
    request_id = UUID(str(request_id))
    provider = Provider(provider)

    request = await db.get_research_request(request_id)
    if request is None:
        raise NotFoundError(f"Research request {request_id} not found")
    if request.status.is_terminal:
        log_service.log_event(
            event_type="job_skipped",
            message="Research request already finished",
            request_id=str(request_id),
            status=request.status.value,
        )
        return None

    engine = engine or AnalysisEngine(provider, request_id=str(request_id))
    stage = StepName.INPUT_PARSING

    try:
        # Stage 1: input parsing and research planning
        await _log_step(
            request_id, stage, LogStatus.STARTED,
            "Validating research topic and generating research plan",
        )
        await db.update_request_status(request_id, RequestStatus.PROCESSING)
        plan = await engine.generate_research_plan(topic)
        await _log_step(
            request_id, stage, LogStatus.COMPLETED,
            f"Research plan generated with {len(plan.primary_questions)} key questions "
            f"and {len(plan.search_terms)} search terms",
            depth=plan.research_depth,
        )

        # Stage 2: data gathering
        stage = StepName.DATA_GATHERING
        await _log_step(
            request_id, stage, LogStatus.STARTED, "Fetching articles from external API"
        )
        raw_articles = await article_sources.fetch_articles(topic)
        await _log_step(
            request_id, stage, LogStatus.COMPLETED, f"Fetched {len(raw_articles)} articles"
        )

        # Stage 3: AI processing
        stage = StepName.AI_PROCESSING
        await _log_step(
            request_id, stage, LogStatus.STARTED,
            "Analyzing articles with AI for relevance and insights",
        )
        processed = await engine.process_articles(raw_articles, topic)
        await _log_step(
            request_id, stage, LogStatus.COMPLETED,
            f"AI analysis completed: {len(processed.processed_articles)} top articles selected, "
            f"{len(processed.keywords)} keywords generated",
        )

        # Stage 4: result persistence
        stage = StepName.RESULT_PERSISTENCE
        await _log_step(
            request_id, stage, LogStatus.STARTED, "Saving enhanced results to database"
        )
        enhanced = EnhancedResearchData(
            research_summary=processed.research_summary,
            research_plan=plan,
            metadata=ResultMetadata(
                provider=provider,
                total_analyzed=len(raw_articles),
                processing_timestamp=datetime.now(timezone.utc),
            ),
        )
        result = await db.create_research_result(
            request_id, processed.processed_articles, processed.keywords, enhanced
        )
        await db.update_request_status(request_id, RequestStatus.COMPLETED)
        await _log_step(
            request_id, stage, LogStatus.COMPLETED, "Enhanced AI results saved successfully"
        )
    except Exception as e:
        message = str(e) or UNKNOWN_ERROR_MESSAGE
        logger.error(
            f"Research job failed for request {request_id} at {stage.value} "
            f"(final_attempt={final_attempt}): {message}"
        )
        if final_attempt:
            try:
                await db.update_request_status(request_id, RequestStatus.FAILED)
            except InvalidStatusTransitionError as transition_error:
                # The request completed before a later write failed.
                logger.warning(str(transition_error))
            await _log_step(request_id, StepName.ERROR, LogStatus.FAILED, message)
        else:
            await _log_step(request_id, stage, LogStatus.FAILED, message)
        raise

    logger.info(f"Research job completed for request {request_id} using {provider.value}")
    return result
