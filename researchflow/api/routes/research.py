from __future__ import annotations

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status
from loguru import logger

from researchflow.api.deps import validate_provider, validate_topic, validate_user_id
from researchflow.errors import ForbiddenError, NotFoundError, QueueUnavailableError
from researchflow.models.research import LogStatus, RequestStatus, ResearchRequest, StepName
from researchflow.models.schemas import ResearchDetailResponse, SubmitResearchRequest
from researchflow.services import database as db
from researchflow.services import logger as log_service
from researchflow.services.queue import enqueue_research_job
from researchflow.services.workflow_logs import aggregate_workflow_logs

router = APIRouter(prefix="/api/research", tags=["research"])

QUEUE_UNAVAILABLE_MESSAGE = "Research job could not be queued; please submit the topic again"


@router.post("", response_model=ResearchRequest, status_code=status.HTTP_201_CREATED)
async def submit_research(body: SubmitResearchRequest):
    """Create a pending research request and enqueue its job."""
    topic = validate_topic(body.topic)
    user_id = validate_user_id(body.user_id)
    provider = validate_provider(body.provider)

    request = await db.create_research_request(topic, user_id, provider)
    try:
        enqueue_research_job(request.id, request.topic, provider)
    except Exception as e:
        # No job will ever pick this request up, so it cannot stay pending.
        logger.error(f"Failed to enqueue research job for request {request.id}: {e}")
        request = await db.update_request_status(request.id, RequestStatus.FAILED)
        await db.create_workflow_log(
            request.id, StepName.ERROR.value, LogStatus.FAILED, QUEUE_UNAVAILABLE_MESSAGE
        )
        raise QueueUnavailableError(QUEUE_UNAVAILABLE_MESSAGE) from e

    log_service.log_event(
        event_type="research_submitted",
        message="Research request created",
        request_id=str(request.id),
        provider=provider.value,
        topic=topic[:100],
    )
    return request


@router.get("", response_model=list[ResearchRequest])
async def list_research(user_id: Optional[str] = Query(default=None, alias="userId")):
    """List the caller's research requests, newest first."""
    owner = validate_user_id(user_id, source="userId query parameter")
    return await db.list_research_requests(owner)


@router.get("/{request_id}", response_model=ResearchDetailResponse)
async def get_research(
    request_id: UUID,
    user_id: Optional[str] = Query(default=None, alias="userId"),
):
    """Request, aggregated workflow timeline and result (if any)."""
    owner = validate_user_id(user_id, source="userId query parameter")

    request = await db.get_research_request(request_id)
    if request is None:
        raise NotFoundError("Research request not found")
    if owner is not None and request.user_id != owner:
        raise ForbiddenError("You are not authorized to access this research")

    logs = await db.get_workflow_logs(request_id)
    result = await db.get_research_result(request_id)
    return ResearchDetailResponse(
        request=request,
        logs=aggregate_workflow_logs(logs),
        result=result,
    )
