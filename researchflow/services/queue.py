from __future__ import annotations

from uuid import UUID

from researchflow.models.research import Provider
from researchflow.services import logger as log_service


def enqueue_research_job(request_id: UUID, topic: str, provider: Provider) -> str:
    """Send exactly one research job to the queue and return its task id."""
    from researchflow.tasks import process_research

    async_result = process_research.apply_async(
        kwargs={"request_id": str(request_id), "topic": topic, "provider": provider.value},
    )
    log_service.log_event(
        event_type="job_enqueued",
        message="Research job enqueued",
        request_id=str(request_id),
        task_id=async_result.id,
        provider=provider.value,
    )
    return async_result.id
