"""Celery task that runs one research job, retried with exponential backoff."""
import asyncio
from typing import Any, Dict, Optional

from loguru import logger

from researchflow import llm_client
from researchflow.agents.analysis import AnalysisEngine
from researchflow.agents.orchestrator import run_research_job
from researchflow.config import settings
from researchflow.services import database as db
from researchflow.worker import app

PROCESS_RESEARCH_TASK = "researchflow.tasks.process_research"


def backoff_seconds(retries: int) -> int:
    """Delay before the next attempt: base, 2*base, 4*base, ..."""
    return settings.job_backoff_base_seconds * (2 ** retries)


async def _run_attempt(request_id: str, topic: str, provider: str, final_attempt: bool) -> Optional[str]:
    try:
        # A fresh provider client per attempt: SDK connections are bound to the loop.
        engine = AnalysisEngine(
            provider, request_id=request_id, llm=llm_client.get_client(provider)
        )
        result = await run_research_job(
            request_id, topic, provider, final_attempt=final_attempt, engine=engine
        )
        return str(result.id) if result else None
    finally:
        # Each attempt runs in a fresh event loop; the pool must not outlive it.
        await db.close_pool()


@app.task(
    bind=True,
    name=PROCESS_RESEARCH_TASK,
    max_retries=max(settings.job_max_attempts - 1, 0),
)
def process_research(self, request_id: str, topic: str, provider: str = "anthropic") -> Dict[str, Any]:
    """
    Run the research pipeline for one request.

    Args:
        request_id: ResearchRequest UUID string
        topic: Research topic
        provider: "anthropic" or "openai"

    Returns:
        Dict with the request id and the stored result id
    """
    attempt = self.request.retries + 1
    final_attempt = self.request.retries >= self.max_retries
    logger.info(
        f"Starting research job for request {request_id} "
        f"(attempt {attempt}/{self.max_retries + 1})"
    )

    try:
        result_id = asyncio.run(_run_attempt(request_id, topic, provider, final_attempt))
    except Exception as e:
        if final_attempt:
            logger.error(f"Research job for request {request_id} abandoned after {attempt} attempts: {e}")
            raise
        countdown = backoff_seconds(self.request.retries)
        logger.warning(f"Research job for request {request_id} failed, retrying in {countdown}s: {e}")
        raise self.retry(exc=e, countdown=countdown)

    return {"request_id": request_id, "result_id": result_id}
