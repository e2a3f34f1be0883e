"""
Celery application for research jobs.

The API and the workers share this configuration. Late acknowledgement plus a
prefetch of one gives at-least-once delivery: a job whose worker dies is
redelivered rather than lost.

Run a worker with:
    celery -A researchflow.worker worker --loglevel=info
"""
from celery import Celery

from researchflow.config import settings

RESEARCH_QUEUE = "research"

app = Celery(
    "researchflow",
    broker=settings.redis_url,
    backend=settings.celery_result_backend or None,
    include=["researchflow.tasks"],
)

app.conf.update(
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_default_queue=RESEARCH_QUEUE,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    task_ignore_result=not settings.celery_result_backend,
)
