"""Celery entry point for durable queue jobs."""

import logging
from functools import lru_cache

from gatekeeper.core.celery import celery_app
from gatekeeper.core.config import get_settings
from gatekeeper.core.database import get_session_factory
from gatekeeper.core.exceptions import ConfigurationError
from gatekeeper.services.orchestrator import Orchestrator
from gatekeeper.services.queue import DurableQueue, QueueRegistry
from gatekeeper.workers.processors import register_processors

logger = logging.getLogger(__name__)


def celery_dispatch(queue_name: str, job_id: str, countdown: float = 0) -> None:
    """Send a job id to the workers listening on ``queue_name``."""
    run_job.apply_async(args=[queue_name, job_id], countdown=countdown or None, queue=queue_name)


@lru_cache
def get_worker_registry() -> QueueRegistry:
    """The registry of this worker process, with processors attached."""
    settings = get_settings()
    session_factory = get_session_factory()
    registry = QueueRegistry(settings, session_factory, dispatch=celery_dispatch)
    if registry.backend != "durable":
        raise ConfigurationError("Celery workers require the durable queue backend")
    register_processors(registry, Orchestrator.from_settings(settings, session_factory, registry.backend))
    return registry


@celery_app.task(bind=True, name="gatekeeper.workers.jobs.run_job")
def run_job(self, queue_name: str, job_id: str) -> dict:
    """
    Run one attempt of a durable job.

    Retries are scheduled by the queue itself, so this task never asks
    Celery to retry.
    """
    logger.info(f"Task {self.request.id}: job {job_id} on queue '{queue_name}'")
    queue = get_worker_registry().get_queue(queue_name)
    if not isinstance(queue, DurableQueue):
        raise ConfigurationError(f"Queue '{queue_name}' is not durable")

    job = queue.execute(job_id)
    return {
        "job_id": job_id,
        "status": job.status if job else "skipped",
        "attempts": job.attempts if job else 0,
    }
