"""API dependencies."""

import logging
from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool

from gatekeeper.core.config import Settings, get_settings
from gatekeeper.schemas.analysis import JobResponse
from gatekeeper.services.queue import ANALYSIS_QUEUE, QueueRegistry
from gatekeeper.services.store import AnalysisStore

logger = logging.getLogger(__name__)


def get_registry(request: Request) -> QueueRegistry:
    return request.app.state.registry


def get_store(request: Request) -> AnalysisStore:
    return request.app.state.store


AppSettings = Annotated[Settings, Depends(get_settings)]
Registry = Annotated[QueueRegistry, Depends(get_registry)]
Store = Annotated[AnalysisStore, Depends(get_store)]


async def enqueue_job(registry: QueueRegistry, job_name: str, payload: dict[str, Any]) -> JobResponse:
    """Enqueue on the analysis queue without blocking the event loop.

    The ephemeral backend runs the job inside ``enqueue``, so a failing job
    surfaces here as a 500.
    """
    queue = registry.get_queue(ANALYSIS_QUEUE)
    try:
        job = await run_in_threadpool(queue.enqueue, job_name, payload)
    except Exception as e:
        logger.error(f"Job '{job_name}' for {payload.get('repo_id')} failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Job '{job_name}' failed: {e}",
        ) from e

    return JobResponse(
        job_id=job.id,
        queue=queue.name,
        name=job.name,
        status=job.status,
        backend=queue.backend,
    )
