"""Celery configuration and app."""

from celery import Celery

from gatekeeper.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "gatekeeper",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",

    # Timezone
    timezone="UTC",
    enable_utc=True,

    # Task settings
    task_track_started=True,
    task_time_limit=settings.job_timeout_seconds + 5 * 60,
    task_soft_time_limit=settings.job_timeout_seconds,

    # Result settings
    result_expires=3600,

    # Worker settings
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.queue_concurrency,

    # Task routing: each job queue maps onto a Celery queue of the same name
    task_routes={
        "gatekeeper.workers.jobs.*": {"queue": "analysis"},
    },
    task_default_queue="default",

    # Task acknowledgement
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Register tasks explicitly so import order stays under our control.
import gatekeeper.workers.jobs  # noqa: F401, E402
