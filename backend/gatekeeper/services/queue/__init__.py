"""Job queues: durable (Celery + database) or ephemeral (in-memory)."""

from gatekeeper.services.queue.base import (
    DEFAULT_PROCESSOR,
    Job,
    JobQueue,
    Processor,
    QueueStats,
)
from gatekeeper.services.queue.durable import DurableQueue
from gatekeeper.services.queue.ephemeral import EphemeralQueue
from gatekeeper.services.queue.registry import QueueRegistry

ANALYSIS_QUEUE = "analysis"
FULL_SCAN_JOB = "full-scan"
PR_ANALYSIS_JOB = "pr-analysis"

__all__ = [
    "ANALYSIS_QUEUE",
    "DEFAULT_PROCESSOR",
    "DurableQueue",
    "EphemeralQueue",
    "FULL_SCAN_JOB",
    "Job",
    "JobQueue",
    "PR_ANALYSIS_JOB",
    "Processor",
    "QueueRegistry",
    "QueueStats",
]
