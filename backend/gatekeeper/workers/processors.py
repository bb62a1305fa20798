"""Queue processors for the analysis job kinds."""

import logging
from typing import Any

from gatekeeper.schemas.analysis import FullScanPayload, PRAnalysisPayload, parse_payload
from gatekeeper.services.orchestrator import Orchestrator
from gatekeeper.services.queue import (
    ANALYSIS_QUEUE,
    FULL_SCAN_JOB,
    PR_ANALYSIS_JOB,
    Job,
    JobQueue,
    QueueRegistry,
)

logger = logging.getLogger(__name__)


def register_processors(registry: QueueRegistry, orchestrator: Orchestrator) -> JobQueue:
    """Attach the full-scan and pr-analysis processors to the analysis queue."""
    queue = registry.get_queue(ANALYSIS_QUEUE)

    def full_scan(job: Job) -> dict[str, Any]:
        payload = parse_payload(FullScanPayload, job.payload)
        logger.info(f"Job {job.id}: full scan of {payload.repo_id}")
        summary = orchestrator.scan_repository(payload.repo_id, ref=payload.ref, local_path=payload.local_path)
        return summary.to_dict()

    def pr_analysis(job: Job) -> dict[str, Any]:
        payload = parse_payload(PRAnalysisPayload, job.payload)
        logger.info(f"Job {job.id}: analysis of {payload.repo_id}#{payload.pr_number}")
        record = orchestrator.analyze_pull_request(
            payload.repo_id,
            payload.pr_number,
            head_sha=payload.head_sha,
            ticket=payload.ticket,
            title=payload.title,
            author=payload.author,
            branch=payload.branch,
        )
        return {
            "repo_id": record.repo_id,
            "pr_number": record.pr_number,
            "status": record.status,
            "overall_risk": record.overall_risk,
            "health_delta": record.health_delta,
        }

    queue.register_processor(FULL_SCAN_JOB, full_scan)
    queue.register_processor(PR_ANALYSIS_JOB, pr_analysis)
    return queue
