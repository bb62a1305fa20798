"""Repository endpoints: trigger scans and analyses, read results."""

import json
import logging
from typing import Literal

from fastapi import APIRouter, HTTPException, Query, status
from fastapi.responses import StreamingResponse

from gatekeeper.api.deps import Registry, Store, enqueue_job
from gatekeeper.core.redis import get_last_event, subscribe_events
from gatekeeper.models.metrics_snapshot import METRIC_TYPES
from gatekeeper.schemas.analysis import (
    CodebaseFileDetailResponse,
    CodebaseFileResponse,
    JobResponse,
    MetricsResponse,
    PRAnalysisRequest,
    PullRequestResponse,
    PullRequestSummary,
    ScanRequest,
)
from gatekeeper.services.metrics_aggregator import MetricsAggregator
from gatekeeper.services.queue import FULL_SCAN_JOB, PR_ANALYSIS_JOB

router = APIRouter()
logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


@router.post("/{owner}/{name}/scans", response_model=JobResponse, status_code=status.HTTP_202_ACCEPTED)
async def trigger_scan(owner: str, name: str, registry: Registry, body: ScanRequest | None = None) -> JobResponse:
    """Queue a full scan of the repository."""
    ref = body.ref if body else None
    return await enqueue_job(registry, FULL_SCAN_JOB, {"repo_id": f"{owner}/{name}", "ref": ref})


@router.post(
    "/{owner}/{name}/pulls/{number}/analyses",
    response_model=JobResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def trigger_pull_request_analysis(
    owner: str,
    name: str,
    number: int,
    registry: Registry,
    body: PRAnalysisRequest | None = None,
) -> JobResponse:
    """Queue an analysis of one pull request."""
    if number < 1:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Invalid pull request number")
    payload = {"repo_id": f"{owner}/{name}", "pr_number": number}
    if body:
        payload.update(body.model_dump(exclude_none=True))
    return await enqueue_job(registry, PR_ANALYSIS_JOB, payload)


@router.get("/{owner}/{name}/pulls", response_model=list[PullRequestSummary])
def list_pull_requests(
    owner: str,
    name: str,
    store: Store,
    status_filter: Literal["PASS", "WARN", "BLOCK", "PENDING"] | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
) -> list[PullRequestSummary]:
    """Analyzed pull requests, newest first."""
    records = store.list_pull_requests(f"{owner}/{name}", status=status_filter, limit=limit)
    return [PullRequestSummary.model_validate(r) for r in records]


@router.get("/{owner}/{name}/pulls/{number}", response_model=PullRequestResponse)
def get_pull_request(owner: str, name: str, number: int, store: Store) -> PullRequestResponse:
    """Get the latest verdict for a pull request."""
    record = store.get_pull_request(f"{owner}/{name}", number)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Pull request not analyzed",
        )
    return PullRequestResponse.model_validate(record)


@router.get("/{owner}/{name}/files", response_model=list[CodebaseFileResponse])
def list_files(
    owner: str,
    name: str,
    store: Store,
    min_risk: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=500),
) -> list[CodebaseFileResponse]:
    """Files of the repository, riskiest first."""
    records = store.top_risk_files(f"{owner}/{name}", threshold=min_risk - 1, limit=limit)
    return [CodebaseFileResponse.model_validate(r) for r in records]


@router.get("/{owner}/{name}/files/{path:path}", response_model=CodebaseFileDetailResponse)
def get_file(
    owner: str,
    name: str,
    path: str,
    store: Store,
    pr_limit: int = Query(10, ge=1, le=100),
) -> CodebaseFileDetailResponse:
    """One file with its analysis history and the pull requests that changed it."""
    repo_id = f"{owner}/{name}"
    record = store.get_file_record(repo_id, path)
    if record is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="File not analyzed",
        )
    detail = CodebaseFileDetailResponse.model_validate(record)
    detail.recent_pull_requests = [
        PullRequestSummary.model_validate(pr) for pr in store.pull_requests_touching(repo_id, path, limit=pr_limit)
    ]
    return detail


@router.get("/{owner}/{name}/metrics", response_model=MetricsResponse, response_model_by_alias=True)
def get_metrics(
    owner: str,
    name: str,
    store: Store,
    trend_days: int = Query(0, ge=0, le=365),
) -> MetricsResponse:
    """Latest rollups of the repository; with ``trend_days`` also their history."""
    repo_id = f"{owner}/{name}"
    latest = store.latest_snapshots(repo_id)
    if not latest:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="No metrics computed yet",
        )

    trends = {}
    if trend_days:
        aggregator = MetricsAggregator(store)
        trends = {metric: aggregator.metric_trend(metric, repo_id, trend_days) for metric in METRIC_TYPES}

    def value(metric: str) -> float | None:
        return latest[metric].value if metric in latest else None

    return MetricsResponse(
        debt_ratio=value("debtRatio"),
        block_rate=value("blockRate"),
        hotspots=value("hotspots"),
        risk_reduced=value("riskReduced"),
        calculated_at=max(s.calculated_at for s in latest.values()),
        trends=trends,
    )


@router.get("/{owner}/{name}/events")
async def stream_events(owner: str, name: str) -> StreamingResponse:
    """
    Stream repository events via Server-Sent Events (SSE).

    The last published event is replayed first so late subscribers see the
    current state. The stream ends after a terminal event
    (scan:complete, scan:failed, pr:analyzed, pr:failed).
    """
    repo_id = f"{owner}/{name}"

    async def event_generator():
        try:
            last_event = await get_last_event(repo_id)
            if last_event:
                yield f"data: {last_event}\n\n"

            async for data in subscribe_events(repo_id):
                if data.startswith(":"):
                    yield data
                else:
                    yield f"data: {data}\n\n"
        except Exception as e:
            logger.error(f"Event stream for {repo_id} failed: {e}")
            error_data = json.dumps({"repo_id": repo_id, "event_type": "error", "message": str(e)})
            yield f"data: {error_data}\n\n"

    return StreamingResponse(
        event_generator(),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
