"""GitHub Webhook handlers."""

import hashlib
import hmac
import json
import logging

from fastapi import APIRouter, Header, HTTPException, Request, status
from pydantic import ValidationError

from gatekeeper.api.deps import AppSettings, Registry, enqueue_job
from gatekeeper.schemas.webhook import PullRequestEvent, PushEvent
from gatekeeper.services.queue import FULL_SCAN_JOB, PR_ANALYSIS_JOB

router = APIRouter()
logger = logging.getLogger(__name__)

PR_ACTIONS = ("opened", "synchronize", "reopened")


def verify_webhook_signature(payload: bytes, signature: str | None, secret: str) -> bool:
    """Verify GitHub webhook signature."""
    if not secret:
        logger.warning("Webhook secret not configured, skipping verification")
        return True

    if not signature:
        return False

    # GitHub sends signature as 'sha256=...'
    if signature.startswith("sha256="):
        signature = signature[7:]

    expected = hmac.new(
        secret.encode(),
        payload,
        hashlib.sha256,
    ).hexdigest()

    return hmac.compare_digest(expected, signature)


def _invalid_payload(event: str, error: ValidationError) -> HTTPException:
    logger.warning(f"Malformed {event} payload: {error.error_count()} errors")
    return HTTPException(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        detail=f"Malformed {event} payload",
    )


@router.post("/github")
async def github_webhook(
    request: Request,
    registry: Registry,
    settings: AppSettings,
    x_hub_signature_256: str | None = Header(None),
    x_github_event: str | None = Header(None),
    x_github_delivery: str | None = Header(None),
) -> dict:
    """
    Handle GitHub webhook events.

    Supported events:
    - pull_request: opened/synchronize/reopened queue a pr-analysis job
    - push: pushes to the default branch queue a full-scan job
    - ping: answered with pong
    """
    # Raw body for signature verification
    payload = await request.body()

    if not verify_webhook_signature(payload, x_hub_signature_256, settings.github_webhook_secret):
        logger.warning(f"Invalid webhook signature for delivery {x_github_delivery}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid signature",
        )

    try:
        data = json.loads(payload)
    except ValueError as e:
        logger.error(f"Failed to parse webhook payload: {e}")
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid JSON payload",
        )
    if not isinstance(data, dict):
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="Invalid JSON payload",
        )

    logger.info(f"Received GitHub webhook: event={x_github_event}, delivery={x_github_delivery}")

    if x_github_event == "pull_request":
        return await handle_pull_request_event(data, registry)
    elif x_github_event == "push":
        return await handle_push_event(data, registry)
    elif x_github_event == "ping":
        return {"status": "pong", "zen": data.get("zen")}
    else:
        logger.info(f"Ignoring unhandled event type: {x_github_event}")
        return {"status": "ignored", "event": x_github_event}


async def handle_pull_request_event(data: dict, registry: Registry) -> dict:
    """Queue an analysis for opened, synchronized or reopened pull requests."""
    try:
        event = PullRequestEvent.model_validate(data)
    except ValidationError as e:
        raise _invalid_payload("pull_request", e)

    pr = event.pull_request
    if event.action not in PR_ACTIONS:
        return {"status": "ignored", "action": event.action, "pr_number": pr.number}

    job = await enqueue_job(registry, PR_ANALYSIS_JOB, {
        "repo_id": event.repository.full_name,
        "pr_number": pr.number,
        "head_sha": pr.head.sha,
        "branch": pr.head.ref,
        "title": pr.title,
        "author": pr.user.login if pr.user else None,
    })
    logger.info(f"Queued analysis of {event.repository.full_name}#{pr.number} ({event.action}) as job {job.job_id}")
    return {
        "status": "queued",
        "action": event.action,
        "pr_number": pr.number,
        "job_id": job.job_id,
    }


async def handle_push_event(data: dict, registry: Registry) -> dict:
    """Queue a full scan for pushes to the default branch."""
    try:
        event = PushEvent.model_validate(data)
    except ValidationError as e:
        raise _invalid_payload("push", e)

    default_branch = event.repository.default_branch
    if event.ref != f"refs/heads/{default_branch}":
        logger.info(f"Ignoring push to non-default branch: {event.ref}")
        return {"status": "ignored", "reason": "non-default branch"}

    job = await enqueue_job(registry, FULL_SCAN_JOB, {
        "repo_id": event.repository.full_name,
        "ref": event.after,
    })
    return {
        "status": "queued",
        "repo_id": event.repository.full_name,
        "commit_sha": event.after,
        "job_id": job.job_id,
    }
