"""Tests for the queue processors wired to the orchestrator."""

from types import SimpleNamespace

import pytest

from gatekeeper.core.exceptions import PayloadValidationError
from gatekeeper.services.orchestrator import ScanSummary
from gatekeeper.services.queue import ANALYSIS_QUEUE, FULL_SCAN_JOB, PR_ANALYSIS_JOB, QueueRegistry
from gatekeeper.workers.processors import register_processors


class FakeOrchestrator:
    def __init__(self):
        self.calls = []

    def scan_repository(self, repo_id, ref=None, local_path=None):
        self.calls.append(("scan", repo_id, ref, local_path))
        return ScanSummary(repo_id=repo_id, source="local", files_analyzed=2)

    def analyze_pull_request(self, repo_id, pr_number, **kwargs):
        self.calls.append(("pr", repo_id, pr_number, kwargs))
        return SimpleNamespace(
            repo_id=repo_id, pr_number=pr_number, status="PASS", overall_risk=3, health_delta=None
        )


@pytest.fixture
def queue(settings):
    orchestrator = FakeOrchestrator()
    queue = register_processors(QueueRegistry(settings), orchestrator)
    queue.orchestrator = orchestrator
    return queue


def test_full_scan_job(queue):
    job = queue.enqueue(FULL_SCAN_JOB, {"repo_id": "acme/widgets", "ref": "main"})

    assert job.status == "completed"
    assert job.result["files_analyzed"] == 2
    assert queue.orchestrator.calls == [("scan", "acme/widgets", "main", None)]


def test_pr_analysis_job(queue):
    job = queue.enqueue(PR_ANALYSIS_JOB, {"repo_id": "acme/widgets", "pr_number": 4, "head_sha": "abc"})

    assert job.result == {
        "repo_id": "acme/widgets",
        "pr_number": 4,
        "status": "PASS",
        "overall_risk": 3,
        "health_delta": None,
    }
    _, _, _, kwargs = queue.orchestrator.calls[0]
    assert kwargs["head_sha"] == "abc"
    assert kwargs["ticket"] is None


@pytest.mark.parametrize(
    "payload",
    [
        {"pr_number": 4},
        {"repo_id": "widgets", "pr_number": 4},
        {"repo_id": "acme/widgets", "pr_number": 0},
        {"repo_id": "acme/widgets", "pr_number": "four"},
    ],
)
def test_invalid_pr_payload_is_rejected(queue, payload):
    with pytest.raises(PayloadValidationError):
        queue.enqueue(PR_ANALYSIS_JOB, payload)

    assert queue.orchestrator.calls == []
    assert queue.jobs[0].status == "failed"


def test_processors_attach_to_the_analysis_queue(settings):
    registry = QueueRegistry(settings)

    queue = register_processors(registry, FakeOrchestrator())

    assert queue is registry.get_queue(ANALYSIS_QUEUE)
