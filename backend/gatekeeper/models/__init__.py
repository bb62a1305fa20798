"""SQLAlchemy models."""

from gatekeeper.models.analysis_job import AnalysisJob
from gatekeeper.models.codebase_file import CodebaseFile
from gatekeeper.models.metrics_snapshot import MetricsSnapshot
from gatekeeper.models.pull_request import PullRequest

__all__ = [
    "AnalysisJob",
    "CodebaseFile",
    "MetricsSnapshot",
    "PullRequest",
]
