"""Persistence for analysis results.

Upserts keyed by (repo_id, path) and (repo_id, pr_number), append-only
inserts for metrics snapshots. Every method opens its own session through
``session_scope`` so callers on worker threads never share one.
"""

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import func, select

from gatekeeper.core.database import SessionFactory, session_scope
from gatekeeper.models import CodebaseFile, MetricsSnapshot, PullRequest
from gatekeeper.models.base import utcnow
from gatekeeper.services.complexity import health_score
from gatekeeper.services.dependency_graph import CouplingMetrics
from gatekeeper.services.risk import FileAssessment

logger = logging.getLogger(__name__)

DEFAULT_FILE_HISTORY_LIMIT = 20

PULL_REQUEST_FIELDS = frozenset({
    "title", "author", "branch", "head_sha", "status", "health_current",
    "health_delta", "overall_risk", "analysis_results", "block_reasons",
    "files_changed", "summary", "analyzed_at",
})


def _snapshot_of(record: CodebaseFile) -> dict[str, Any]:
    analyzed_at = record.last_analyzed_at
    return {
        "analyzed_at": analyzed_at.isoformat() if analyzed_at else None,
        "complexity": record.complexity,
        "maintainability": record.maintainability,
        "loc": record.loc,
        "churn": record.churn,
        "risk": record.risk,
    }


class AnalysisStore:
    """SQLAlchemy-backed store for file records, PR verdicts and metrics."""

    def __init__(self, session_factory: SessionFactory, file_history_limit: int = DEFAULT_FILE_HISTORY_LIMIT):
        self.session_factory = session_factory
        self.file_history_limit = file_history_limit

    # Codebase files

    def upsert_file(
        self,
        repo_id: str,
        assessment: FileAssessment,
        coupling: CouplingMetrics | None = None,
        analyzed_at: datetime | None = None,
    ) -> CodebaseFile:
        """Insert or update the record for one file.

        The previous state of an existing record is pushed onto its history,
        which keeps only the most recent ``file_history_limit`` entries.
        """
        report, churn, risk = assessment.report, assessment.churn, assessment.risk
        with session_scope(self.session_factory) as session:
            record = session.execute(
                select(CodebaseFile).where(
                    CodebaseFile.repo_id == repo_id,
                    CodebaseFile.path == report.file_id,
                )
            ).scalar_one_or_none()

            if record is None:
                record = CodebaseFile(repo_id=repo_id, path=report.file_id, history=[])
                session.add(record)
            else:
                history = list(record.history or []) + [_snapshot_of(record)]
                record.history = history[-self.file_history_limit:] if self.file_history_limit > 0 else []

            record.language = report.language
            record.loc = report.loc
            record.complexity = report.cyclomatic_complexity
            record.maintainability = report.maintainability_index
            record.functions = [
                {"name": f.name, "complexity": f.complexity, "loc": f.loc, "start_line": f.start_line}
                for f in report.functions
            ]
            record.dependencies = list(report.dependencies)
            record.churn = churn.commit_count
            record.churn_window_days = churn.window_days
            record.primary_author = churn.primary_author
            record.risk = risk.value
            record.risk_category = risk.category
            if coupling is not None:
                record.afferent_coupling = coupling.afferent
                record.efferent_coupling = coupling.efferent
                record.instability = coupling.instability
            record.last_analyzed_at = analyzed_at or utcnow()
            session.flush()
            return record

    def get_file_record(self, repo_id: str, path: str) -> CodebaseFile | None:
        with session_scope(self.session_factory) as session:
            return session.execute(
                select(CodebaseFile).where(CodebaseFile.repo_id == repo_id, CodebaseFile.path == path)
            ).scalar_one_or_none()

    def get_file_records(self, repo_id: str) -> list[CodebaseFile]:
        with session_scope(self.session_factory) as session:
            return list(session.execute(
                select(CodebaseFile).where(CodebaseFile.repo_id == repo_id).order_by(CodebaseFile.path)
            ).scalars())

    def get_baselines(self, repo_id: str, paths: list[str]) -> dict[str, float]:
        """Health score of the latest record for each path that has one."""
        if not paths:
            return {}
        with session_scope(self.session_factory) as session:
            rows = session.execute(
                select(CodebaseFile.path, CodebaseFile.complexity, CodebaseFile.maintainability).where(
                    CodebaseFile.repo_id == repo_id,
                    CodebaseFile.path.in_(paths),
                )
            ).all()
        return {path: health_score(cc, mi) for path, cc, mi in rows}

    def top_risk_files(self, repo_id: str, threshold: int, limit: int) -> list[CodebaseFile]:
        """Files with risk above the threshold, riskiest first."""
        with session_scope(self.session_factory) as session:
            return list(session.execute(
                select(CodebaseFile)
                .where(CodebaseFile.repo_id == repo_id, CodebaseFile.risk > threshold)
                .order_by(CodebaseFile.risk.desc(), CodebaseFile.path)
                .limit(limit)
            ).scalars())

    def mean_risk(self, repo_id: str) -> tuple[float, int]:
        """Mean risk and number of tracked files."""
        with session_scope(self.session_factory) as session:
            avg, count = session.execute(
                select(func.avg(CodebaseFile.risk), func.count(CodebaseFile.id)).where(
                    CodebaseFile.repo_id == repo_id
                )
            ).one()
        return float(avg or 0.0), int(count or 0)

    # Pull requests

    def upsert_pull_request(self, repo_id: str, pr_number: int, **fields: Any) -> PullRequest:
        """Insert or overwrite the record for one pull request.

        Fields not passed keep their stored value; passed fields replace it.
        """
        unknown = set(fields) - PULL_REQUEST_FIELDS
        if unknown:
            raise ValueError(f"Unknown pull request fields: {sorted(unknown)}")

        with session_scope(self.session_factory) as session:
            record = session.execute(
                select(PullRequest).where(PullRequest.repo_id == repo_id, PullRequest.pr_number == pr_number)
            ).scalar_one_or_none()
            if record is None:
                record = PullRequest(repo_id=repo_id, pr_number=pr_number)
                session.add(record)
            for name, value in fields.items():
                setattr(record, name, value)
            session.flush()
            return record

    def get_pull_request(self, repo_id: str, pr_number: int) -> PullRequest | None:
        with session_scope(self.session_factory) as session:
            return session.execute(
                select(PullRequest).where(PullRequest.repo_id == repo_id, PullRequest.pr_number == pr_number)
            ).scalar_one_or_none()

    def list_pull_requests(
        self,
        repo_id: str,
        since: datetime | None = None,
        status: str | None = None,
        limit: int | None = None,
    ) -> list[PullRequest]:
        """Pull requests analyzed since a point in time, newest first.

        Records never analyzed sort last.
        """
        query = select(PullRequest).where(PullRequest.repo_id == repo_id)
        if since is not None:
            query = query.where(PullRequest.analyzed_at >= since)
        if status is not None:
            query = query.where(PullRequest.status == status)
        query = query.order_by(PullRequest.analyzed_at.desc().nulls_last(), PullRequest.pr_number.desc())
        if limit is not None:
            query = query.limit(limit)
        with session_scope(self.session_factory) as session:
            return list(session.execute(query).scalars())

    def pull_requests_touching(self, repo_id: str, path: str, limit: int = 10) -> list[PullRequest]:
        """The newest pull requests whose changed files include ``path``."""
        touching = []
        for record in self.list_pull_requests(repo_id):
            if path in (record.files_changed or []):
                touching.append(record)
                if len(touching) == limit:
                    break
        return touching

    # Metrics

    def append_snapshot(
        self,
        metric_type: str,
        value: float,
        repo_id: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> MetricsSnapshot:
        with session_scope(self.session_factory) as session:
            snapshot = MetricsSnapshot(
                metric_type=metric_type,
                value=value,
                repo_id=repo_id,
                details=details or {},
                calculated_at=utcnow(),
            )
            session.add(snapshot)
            session.flush()
            return snapshot

    def list_snapshots(
        self,
        metric_type: str,
        repo_id: str | None = None,
        since: datetime | None = None,
    ) -> list[MetricsSnapshot]:
        """Snapshots of one metric, oldest first."""
        query = select(MetricsSnapshot).where(MetricsSnapshot.metric_type == metric_type)
        if repo_id is not None:
            query = query.where(MetricsSnapshot.repo_id == repo_id)
        if since is not None:
            query = query.where(MetricsSnapshot.calculated_at >= since)
        with session_scope(self.session_factory) as session:
            return list(session.execute(query.order_by(MetricsSnapshot.calculated_at)).scalars())

    def latest_snapshots(self, repo_id: str) -> dict[str, MetricsSnapshot]:
        """Most recent snapshot per metric type for a repository."""
        with session_scope(self.session_factory) as session:
            snapshots = session.execute(
                select(MetricsSnapshot)
                .where(MetricsSnapshot.repo_id == repo_id)
                .order_by(MetricsSnapshot.calculated_at)
            ).scalars()
            latest: dict[str, MetricsSnapshot] = {}
            for snapshot in snapshots:
                latest[snapshot.metric_type] = snapshot
            return latest
