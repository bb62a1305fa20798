"""Repository rollups persisted as metrics snapshots.

Each rollup reads only current persisted state and appends one snapshot, so
any of them can be recomputed at any time.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from gatekeeper.models import CodebaseFile
from gatekeeper.models.base import utcnow
from gatekeeper.services.store import AnalysisStore

logger = logging.getLogger(__name__)


@dataclass
class HotspotSummary:
    count: int
    hotspots: list[CodebaseFile] = field(default_factory=list)


@dataclass
class MetricsSummary:
    debt_ratio: int
    block_rate: int
    hotspot_count: int
    risk_reduced: int
    timestamp: datetime

    def to_dict(self) -> dict[str, Any]:
        return {
            "debtRatio": self.debt_ratio,
            "blockRate": self.block_rate,
            "hotspotCount": self.hotspot_count,
            "riskReduced": self.risk_reduced,
            "timestamp": self.timestamp.isoformat(),
        }


class MetricsAggregator:
    """Computes debt ratio, block rate, hotspots and risk reduced per repository."""

    def __init__(self, store: AnalysisStore):
        self.store = store

    def debt_ratio(self, repo_id: str) -> int:
        """Mean risk across all tracked files."""
        mean, total_files = self.store.mean_risk(repo_id)
        value = round(mean)
        self.store.append_snapshot("debtRatio", value, repo_id, {"totalFiles": total_files})
        return value

    def block_rate(self, repo_id: str, days: int = 7) -> int:
        """Percentage of pull requests analyzed in the window that were blocked."""
        prs = self.store.list_pull_requests(repo_id, since=utcnow() - timedelta(days=days))
        total = len(prs)
        blocked = sum(1 for pr in prs if pr.status == "BLOCK")
        value = round(blocked / total * 100) if total else 0
        self.store.append_snapshot(
            "blockRate",
            value,
            repo_id,
            {"totalPRs": total, "blockedPRs": blocked, "days": days},
        )
        return value

    def critical_hotspots(self, repo_id: str, threshold: int = 70, limit: int = 20) -> HotspotSummary:
        """Files with risk above the threshold, capped to the top ``limit``."""
        hotspots = self.store.top_risk_files(repo_id, threshold, limit)
        self.store.append_snapshot(
            "hotspots",
            len(hotspots),
            repo_id,
            {
                "threshold": threshold,
                "topHotspots": [{"path": h.path, "risk": h.risk} for h in hotspots[:5]],
            },
        )
        return HotspotSummary(count=len(hotspots), hotspots=hotspots)

    def risk_reduced(self, repo_id: str, days: int = 30) -> int:
        """Sum of positive health deltas of passed pull requests in the window."""
        passed = self.store.list_pull_requests(
            repo_id,
            since=utcnow() - timedelta(days=days),
            status="PASS",
        )
        reduced = sum(pr.health_delta for pr in passed if pr.health_delta and pr.health_delta > 0)
        value = max(0, round(reduced))
        self.store.append_snapshot("riskReduced", value, repo_id, {"passedPRs": len(passed), "days": days})
        return value

    def compute_all(
        self,
        repo_id: str,
        block_rate_days: int = 7,
        risk_reduced_days: int = 30,
        hotspot_threshold: int = 70,
        hotspot_limit: int = 20,
    ) -> MetricsSummary:
        summary = MetricsSummary(
            debt_ratio=self.debt_ratio(repo_id),
            block_rate=self.block_rate(repo_id, block_rate_days),
            hotspot_count=self.critical_hotspots(repo_id, hotspot_threshold, hotspot_limit).count,
            risk_reduced=self.risk_reduced(repo_id, risk_reduced_days),
            timestamp=utcnow(),
        )
        logger.info(f"Metrics for {repo_id}: {summary.to_dict()}")
        return summary

    def metric_trend(self, metric_type: str, repo_id: str | None = None, days: int = 30) -> list[dict[str, Any]]:
        """Snapshot values of one metric over the window, oldest first."""
        snapshots = self.store.list_snapshots(metric_type, repo_id, since=utcnow() - timedelta(days=days))
        return [
            {"value": s.value, "calculatedAt": s.calculated_at.isoformat(), "details": s.details}
            for s in snapshots
        ]
