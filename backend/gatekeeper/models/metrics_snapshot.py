"""Metrics snapshot model (append-only time series)."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, String
from sqlalchemy.orm import Mapped, mapped_column

from gatekeeper.models.base import BaseModelNoUpdate, utcnow

METRIC_TYPES = ("debtRatio", "blockRate", "hotspots", "riskReduced")


class MetricsSnapshot(BaseModelNoUpdate):
    """One computed value of a repository rollup. Never updated."""

    __tablename__ = "metrics_snapshots"

    metric_type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    value: Mapped[float] = mapped_column(Float, nullable=False)
    repo_id: Mapped[str | None] = mapped_column(String(255), nullable=True, index=True)
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        index=True,
    )
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    def __repr__(self) -> str:
        return f"<MetricsSnapshot {self.metric_type}={self.value} repo={self.repo_id}>"
