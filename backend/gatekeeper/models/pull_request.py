"""Pull request model."""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gatekeeper.models.base import BaseModel

PR_STATUSES = ("PENDING", "PASS", "WARN", "BLOCK", "OVERRIDDEN")


class PullRequest(BaseModel):
    """Gatekeeper verdict for one pull request.

    Upserted per (repo_id, pr_number); every analysis run overwrites the
    previous results instead of appending to them.
    """

    __tablename__ = "pull_requests"
    __table_args__ = (
        UniqueConstraint("repo_id", "pr_number", name="uq_pull_requests_repo_number"),
    )

    repo_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    pr_number: Mapped[int] = mapped_column(Integer, nullable=False)
    title: Mapped[str | None] = mapped_column(String(500), nullable=True)
    author: Mapped[str | None] = mapped_column(String(255), nullable=True)
    branch: Mapped[str | None] = mapped_column(String(255), nullable=True)
    head_sha: Mapped[str | None] = mapped_column(String(64), nullable=True)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default="PENDING", index=True)
    health_current: Mapped[float | None] = mapped_column(Float, nullable=True)
    health_delta: Mapped[float | None] = mapped_column(Float, nullable=True)
    overall_risk: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    analysis_results: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    block_reasons: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    files_changed: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)
    summary: Mapped[str | None] = mapped_column(Text, nullable=True)
    analyzed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<PullRequest {self.repo_id}#{self.pr_number} status={self.status}>"
