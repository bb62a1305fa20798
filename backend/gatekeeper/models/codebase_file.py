"""Codebase file model.

Latest complexity, churn and risk for one file of a repository, plus a
bounded history of earlier snapshots.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Float, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gatekeeper.models.base import BaseModel, utcnow


class CodebaseFile(BaseModel):
    """Per-(repository, path) analysis record, upserted on every scan."""

    __tablename__ = "codebase_files"
    __table_args__ = (
        UniqueConstraint("repo_id", "path", name="uq_codebase_files_repo_path"),
    )

    repo_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    path: Mapped[str] = mapped_column(String(1024), nullable=False)
    language: Mapped[str] = mapped_column(String(32), nullable=False, default="other")
    loc: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Complexity
    complexity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    maintainability: Mapped[float] = mapped_column(Float, nullable=False, default=100.0)
    functions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    dependencies: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    # Churn
    churn: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    churn_window_days: Mapped[int] = mapped_column(Integer, nullable=False, default=90)
    primary_author: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Risk
    risk: Mapped[int] = mapped_column(Integer, nullable=False, default=0, index=True)
    risk_category: Mapped[str] = mapped_column(String(16), nullable=False, default="healthy")

    # Coupling (Python files only)
    afferent_coupling: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    efferent_coupling: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    instability: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    history: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    last_analyzed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
    )

    @property
    def is_hotspot(self) -> bool:
        return self.risk_category == "critical"

    def __repr__(self) -> str:
        return f"<CodebaseFile {self.repo_id}:{self.path} risk={self.risk}>"
