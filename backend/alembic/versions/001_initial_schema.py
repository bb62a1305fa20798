"""Initial schema.

Revision ID: 001_initial
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Create codebase_files table
    op.create_table(
        "codebase_files",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("repo_id", sa.String(length=255), nullable=False),
        sa.Column("path", sa.String(length=1024), nullable=False),
        sa.Column("language", sa.String(length=32), nullable=False),
        sa.Column("loc", sa.Integer(), nullable=False),
        sa.Column("complexity", sa.Integer(), nullable=False),
        sa.Column("maintainability", sa.Float(), nullable=False),
        sa.Column("functions", sa.JSON(), nullable=False),
        sa.Column("dependencies", sa.JSON(), nullable=False),
        sa.Column("churn", sa.Integer(), nullable=False),
        sa.Column("churn_window_days", sa.Integer(), nullable=False),
        sa.Column("primary_author", sa.String(length=255), nullable=True),
        sa.Column("risk", sa.Integer(), nullable=False),
        sa.Column("risk_category", sa.String(length=16), nullable=False),
        sa.Column("afferent_coupling", sa.Integer(), nullable=False),
        sa.Column("efferent_coupling", sa.Integer(), nullable=False),
        sa.Column("instability", sa.Float(), nullable=False),
        sa.Column("history", sa.JSON(), nullable=False),
        sa.Column("last_analyzed_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("repo_id", "path", name="uq_codebase_files_repo_path"),
    )
    op.create_index(op.f("ix_codebase_files_repo_id"), "codebase_files", ["repo_id"], unique=False)
    op.create_index(op.f("ix_codebase_files_risk"), "codebase_files", ["risk"], unique=False)

    # Create pull_requests table
    op.create_table(
        "pull_requests",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("repo_id", sa.String(length=255), nullable=False),
        sa.Column("pr_number", sa.Integer(), nullable=False),
        sa.Column("title", sa.String(length=500), nullable=True),
        sa.Column("author", sa.String(length=255), nullable=True),
        sa.Column("branch", sa.String(length=255), nullable=True),
        sa.Column("head_sha", sa.String(length=64), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("health_current", sa.Float(), nullable=True),
        sa.Column("health_delta", sa.Float(), nullable=True),
        sa.Column("overall_risk", sa.Integer(), nullable=False),
        sa.Column("analysis_results", sa.JSON(), nullable=False),
        sa.Column("block_reasons", sa.JSON(), nullable=False),
        sa.Column("files_changed", sa.JSON(), nullable=False),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column("analyzed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("repo_id", "pr_number", name="uq_pull_requests_repo_number"),
    )
    op.create_index(op.f("ix_pull_requests_repo_id"), "pull_requests", ["repo_id"], unique=False)
    op.create_index(op.f("ix_pull_requests_status"), "pull_requests", ["status"], unique=False)

    # Create metrics_snapshots table (insert-only)
    op.create_table(
        "metrics_snapshots",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("metric_type", sa.String(length=32), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("repo_id", sa.String(length=255), nullable=True),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("details", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_metrics_snapshots_metric_type"), "metrics_snapshots", ["metric_type"], unique=False)
    op.create_index(op.f("ix_metrics_snapshots_repo_id"), "metrics_snapshots", ["repo_id"], unique=False)
    op.create_index(op.f("ix_metrics_snapshots_calculated_at"), "metrics_snapshots", ["calculated_at"], unique=False)

    # Create analysis_jobs table (durable queue)
    op.create_table(
        "analysis_jobs",
        sa.Column("id", sa.UUID(), nullable=False),
        sa.Column("queue_name", sa.String(length=64), nullable=False),
        sa.Column("name", sa.String(length=64), nullable=False),
        sa.Column("repo_id", sa.String(length=255), nullable=True),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_analysis_jobs_queue_name"), "analysis_jobs", ["queue_name"], unique=False)
    op.create_index(op.f("ix_analysis_jobs_name"), "analysis_jobs", ["name"], unique=False)
    op.create_index(op.f("ix_analysis_jobs_repo_id"), "analysis_jobs", ["repo_id"], unique=False)
    op.create_index(op.f("ix_analysis_jobs_status"), "analysis_jobs", ["status"], unique=False)


def downgrade() -> None:
    op.drop_table("analysis_jobs")
    op.drop_table("metrics_snapshots")
    op.drop_table("pull_requests")
    op.drop_table("codebase_files")
