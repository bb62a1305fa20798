"""Job payloads and API shapes for scans, pull requests and metrics."""

from datetime import datetime
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from gatekeeper.core.exceptions import PayloadValidationError
from gatekeeper.schemas.common import BaseSchema

PayloadT = TypeVar("PayloadT", bound=BaseModel)


def check_repo_id(value: str) -> str:
    owner, sep, name = value.partition("/")
    if not sep or not owner or not name or "/" in name:
        raise ValueError("repo_id must look like 'owner/name'")
    return value


class FullScanPayload(BaseModel):
    """Payload of a ``full-scan`` job."""

    repo_id: str
    ref: str | None = None
    local_path: str | None = None

    @field_validator("repo_id")
    @classmethod
    def validate_repo_id(cls, v: str) -> str:
        return check_repo_id(v)


class PRAnalysisPayload(BaseModel):
    """Payload of a ``pr-analysis`` job."""

    repo_id: str
    pr_number: int = Field(gt=0)
    head_sha: str | None = None
    ticket: str | None = None
    title: str | None = None
    author: str | None = None
    branch: str | None = None

    @field_validator("repo_id")
    @classmethod
    def validate_repo_id(cls, v: str) -> str:
        return check_repo_id(v)


def parse_payload(model: type[PayloadT], payload: dict[str, Any]) -> PayloadT:
    """Validate a job payload, raising ``PayloadValidationError`` on failure."""
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        raise PayloadValidationError(f"Invalid {model.__name__}: {e.errors(include_url=False)}") from e


class ScanRequest(BaseModel):
    """Manual full-scan request."""

    ref: str | None = None


class PRAnalysisRequest(BaseModel):
    """Manual pull request analysis request."""

    head_sha: str | None = None
    ticket: str | None = None
    title: str | None = None
    author: str | None = None
    branch: str | None = None


class JobResponse(BaseModel):
    """A job accepted by the queue."""

    job_id: str
    queue: str
    name: str
    status: str
    backend: str


class PullRequestResponse(BaseSchema):
    repo_id: str
    pr_number: int
    title: str | None = None
    author: str | None = None
    branch: str | None = None
    head_sha: str | None = None
    status: str
    health_current: float | None = None
    health_delta: float | None = None
    overall_risk: int | None = None
    block_reasons: list[str] = []
    analysis_results: dict[str, Any] | None = None
    files_changed: list[str] | None = None
    summary: str | None = None
    analyzed_at: datetime | None = None


class FunctionResponse(BaseModel):
    name: str
    complexity: int
    loc: int
    start_line: int = 0


class CodebaseFileResponse(BaseSchema):
    path: str
    language: str
    loc: int
    complexity: int
    maintainability: float
    churn: int
    primary_author: str | None = None
    risk: int
    risk_category: str
    afferent_coupling: int
    efferent_coupling: int
    instability: float
    functions: list[FunctionResponse] = []
    last_analyzed_at: datetime | None = None


class MetricsResponse(BaseModel):
    """Latest value of every rollup, plus optional trends."""

    model_config = ConfigDict(populate_by_name=True)

    debt_ratio: float | None = Field(default=None, alias="debtRatio")
    block_rate: float | None = Field(default=None, alias="blockRate")
    hotspots: float | None = None
    risk_reduced: float | None = Field(default=None, alias="riskReduced")
    calculated_at: datetime | None = Field(default=None, alias="calculatedAt")
    trends: dict[str, list[dict[str, Any]]] = {}


class PullRequestSummary(BaseSchema):
    """One row of a pull request listing."""

    pr_number: int
    title: str | None = None
    author: str | None = None
    status: str
    overall_risk: int | None = None
    health_delta: float | None = None
    analyzed_at: datetime | None = None


class FileHistoryEntry(BaseModel):
    analyzed_at: str | None = None
    complexity: int
    maintainability: float
    loc: int
    churn: int
    risk: int


class CodebaseFileDetailResponse(CodebaseFileResponse):
    """One file with its earlier snapshots and the pull requests that touched it."""

    history: list[FileHistoryEntry] = []
    recent_pull_requests: list[PullRequestSummary] = []
