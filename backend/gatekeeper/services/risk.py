"""Per-file risk scoring: complexity scaled by log-damped churn."""

import math
from dataclasses import dataclass

from gatekeeper.services.churn_miner import ChurnRecord
from gatekeeper.services.complexity import ComplexityReport

CRITICAL_THRESHOLD = 70
WARNING_THRESHOLD = 40


@dataclass(frozen=True)
class RiskScore:
    file_id: str
    value: int
    category: str


@dataclass(frozen=True)
class FileAssessment:
    """A complexity report paired with the churn record measured alongside it."""

    report: ComplexityReport
    churn: ChurnRecord
    risk: RiskScore

    @property
    def path(self) -> str:
        return self.report.file_id


def churn_factor(churn: int) -> float:
    return max(1.0, math.log10(max(0, churn) + 1) + 1)


def compute_risk(complexity: int, churn: int) -> int:
    """``round(complexity * max(1, log10(churn + 1) + 1))``."""
    return round(max(0, complexity) * churn_factor(churn))


def categorize_risk(value: int) -> str:
    if value > CRITICAL_THRESHOLD:
        return "critical"
    if value > WARNING_THRESHOLD:
        return "warning"
    return "healthy"


def assess_file(report: ComplexityReport, churn: ChurnRecord) -> FileAssessment:
    """Compute the risk of a file from its current report and churn record.

    Raises ValueError if the two records describe different files.
    """
    if report.file_id != churn.file_id:
        raise ValueError(f"Churn for {churn.file_id} paired with report for {report.file_id}")

    value = compute_risk(report.cyclomatic_complexity, churn.commit_count)
    risk = RiskScore(file_id=report.file_id, value=value, category=categorize_risk(value))
    return FileAssessment(report=report, churn=churn, risk=risk)
