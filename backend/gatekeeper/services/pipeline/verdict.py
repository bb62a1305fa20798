"""Verdict accumulation, overall risk and summary."""

from dataclasses import dataclass, field
from typing import Any

PASS = "PASS"
WARN = "WARN"
BLOCK = "BLOCK"
PENDING = "PENDING"

RISK_WEIGHTS = {
    "complexity": 0.30,
    "lint": 0.20,
    "security": 0.35,
    "smells": 0.15,
}


class VerdictAccumulator:
    """Collects layer outputs for one pipeline run.

    Reasons only accumulate. The status is derived from them on demand, so
    once any block reason exists it stays BLOCK whatever runs afterwards.
    """

    def __init__(self) -> None:
        self.results: dict[str, Any] = {}
        self.findings: list[dict[str, Any]] = []
        self._block: list[tuple[str, str]] = []
        self._warn: list[tuple[str, str]] = []

    def record(self, layer: str, section: dict[str, Any]) -> None:
        self.results[layer] = section

    def block(self, layer: str, reason: str) -> None:
        self._block.append((layer, reason))

    def warn(self, layer: str, reason: str) -> None:
        self._warn.append((layer, reason))

    def add_finding(self, finding: dict[str, Any]) -> None:
        self.findings.append(finding)

    @property
    def block_reasons(self) -> list[str]:
        return [reason for _, reason in self._block]

    @property
    def warn_reasons(self) -> list[str]:
        return [reason for _, reason in self._warn]

    @property
    def status(self) -> str:
        if self._block:
            return BLOCK
        if self._warn:
            return WARN
        return PASS


@dataclass
class PipelineResult:
    status: str
    block_reasons: list[str]
    warn_reasons: list[str]
    analysis_results: dict[str, Any]
    overall_risk: int
    health_current: float | None
    health_delta: float | None
    findings: list[dict[str, Any]] = field(default_factory=list)
    summary: str = ""
    files_analyzed: int = 0

    @property
    def reasons(self) -> list[str]:
        """Reasons persisted with the record: block reasons, or warn reasons for WARN."""
        if self.status == BLOCK:
            return list(self.block_reasons)
        if self.status == WARN:
            return list(self.warn_reasons)
        return []

    def record_fields(self) -> dict[str, Any]:
        return {
            "status": self.status,
            "block_reasons": self.reasons,
            "analysis_results": self.analysis_results,
            "overall_risk": self.overall_risk,
            "health_current": self.health_current,
            "health_delta": self.health_delta,
            "summary": self.summary,
        }


def compute_overall_risk(results: dict[str, Any]) -> int:
    """Weighted blend of complexity, lint errors, security and smells, 0-100."""
    avg_complexity = results.get("complexity", {}).get("avg_complexity", 0)
    lint_errors = results.get("lint", {}).get("errors", 0)
    security_score = results.get("security", {}).get("score", 100)
    smells = results.get("code_smells", {}).get("count", 0)

    risk = (
        min(100.0, avg_complexity / 30 * 100) * RISK_WEIGHTS["complexity"]
        + min(100, lint_errors * 10) * RISK_WEIGHTS["lint"]
        + (100 - security_score) * RISK_WEIGHTS["security"]
        + min(100, smells * 10) * RISK_WEIGHTS["smells"]
    )
    return round(risk)


def build_summary(status: str, results: dict[str, Any], file_count: int, overall_risk: int) -> str:
    parts = [f"Analyzed {file_count} files."]
    if status == PASS:
        parts.append("Code quality looks good.")
    elif status == WARN:
        parts.append("Some concerns detected, review recommended.")
    elif status == BLOCK:
        parts.append("Critical issues found, blocking merge.")

    ai_verdict = results.get("ai_scan", {}).get("verdict", PENDING)
    if ai_verdict != PENDING:
        parts.append(f"AI scan: {ai_verdict}.")

    lint = results.get("lint", {})
    if lint.get("errors"):
        parts.append(f"Lint: {lint['errors']} errors, {lint.get('warnings', 0)} warnings.")
    security = results.get("security", {})
    if security.get("issues"):
        parts.append(f"Security: {len(security['issues'])} potential issues.")
    smells = results.get("code_smells", {})
    if smells.get("count"):
        parts.append(f"Code smells: {smells['count']} detected.")
    delta = results.get("complexity", {}).get("health_delta")
    if delta is None:
        parts.append("Health: no baseline yet.")
    else:
        parts.append(f"Health delta: {delta:+.1f}.")

    parts.append(f"Risk score: {overall_risk}/100.")
    return " ".join(parts)
