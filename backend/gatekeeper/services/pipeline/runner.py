"""Runs the verdict layers in order and derives the final verdict."""

import logging

from gatekeeper.services.ai_scan import AIScanProvider
from gatekeeper.services.pipeline.base import Layer, PipelineContext, SourceFile, Thresholds
from gatekeeper.services.pipeline.layers import (
    AISemanticLayer,
    CodeSmellLayer,
    ComplexityRatchetLayer,
    LintLayer,
    SecurityLayer,
    TicketAlignmentLayer,
)
from gatekeeper.services.pipeline.verdict import (
    PipelineResult,
    VerdictAccumulator,
    build_summary,
    compute_overall_risk,
)

logger = logging.getLogger(__name__)


class VerdictPipeline:
    """Lint, complexity ratchet, security, smells, ticket alignment, AI scan."""

    def __init__(
        self,
        thresholds: Thresholds | None = None,
        ai_provider: AIScanProvider | None = None,
        layers: list[Layer] | None = None,
    ):
        self.thresholds = thresholds or Thresholds()
        self.layers = layers if layers is not None else self.default_layers(self.thresholds, ai_provider)

    @staticmethod
    def default_layers(thresholds: Thresholds, ai_provider: AIScanProvider | None) -> list[Layer]:
        return [
            LintLayer(thresholds),
            ComplexityRatchetLayer(thresholds),
            SecurityLayer(thresholds),
            CodeSmellLayer(thresholds),
            TicketAlignmentLayer(thresholds),
            AISemanticLayer(thresholds, ai_provider),
        ]

    def run(self, files: list[SourceFile], context: PipelineContext) -> PipelineResult:
        accumulator = VerdictAccumulator()
        for layer in self.layers:
            layer.run(files, context, accumulator)

        results = accumulator.results
        overall_risk = compute_overall_risk(results)
        if overall_risk > self.thresholds.max_risk_score:
            accumulator.block("risk", f"Risk score too high: {overall_risk} (limit {self.thresholds.max_risk_score})")

        status = accumulator.status
        complexity = results.get("complexity", {})
        analysis_results = dict(results)
        analysis_results["overall_risk"] = overall_risk
        analysis_results["findings"] = list(accumulator.findings)
        analysis_results["verdict"] = {
            "status": status,
            "block_reasons": accumulator.block_reasons,
            "warn_reasons": accumulator.warn_reasons,
        }

        summary = build_summary(status, results, len(files), overall_risk)
        logger.info(f"Pipeline for {context.repo_id}#{context.pr_number}: {status} (risk {overall_risk})")
        return PipelineResult(
            status=status,
            block_reasons=accumulator.block_reasons,
            warn_reasons=accumulator.warn_reasons,
            analysis_results=analysis_results,
            overall_risk=overall_risk,
            health_current=complexity.get("health_current"),
            health_delta=complexity.get("health_delta"),
            findings=list(accumulator.findings),
            summary=summary,
            files_analyzed=len(files),
        )
