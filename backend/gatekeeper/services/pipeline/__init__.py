"""PR verdict pipeline."""

from gatekeeper.services.pipeline.base import (
    Layer,
    PipelineContext,
    SourceFile,
    Thresholds,
    extract_added_lines,
)
from gatekeeper.services.pipeline.layers import (
    AISemanticLayer,
    CodeSmellLayer,
    ComplexityRatchetLayer,
    LintLayer,
    SecurityLayer,
    TicketAlignmentLayer,
)
from gatekeeper.services.pipeline.runner import VerdictPipeline
from gatekeeper.services.pipeline.verdict import (
    BLOCK,
    PASS,
    PENDING,
    WARN,
    PipelineResult,
    VerdictAccumulator,
    compute_overall_risk,
)

__all__ = [
    "AISemanticLayer",
    "BLOCK",
    "CodeSmellLayer",
    "ComplexityRatchetLayer",
    "Layer",
    "LintLayer",
    "PASS",
    "PENDING",
    "PipelineContext",
    "PipelineResult",
    "SecurityLayer",
    "SourceFile",
    "TicketAlignmentLayer",
    "Thresholds",
    "VerdictAccumulator",
    "VerdictPipeline",
    "WARN",
    "compute_overall_risk",
    "extract_added_lines",
]
