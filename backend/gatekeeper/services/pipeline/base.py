"""Inputs shared by every pipeline layer."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from gatekeeper.services.complexity import detect_language

if TYPE_CHECKING:
    from gatekeeper.core.config import Settings
    from gatekeeper.services.pipeline.verdict import VerdictAccumulator


@dataclass(frozen=True)
class SourceFile:
    """One changed file, alive only within a single analysis run.

    ``content`` holds only the added lines when ``is_patch`` is true.
    ``full_content`` is the whole file at the head commit, when it could be
    read; complexity is compared on it rather than on the added lines.
    """

    path: str
    content: str
    is_patch: bool = False
    language: str = ""
    local_path: str | None = None
    full_content: str | None = None

    def __post_init__(self) -> None:
        if not self.language:
            object.__setattr__(self, "language", detect_language(self.path))

    @property
    def size_loc(self) -> int:
        return len(self.content.splitlines())

    @property
    def head_content(self) -> str | None:
        """The whole file at the head commit, or None when only the patch is known."""
        if self.full_content is not None:
            return self.full_content
        return None if self.is_patch else self.content

    @classmethod
    def from_patch(cls, path: str, patch: str, full_content: str | None = None) -> "SourceFile":
        return cls(path=path, content=extract_added_lines(patch), is_patch=True, full_content=full_content)


def extract_added_lines(patch: str) -> str:
    """Added lines of a unified diff, without the leading ``+``."""
    if not patch:
        return ""
    return "\n".join(
        line[1:]
        for line in patch.splitlines()
        if line.startswith("+") and not line.startswith("+++")
    )


@dataclass(frozen=True)
class Thresholds:
    max_lint_errors: int = 5
    max_lint_warnings: int = 10
    max_complexity: int = 25
    min_health_delta: float = -20.0
    max_risk_score: int = 80
    max_code_smells: int = 5
    min_ticket_confidence: float = 0.5
    ai_max_files: int = 5
    ai_max_chars: int = 3000

    @classmethod
    def from_settings(cls, settings: "Settings") -> "Thresholds":
        return cls(
            max_lint_errors=settings.max_lint_errors,
            max_lint_warnings=settings.max_lint_warnings,
            max_complexity=settings.max_complexity,
            min_health_delta=settings.min_health_delta,
            max_risk_score=settings.max_risk_score,
            max_code_smells=settings.max_code_smells,
            min_ticket_confidence=settings.min_ticket_confidence,
            ai_max_files=settings.ai_max_files,
            ai_max_chars=settings.ai_max_chars,
        )


@dataclass
class PipelineContext:
    """Per-run facts the layers need besides the files themselves.

    ``baselines`` maps a path to the health score of its latest persisted
    record. Paths missing from it have no baseline.
    """

    repo_id: str
    pr_number: int | None = None
    baselines: dict[str, float] = field(default_factory=dict)
    ticket: str | None = None
    title: str | None = None


class Layer(ABC):
    """One pipeline stage.

    A layer writes its own section of the analysis results and adds block or
    warn reasons to the accumulator. It never reads another layer's section.
    """

    name: str = "layer"

    def __init__(self, thresholds: Thresholds):
        self.thresholds = thresholds

    @abstractmethod
    def run(self, files: list[SourceFile], context: PipelineContext, accumulator: "VerdictAccumulator") -> None:
        """Analyze the files and record the outcome."""
