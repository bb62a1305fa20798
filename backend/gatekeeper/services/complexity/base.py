"""Shared report contract for every complexity strategy."""

import math
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass
from typing import Any


@dataclass(frozen=True)
class FunctionComplexity:
    """Complexity of a single function or method."""

    name: str
    complexity: int
    loc: int
    start_line: int = 0


@dataclass(frozen=True)
class ComplexityReport:
    """Complexity metrics for one file, produced once per analysis.

    Attributes:
        file_id: Repository-relative path of the file
        language: Detected language, ``"other"`` when unknown
        cyclomatic_complexity: File-level McCabe complexity, always >= 1
        maintainability_index: Maintainability index clamped to 0-100
        loc: Physical lines of code
        functions: Per-function complexity, in source order
        dependencies: Imported modules or included files
        strategy: Name of the strategy that produced the report
        error: Why the generic estimator was used instead, if it was
    """

    file_id: str
    language: str
    cyclomatic_complexity: int
    maintainability_index: float
    loc: int
    functions: tuple[FunctionComplexity, ...] = ()
    dependencies: tuple[str, ...] = ()
    strategy: str = "generic"
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["functions"] = [asdict(f) for f in self.functions]
        data["dependencies"] = list(self.dependencies)
        return data


def count_loc(content: str) -> int:
    """Physical line count."""
    return len(content.splitlines())


def maintainability_index(complexity: int, loc: int) -> float:
    """MI = 171 - 5.2 ln(V) - 0.23 CC - 16.2 ln(LOC), clamped to 0-100.

    V approximates Halstead volume as ``LOC * log2(max(1, CC))``. V and LOC
    are floored at 1 so the logarithms stay defined.
    """
    loc = max(1, loc)
    volume = max(1.0, loc * math.log2(max(1, complexity)))
    mi = 171 - 5.2 * math.log(volume) - 0.23 * complexity - 16.2 * math.log(loc)
    return round(min(100.0, max(0.0, mi)), 2)


class ComplexityStrategy(ABC):
    """A per-language analyzer. Implementations may raise; callers fall back."""

    name: str = "base"

    @abstractmethod
    def analyze(self, path: str, content: str, language: str) -> ComplexityReport:
        """Analyze one file and return its report."""
