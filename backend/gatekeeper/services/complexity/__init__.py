"""Language complexity analyzers.

``analyze_file`` dispatches on file extension through a ``StrategyRegistry``
and always returns a report: strategy failures fall back to the generic
estimator.
"""

import logging
from functools import lru_cache

from gatekeeper.core.exceptions import ParseError
from gatekeeper.services.complexity.base import (
    ComplexityReport,
    ComplexityStrategy,
    FunctionComplexity,
    maintainability_index,
)
from gatekeeper.services.complexity.heuristic import (
    LANGUAGE_PATTERNS,
    GenericStrategy,
    HeuristicStrategy,
)
from gatekeeper.services.complexity.languages import (
    PRIMARY_LANGUAGE,
    SUPPORTED_EXTENSIONS,
    detect_language,
    is_analyzable,
)
from gatekeeper.services.complexity.python_strategy import PythonStrategy

logger = logging.getLogger(__name__)

HEALTH_COMPLEXITY_FLOOR = 15
HEALTH_MI_FLOOR = 65


class StrategyRegistry:
    """Maps languages (and through them, extensions) to strategies."""

    def __init__(self, fallback: ComplexityStrategy | None = None):
        self._strategies: dict[str, ComplexityStrategy] = {}
        self.fallback = fallback or GenericStrategy()

    @classmethod
    def default(cls) -> "StrategyRegistry":
        registry = cls()
        registry.register(PRIMARY_LANGUAGE, PythonStrategy())
        for language in LANGUAGE_PATTERNS:
            registry.register(language, HeuristicStrategy(language))
        return registry

    def register(self, language: str, strategy: ComplexityStrategy) -> None:
        self._strategies[language] = strategy

    def strategy_for(self, path: str) -> tuple[str, ComplexityStrategy]:
        language = detect_language(path)
        return language, self._strategies.get(language, self.fallback)

    def analyze(self, path: str, content: str) -> ComplexityReport:
        """Analyze with the matching strategy, falling back to the generic one."""
        language, strategy = self.strategy_for(path)
        if strategy is self.fallback:
            return self.fallback.analyze(path, content, language)

        try:
            return strategy.analyze(path, content, language)
        except ParseError as e:
            error = e.message
        except Exception as e:
            error = f"{type(e).__name__}: {e}"

        logger.debug(f"{strategy.name} failed on {path}, using generic estimator: {error}")
        report = self.fallback.analyze(path, content, language)
        return ComplexityReport(
            file_id=report.file_id,
            language=report.language,
            cyclomatic_complexity=report.cyclomatic_complexity,
            maintainability_index=report.maintainability_index,
            loc=report.loc,
            strategy=report.strategy,
            error=error,
        )


@lru_cache
def get_registry() -> StrategyRegistry:
    return StrategyRegistry.default()


def analyze_file(path: str, content: str) -> ComplexityReport:
    """Analyze one file. Never raises; complexity is always >= 1."""
    return get_registry().analyze(path, content)


def health_score(complexity: int, maintainability: float) -> float:
    """Per-file health: 100 minus penalties for complexity above 15 and MI below 65."""
    penalty = 3 * max(0, complexity - HEALTH_COMPLEXITY_FLOOR)
    penalty += max(0.0, HEALTH_MI_FLOOR - maintainability)
    return round(min(100.0, max(0.0, 100.0 - penalty)), 2)


def complex_functions(report: ComplexityReport, threshold: int = 10) -> list[FunctionComplexity]:
    """Functions above the threshold, most complex first."""
    return sorted(
        (f for f in report.functions if f.complexity > threshold),
        key=lambda f: f.complexity,
        reverse=True,
    )


__all__ = [
    "ComplexityReport",
    "ComplexityStrategy",
    "FunctionComplexity",
    "GenericStrategy",
    "HeuristicStrategy",
    "PythonStrategy",
    "StrategyRegistry",
    "SUPPORTED_EXTENSIONS",
    "analyze_file",
    "complex_functions",
    "detect_language",
    "health_score",
    "is_analyzable",
    "maintainability_index",
]
