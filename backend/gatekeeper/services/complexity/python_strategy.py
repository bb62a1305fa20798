"""Python complexity via radon's McCabe visitor."""

from radon.raw import analyze as raw_analyze
from radon.visitors import ComplexityVisitor

from gatekeeper.core.exceptions import ParseError
from gatekeeper.services.complexity.base import (
    ComplexityReport,
    ComplexityStrategy,
    FunctionComplexity,
    maintainability_index,
)
from gatekeeper.services.dependency_graph import extract_imports


def _function_blocks(visitor: ComplexityVisitor) -> list:
    """Flatten top-level functions, class methods, inner classes and closures."""
    pending = list(visitor.functions)
    classes = list(visitor.classes)
    while classes:
        cls = classes.pop()
        pending.extend(cls.methods)
        classes.extend(cls.inner_classes)

    blocks = []
    while pending:
        func = pending.pop()
        blocks.append(func)
        pending.extend(func.closures)
    return sorted(blocks, key=lambda f: (f.lineno, f.col_offset))


class PythonStrategy(ComplexityStrategy):
    """Real syntax tree analysis for the primary language.

    File complexity is 1 plus every decision point in the module body and in
    every function, method and closure. Each radon block already carries its
    own base of 1, which is subtracted before summing.
    """

    name = "python-ast"

    def analyze(self, path: str, content: str, language: str = "python") -> ComplexityReport:
        try:
            # off=False: module-level visitor starts at 0 and counts only decisions
            visitor = ComplexityVisitor.from_code(content, off=False)
        except SyntaxError as e:
            raise ParseError(path, f"line {e.lineno}: {e.msg}") from e
        blocks = _function_blocks(visitor)

        complexity = 1 + visitor.complexity + sum(block.complexity - 1 for block in blocks)
        loc = raw_analyze(content).loc

        functions = tuple(
            FunctionComplexity(
                name=block.fullname,
                complexity=block.complexity,
                loc=max(1, block.endline - block.lineno + 1),
                start_line=block.lineno,
            )
            for block in blocks
        )

        return ComplexityReport(
            file_id=path,
            language=language,
            cyclomatic_complexity=complexity,
            maintainability_index=maintainability_index(complexity, loc),
            loc=loc,
            functions=functions,
            dependencies=tuple(extract_imports(content)),
            strategy=self.name,
        )
