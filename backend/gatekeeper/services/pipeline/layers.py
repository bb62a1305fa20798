"""Verdict pipeline layers.

Each layer owns one section of ``analysis_results``:

- ``lint``: debugger statements, syntax errors, long or crowded lines
- ``complexity``: per-file health against the persisted baseline
- ``security``: risky constructs, every match blocks
- ``code_smells``: maintainability markers, warn only
- ``ticket_alignment``: changed paths against the linked ticket
- ``ai_scan``: external semantic review, tolerated when unavailable
"""

import ast
import logging
import re
from statistics import mean
from typing import Any

from gatekeeper.services.ai_scan import AIScanProvider, AIScanUnavailableError
from gatekeeper.services.complexity import analyze_file, health_score
from gatekeeper.services.complexity.languages import C_FAMILY_LANGUAGES, PRIMARY_LANGUAGE
from gatekeeper.services.pipeline.base import Layer, PipelineContext, SourceFile, Thresholds
from gatekeeper.services.pipeline.verdict import PENDING, VerdictAccumulator

logger = logging.getLogger(__name__)

MAX_LINE_LENGTH = 200
MAX_STATEMENTS_PER_LINE = 3

DEBUGGER_PATTERNS = (
    re.compile(r"(?<![\w.$])debugger\s*;?\s*$"),
    re.compile(r"(?<![\w.])breakpoint\(\s*\)"),
    re.compile(r"\bi?pdb\.set_trace\(\s*\)"),
)

SECURITY_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("dynamic code execution (eval)", re.compile(r"(?<![\w.])eval\s*\(")),
    ("dynamic code execution (exec)", re.compile(r"(?<![\w.])exec\s*\(")),
    ("dynamic code execution (Function)", re.compile(r"\bnew\s+Function\s*\(")),
    ("raw HTML injection (innerHTML)", re.compile(r"\.(?:inner|outer)HTML\s*=(?!=)")),
    ("raw HTML injection (dangerouslySetInnerHTML)", re.compile(r"\bdangerouslySetInnerHTML\b")),
    ("shell execution (child_process)", re.compile(r"\bchild_process\b")),
    ("shell execution (os.system)", re.compile(r"\bos\.system\s*\(")),
    ("shell execution (shell=True)", re.compile(r"\bshell\s*=\s*True\b")),
    ("unsafe deserialization (pickle)", re.compile(r"\bpickle\.loads?\s*\(")),
    ("unsafe deserialization (yaml.load)", re.compile(r"\byaml\.load\s*\((?![^)]*Loader)")),
    (
        "inline secret",
        re.compile(r"""(?i)\b(?:password|passwd|api[_-]?key|secret|token)\s*[:=]\s*['"][^'"\s]{4,}['"]"""),
    ),
)

SMELL_PATTERNS: tuple[tuple[str, re.Pattern], ...] = (
    ("TODO", re.compile(r"\bTODO:")),
    ("FIXME", re.compile(r"\bFIXME:")),
    ("HACK", re.compile(r"\bHACK:")),
    ("console.log", re.compile(r"\bconsole\.log\s*\(")),
    ("alert", re.compile(r"(?<![\w.])alert\s*\(")),
)
PRINT_DEBUG_PATTERN = re.compile(r"^\s*print\s*\(")

NEUTRAL_AI_CATEGORIES = {
    "security": 100,
    "correctness": 100,
    "maintainability": 100,
    "performance": 100,
    "testing": 50,
}

_BRACKETS = {")": "(", "]": "[", "}": "{"}
_STRING_RE = re.compile(r'"(?:\\.|[^"\\])*"|\'(?:\\.|[^\'\\\n])*\'|`(?:\\.|[^`\\])*`')
_STRING_NO_SINGLE_RE = re.compile(r'"(?:\\.|[^"\\])*"|`(?:\\.|[^`\\])*`')
_BLOCK_COMMENT_RE = re.compile(r"/\*.*?\*/", re.DOTALL)
_LINE_COMMENT_RE = re.compile(r"//[^\n]*")


def _line_of(content: str, offset: int) -> int:
    return content.count("\n", 0, offset) + 1


def find_unbalanced_brackets(content: str, language: str) -> str | None:
    """Describe the first bracket mismatch, ignoring strings and comments."""
    strings = _STRING_NO_SINGLE_RE if language == "rust" else _STRING_RE
    code = _BLOCK_COMMENT_RE.sub("", content)
    code = strings.sub('""', code)
    code = _LINE_COMMENT_RE.sub("", code)

    stack: list[str] = []
    for char in code:
        if char in "([{":
            stack.append(char)
        elif char in _BRACKETS:
            if not stack or stack[-1] != _BRACKETS[char]:
                return f"Unexpected '{char}'"
            stack.pop()
    if stack:
        return f"Unclosed '{stack[-1]}' ({len(stack)} open)"
    return None


class LintLayer(Layer):
    """Errors block above ``max_lint_errors``; warnings warn above ``max_lint_warnings``."""

    name = "lint"

    def run(self, files: list[SourceFile], context: PipelineContext, accumulator: VerdictAccumulator) -> None:
        errors = 0
        warnings = 0
        issues: list[dict[str, Any]] = []

        def issue(file: SourceFile, line: int, message: str, severity: str) -> None:
            issues.append({"file": file.path, "line": line, "message": message, "severity": severity})

        for file in files:
            for lineno, line in enumerate(file.content.splitlines(), start=1):
                if any(p.search(line) for p in DEBUGGER_PATTERNS):
                    errors += 1
                    issue(file, lineno, "Debugger statement left in code", "error")
                if len(line) > MAX_LINE_LENGTH:
                    warnings += 1
                    issue(file, lineno, f"Line exceeds {MAX_LINE_LENGTH} characters ({len(line)})", "warning")
                if line.count(";") > MAX_STATEMENTS_PER_LINE:
                    warnings += 1
                    issue(file, lineno, "Multiple statements on one line", "warning")

            if file.is_patch:
                continue
            if file.language == PRIMARY_LANGUAGE:
                try:
                    ast.parse(file.content, filename=file.path)
                except SyntaxError as e:
                    errors += 1
                    issue(file, e.lineno or 1, f"Syntax error: {e.msg}", "error")
                except ValueError as e:
                    errors += 1
                    issue(file, 1, f"Syntax error: {e}", "error")
            elif file.language in C_FAMILY_LANGUAGES:
                problem = find_unbalanced_brackets(file.content, file.language)
                if problem:
                    errors += 1
                    issue(file, 1, f"Unbalanced brackets: {problem}", "error")

        health = max(0, 100 - 10 * errors - 2 * warnings)
        accumulator.record(self.name, {
            "errors": errors,
            "warnings": warnings,
            "health": health,
            "issues": issues,
        })

        if errors > self.thresholds.max_lint_errors:
            accumulator.block(
                self.name,
                f"Too many lint errors: {errors} (limit {self.thresholds.max_lint_errors})",
            )
        if warnings > self.thresholds.max_lint_warnings:
            accumulator.warn(
                self.name,
                f"Too many lint warnings: {warnings} (limit {self.thresholds.max_lint_warnings})",
            )


class ComplexityRatchetLayer(Layer):
    """Compares each file's health with the health of its latest persisted record.

    Health is measured on the whole file at the head commit. A file known
    only by its patch is measured on the added lines but never compared,
    and neither is a file with no persisted record. When no file is compared
    the aggregate delta is None.
    """

    name = "complexity"

    def run(self, files: list[SourceFile], context: PipelineContext, accumulator: VerdictAccumulator) -> None:
        changes: list[dict[str, Any]] = []
        for file in files:
            head = file.head_content
            report = analyze_file(file.path, file.content if head is None else head)
            health = health_score(report.cyclomatic_complexity, report.maintainability_index)
            baseline = context.baselines.get(file.path)
            comparable = baseline is not None and head is not None
            changes.append({
                "file": file.path,
                "complexity": report.cyclomatic_complexity,
                "maintainability": report.maintainability_index,
                "health": health,
                "baseline": baseline,
                "delta": round(health - baseline, 2) if comparable else None,
                "strategy": report.strategy,
                "whole_file": head is not None,
            })

        deltas = [c["delta"] for c in changes if c["delta"] is not None]
        health_delta = round(mean(deltas), 2) if deltas else None
        section = {
            "avg_complexity": round(mean(c["complexity"] for c in changes)) if changes else 0,
            "health_current": round(mean(c["health"] for c in changes), 2) if changes else None,
            "health_delta": health_delta,
            "has_baseline": health_delta is not None,
            "files_without_baseline": [c["file"] for c in changes if c["baseline"] is None],
            "files_without_head_content": [c["file"] for c in changes if not c["whole_file"]],
            "file_changes": changes,
        }
        accumulator.record(self.name, section)

        worst = max(changes, key=lambda c: c["complexity"], default=None)
        if worst and worst["complexity"] > self.thresholds.max_complexity:
            accumulator.block(
                self.name,
                f"File complexity exceeds limit: {worst['file']} has {worst['complexity']} "
                f"(limit {self.thresholds.max_complexity})",
            )
            accumulator.add_finding({
                "file": worst["file"],
                "line": 1,
                "message": f"High cyclomatic complexity: {worst['complexity']}",
                "severity": "medium",
                "category": "complexity",
            })

        if health_delta is None:
            return
        if health_delta < self.thresholds.min_health_delta:
            accumulator.block(
                self.name,
                f"Health score dropped by {abs(health_delta):.1f} (limit {abs(self.thresholds.min_health_delta):.1f})",
            )
        elif health_delta < 0:
            accumulator.warn(self.name, f"Health score decreased by {abs(health_delta):.1f}")


class SecurityLayer(Layer):
    """Any match of a risky construct is a block and a high-severity finding."""

    name = "security"

    def run(self, files: list[SourceFile], context: PipelineContext, accumulator: VerdictAccumulator) -> None:
        issues: list[dict[str, Any]] = []
        for file in files:
            for label, pattern in SECURITY_PATTERNS:
                matches = list(pattern.finditer(file.content))
                if not matches:
                    continue
                line = _line_of(file.content, matches[0].start())
                issues.append({
                    "file": file.path,
                    "line": line,
                    "pattern": label,
                    "count": len(matches),
                    "severity": "high",
                    "category": "security",
                })
                accumulator.add_finding({
                    "file": file.path,
                    "line": line,
                    "message": f"Security concern: {label} detected",
                    "severity": "high",
                    "category": "security",
                })

        score = max(0, 100 - 20 * len(issues))
        accumulator.record(self.name, {"issues": issues, "score": score})
        if issues:
            accumulator.block(self.name, f"Security issues detected: {len(issues)}")


class CodeSmellLayer(Layer):
    """Counts maintainability markers. Warns above ``max_code_smells``, never blocks."""

    name = "code_smells"

    def run(self, files: list[SourceFile], context: PipelineContext, accumulator: VerdictAccumulator) -> None:
        issues: list[dict[str, Any]] = []
        for file in files:
            for label, pattern in SMELL_PATTERNS:
                count = len(pattern.findall(file.content))
                if count:
                    issues.append({"file": file.path, "pattern": label, "count": count})
            if file.language == PRIMARY_LANGUAGE:
                count = sum(1 for line in file.content.splitlines() if PRINT_DEBUG_PATTERN.match(line))
                if count:
                    issues.append({"file": file.path, "pattern": "print", "count": count})

        total = sum(i["count"] for i in issues)
        accumulator.record(self.name, {"count": total, "issues": issues})
        if total > self.thresholds.max_code_smells:
            accumulator.warn(self.name, f"Code quality concerns: {total} code smells")


_PATH_TOKEN_RE = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+")
_IGNORED_TOKENS = frozenset({
    "src", "lib", "app", "test", "tests", "spec", "index", "main", "init",
    "py", "js", "jsx", "ts", "tsx", "go", "rb", "java", "php", "rs", "cs",
    "utils", "util", "core", "the", "and",
})


def path_tokens(path: str) -> set[str]:
    tokens = {t.lower() for t in _PATH_TOKEN_RE.findall(path)}
    return {t for t in tokens if len(t) >= 3 and t not in _IGNORED_TOKENS}


class TicketAlignmentLayer(Layer):
    """Share of changed files whose path mentions something from the ticket."""

    name = "ticket_alignment"

    def run(self, files: list[SourceFile], context: PipelineContext, accumulator: VerdictAccumulator) -> None:
        ticket = (context.ticket or "").strip()
        if not ticket:
            accumulator.record(self.name, {
                "aligned": True,
                "confidence": 1.0,
                "explanation": "No linked ticket",
                "matched_files": [],
            })
            return

        ticket_words = {w.lower() for w in re.findall(r"[A-Za-z0-9]+", ticket)}
        matched = [f.path for f in files if path_tokens(f.path) & ticket_words]
        confidence = round(len(matched) / len(files), 2) if files else 1.0
        aligned = confidence >= self.thresholds.min_ticket_confidence

        accumulator.record(self.name, {
            "aligned": aligned,
            "confidence": confidence,
            "explanation": f"{len(matched)} of {len(files)} changed files relate to the ticket",
            "matched_files": matched,
        })
        if not aligned:
            accumulator.warn(self.name, f"Changes may not match the linked ticket (confidence {confidence:.2f})")


class AISemanticLayer(Layer):
    """External semantic review. BAD blocks, RISKY warns, unavailable is neutral."""

    name = "ai_scan"

    def __init__(self, thresholds: Thresholds, provider: AIScanProvider | None = None):
        super().__init__(thresholds)
        self.provider = provider

    def _pending(self, accumulator: VerdictAccumulator, reason: str) -> None:
        accumulator.record(self.name, {
            "verdict": PENDING,
            "categories": dict(NEUTRAL_AI_CATEGORIES),
            "findings": [],
            "reason": reason,
        })

    def run(self, files: list[SourceFile], context: PipelineContext, accumulator: VerdictAccumulator) -> None:
        if self.provider is None:
            self._pending(accumulator, "AI scan not configured")
            return

        batch = [
            {"path": f.path, "content": f.content[: self.thresholds.ai_max_chars]}
            for f in files
            if f.content.strip()
        ][: self.thresholds.ai_max_files]
        if not batch:
            self._pending(accumulator, "No content to scan")
            return

        try:
            result = self.provider.scan(batch)
        except AIScanUnavailableError as e:
            logger.warning(f"AI scan unavailable for {context.repo_id}#{context.pr_number}: {e.message}")
            self._pending(accumulator, e.message)
            return
        except Exception as e:
            logger.error(f"AI scan failed for {context.repo_id}#{context.pr_number}: {e}")
            self._pending(accumulator, f"AI scan failed: {e}")
            return

        findings = [f.model_dump() for f in result.findings]
        accumulator.record(self.name, {
            "verdict": result.verdict,
            "categories": {k: v * 20 for k, v in result.categories.model_dump().items()},
            "findings": findings,
        })
        for finding in findings:
            accumulator.add_finding({
                "file": finding["file"],
                "line": finding["line_range"][0] if finding["line_range"] else 1,
                "message": finding["message"],
                "severity": "high" if finding["severity"] > 3 else "low",
                "category": "ai",
            })

        if result.verdict == "BAD":
            accumulator.block(self.name, "AI scan detected critical issues")
        elif result.verdict == "RISKY":
            accumulator.warn(self.name, "AI scan detected potential risks")
