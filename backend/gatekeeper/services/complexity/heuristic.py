"""Bounded single-pass heuristic complexity for non-primary languages.

Every supported language gets a pattern set: control-flow keywords that add a
decision point, signature patterns that open a function segment and import
patterns that yield dependencies. Comments and string literals are stripped
before counting so keywords inside them are ignored.
"""

import logging
import re
from dataclasses import dataclass, field

from gatekeeper.services.complexity.base import (
    ComplexityReport,
    ComplexityStrategy,
    FunctionComplexity,
    count_loc,
    maintainability_index,
)

logger = logging.getLogger(__name__)

MAX_SCAN_LINES = 20_000

# Signature matches that are really control-flow statements
_KEYWORDS = frozenset({
    "if", "for", "foreach", "while", "switch", "catch", "return", "else",
    "new", "match", "when", "sizeof", "typeof", "do", "try", "using", "lock",
})

_DOUBLE_QUOTED = r'"(?:\\.|[^"\\])*"'
_SINGLE_QUOTED = r"'(?:\\.|[^'\\])*'"
_BACKTICK = r"`(?:\\.|[^`\\])*`"
_CHAR_LITERAL = r"'(?:\\.|[^'\\])'"

_C_DECISIONS = r"\b(?:if|for|while|switch|case|catch)\b|&&|\|\|"
_TERNARY = r"(?<![?.])\?(?![.?:\[>-])"


@dataclass(frozen=True)
class LanguagePatterns:
    """Regex set describing one language for the heuristic scanner."""

    decisions: re.Pattern
    signatures: tuple[re.Pattern, ...]
    imports: tuple[re.Pattern, ...] = ()
    strings: re.Pattern = re.compile("|".join((_DOUBLE_QUOTED, _SINGLE_QUOTED, _BACKTICK)))
    line_comments: tuple[str, ...] = ("//",)
    block_comments: bool = True
    braces: bool = True


def _compile(*patterns: str, flags: int = 0) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(p, flags) for p in patterns)


_JS_SIGNATURES = _compile(
    r"\bfunction\s*\*?\s*(\w+)\s*\(",
    r"\b(?:const|let|var)\s+(\w+)\s*=\s*(?:async\s+)?(?:function\b|\([^)]*\)\s*(?::\s*[\w<>\[\]|, ]+)?\s*=>|\w+\s*=>)",
    r"^\s*(?:(?:public|private|protected|static|async|readonly|get|set|override)\s+)*(\w+)\s*(?:<[^>]*>)?\s*\([^;]*\)\s*(?::\s*[^{;]+)?\{\s*$",
)
_JS_IMPORTS = _compile(
    r"""^\s*import\s+(?:[\w*{}\s,$]+\s+from\s+)?['"]([^'"]+)['"]""",
    r"""^\s*export\s+(?:\*|\{[^}]*\})\s+from\s+['"]([^'"]+)['"]""",
    r"""\brequire\(\s*['"]([^'"]+)['"]\s*\)""",
)
_JVM_SIGNATURE = (
    r"^\s*(?:@\w+\s+)*(?:(?:public|private|protected|internal|static|final|abstract|"
    r"synchronized|native|virtual|override|async|sealed|extern|unsafe|partial)\s+)*"
    r"[\w<>\[\],.?]+(?:\s*<[^>]*>)?\s+(\w+)\s*\([^;]*\)\s*(?:throws\s+[\w.,\s]+)?(?:where\s+[^{]+)?\{?\s*$"
)

LANGUAGE_PATTERNS: dict[str, LanguagePatterns] = {
    "javascript": LanguagePatterns(
        decisions=re.compile(f"{_C_DECISIONS}|\\?\\?|{_TERNARY}"),
        signatures=_JS_SIGNATURES,
        imports=_JS_IMPORTS,
    ),
    "typescript": LanguagePatterns(
        decisions=re.compile(f"{_C_DECISIONS}|\\?\\?|{_TERNARY}"),
        signatures=_JS_SIGNATURES,
        imports=_JS_IMPORTS,
    ),
    "java": LanguagePatterns(
        decisions=re.compile(f"{_C_DECISIONS}|{_TERNARY}"),
        signatures=_compile(_JVM_SIGNATURE),
        imports=_compile(r"^\s*import\s+(?:static\s+)?([\w.]+(?:\.\*)?)\s*;"),
    ),
    "csharp": LanguagePatterns(
        decisions=re.compile(r"\b(?:if|for|foreach|while|switch|case|catch)\b|&&|\|\||\?\?|" + _TERNARY),
        signatures=_compile(_JVM_SIGNATURE),
        imports=_compile(r"^\s*using\s+(?:static\s+)?([\w.]+)\s*;"),
    ),
    "go": LanguagePatterns(
        decisions=re.compile(r"\b(?:if|for|switch|case|select)\b|&&|\|\|"),
        signatures=_compile(r"^\s*func\s+(?:\([^)]*\)\s*)?(\w+)"),
        imports=_compile(r'^\s*import\s+(?:[\w.]+\s+)?"([^"]+)"', r'^\s*(?:[\w.]+\s+)?"([\w./-]+)"\s*$'),
    ),
    "c": LanguagePatterns(
        decisions=re.compile(f"{_C_DECISIONS}|{_TERNARY}"),
        signatures=_compile(r"^\s*(?:[\w*]+\s+)+\**(\w+)\s*\([^;]*\)\s*\{?\s*$"),
        imports=_compile(r'^\s*#\s*include\s*[<"]([^>"]+)[>"]'),
    ),
    "cpp": LanguagePatterns(
        decisions=re.compile(f"{_C_DECISIONS}|{_TERNARY}"),
        signatures=_compile(
            r"^\s*(?:[\w:*&<>,]+\s+)+[*&]*((?:\w+::)*~?\w+)\s*\([^;]*\)\s*(?:const\s*)?(?:noexcept\s*)?(?:override\s*)?\{?\s*$"
        ),
        imports=_compile(r'^\s*#\s*include\s*[<"]([^>"]+)[>"]'),
    ),
    "php": LanguagePatterns(
        decisions=re.compile(
            r"\b(?:if|elseif|for|foreach|while|switch|case|catch)\b|&&|\|\||\band\b|\bor\b|\?\?|(?<![?.<])\?(?![>?:-])"
        ),
        signatures=_compile(r"\bfunction\s+&?(\w+)\s*\("),
        imports=_compile(
            r"""^\s*(?:require|include)(?:_once)?\s*\(?\s*['"]([^'"]+)['"]""",
            r"^\s*use\s+([\w\\]+)",
        ),
        line_comments=("//", "#"),
    ),
    "ruby": LanguagePatterns(
        decisions=re.compile(r"\b(?:if|elsif|unless|while|until|for|when|rescue)\b|&&|\|\||\band\b|\bor\b|\s\?\s"),
        signatures=_compile(r"^\s*def\s+(?:self\.)?(\w+[?!=]?)"),
        imports=_compile(r"""^\s*require(?:_relative)?\s*\(?\s*['"]([^'"]+)['"]"""),
        line_comments=("#",),
        block_comments=False,
        braces=False,
    ),
    "rust": LanguagePatterns(
        decisions=re.compile(r"\b(?:if|for|while|loop)\b|=>|&&|\|\|"),
        signatures=_compile(
            r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:const\s+)?(?:async\s+)?(?:unsafe\s+)?(?:extern\s+\"\w+\"\s+)?fn\s+(\w+)"
        ),
        imports=_compile(r"^\s*(?:pub\s+)?use\s+([\w:]+)"),
        strings=re.compile("|".join((_DOUBLE_QUOTED, _CHAR_LITERAL))),
    ),
    "swift": LanguagePatterns(
        decisions=re.compile(r"\b(?:if|guard|for|while|repeat|switch|case|catch)\b|&&|\|\||\?\?|\s\?\s"),
        signatures=_compile(r"\bfunc\s+(\w+)"),
        imports=_compile(r"^\s*import\s+(\w+)"),
    ),
    "kotlin": LanguagePatterns(
        decisions=re.compile(r"\b(?:if|for|while|when|catch)\b|&&|\|\||\?:"),
        signatures=_compile(r"\bfun\s+(?:<[^>]*>\s*)?(?:[\w.]+\.)?(\w+)\s*\("),
        imports=_compile(r"^\s*import\s+([\w.]+)"),
    ),
    "scala": LanguagePatterns(
        decisions=re.compile(r"\b(?:if|for|while|match|case|catch)\b|&&|\|\|"),
        signatures=_compile(r"\bdef\s+(\w+)"),
        imports=_compile(r"^\s*import\s+([\w.]+)"),
    ),
}

GENERIC_DECISIONS = re.compile(
    r"\b(?:if|elif|elsif|for|foreach|while|switch|case|catch|except|when|unless|until)\b|&&|\|\|"
)


@dataclass
class _FunctionFrame:
    name: str
    start_line: int
    depth: int = 0
    decisions: int = 0
    opened: bool = False

    def close(self, end_line: int) -> FunctionComplexity:
        return FunctionComplexity(
            name=self.name,
            complexity=1 + self.decisions,
            loc=max(1, end_line - self.start_line + 1),
            start_line=self.start_line,
        )


@dataclass
class _ScanState:
    in_block_comment: bool = False
    depth: int = 0
    decisions: int = 0
    stack: list[_FunctionFrame] = field(default_factory=list)
    functions: list[FunctionComplexity] = field(default_factory=list)
    dependencies: list[str] = field(default_factory=list)


class HeuristicStrategy(ComplexityStrategy):
    """Regex-driven complexity for one language.

    File complexity is 1 plus every decision match. Functions are segmented
    on signature matches: brace languages close a function when the brace
    depth returns to where it started, the others close it at the next
    signature. A decision counts toward the innermost open function only.
    """

    name = "heuristic"

    def __init__(self, language: str, patterns: LanguagePatterns | None = None):
        self.language = language
        self.patterns = patterns or LANGUAGE_PATTERNS[language]

    def analyze(self, path: str, content: str, language: str | None = None) -> ComplexityReport:
        lines = content.splitlines()
        if len(lines) > MAX_SCAN_LINES:
            logger.info(f"Scanning first {MAX_SCAN_LINES} of {len(lines)} lines in {path}")
            lines = lines[:MAX_SCAN_LINES]

        state = _ScanState()
        for lineno, raw in enumerate(lines, start=1):
            self._scan_line(raw, lineno, state)

        last_line = len(lines)
        while state.stack:
            state.functions.append(state.stack.pop().close(last_line))
        state.functions.sort(key=lambda f: f.start_line)

        complexity = 1 + state.decisions
        loc = count_loc(content)
        return ComplexityReport(
            file_id=path,
            language=language or self.language,
            cyclomatic_complexity=complexity,
            maintainability_index=maintainability_index(complexity, loc),
            loc=loc,
            functions=tuple(state.functions),
            dependencies=tuple(dict.fromkeys(state.dependencies)),
            strategy=self.name,
        )

    def _scan_line(self, raw: str, lineno: int, state: _ScanState) -> None:
        if not state.in_block_comment:
            for pattern in self.patterns.imports:
                state.dependencies.extend(m.group(1) for m in pattern.finditer(raw))

        code = self._strip_code(raw, state)
        if not code.strip():
            return

        signature = self._match_signature(code)
        if signature:
            if state.stack and self._is_pending(state.stack[-1], state.depth):
                state.functions.append(state.stack.pop().close(lineno - 1))
            state.stack.append(_FunctionFrame(name=signature, start_line=lineno, depth=state.depth))

        matches = len(self.patterns.decisions.findall(code))
        state.decisions += matches
        if state.stack:
            state.stack[-1].decisions += matches

        if not self.patterns.braces:
            return

        opens = code.count("{")
        state.depth += opens - code.count("}")
        while state.stack:
            frame = state.stack[-1]
            if state.depth > frame.depth:
                frame.opened = True
                break
            single_line = frame.start_line == lineno and opens > 0
            if not (frame.opened or single_line or state.depth < frame.depth):
                break
            state.functions.append(state.stack.pop().close(lineno))

    def _strip_code(self, raw: str, state: _ScanState) -> str:
        """Remove string literals and comments from one line."""
        line = raw
        if state.in_block_comment:
            end = line.find("*/")
            if end == -1:
                return ""
            line = line[end + 2:]
            state.in_block_comment = False

        line = self.patterns.strings.sub('""', line)

        if self.patterns.block_comments:
            line = re.sub(r"/\*.*?\*/", " ", line)
            start = line.find("/*")
            if start != -1:
                state.in_block_comment = True
                line = line[:start]

        for marker in self.patterns.line_comments:
            idx = line.find(marker)
            if idx != -1:
                line = line[:idx]
        return line

    def _is_pending(self, frame: _FunctionFrame, depth: int) -> bool:
        """A frame that never opened a body ends where the next signature starts."""
        if not self.patterns.braces:
            return True
        return not frame.opened and frame.depth == depth

    def _match_signature(self, code: str) -> str | None:
        for pattern in self.patterns.signatures:
            match = pattern.search(code)
            if match and match.group(1) not in _KEYWORDS:
                return match.group(1)
        return None


class GenericStrategy(ComplexityStrategy):
    """Catch-all estimator: ``max(control-flow matches, LOC // 20)``, floored at 1."""

    name = "generic"

    def analyze(self, path: str, content: str, language: str = "other") -> ComplexityReport:
        lines = content.splitlines()[:MAX_SCAN_LINES]
        matches = sum(len(GENERIC_DECISIONS.findall(line)) for line in lines)
        loc = count_loc(content)
        complexity = max(1, matches, loc // 20)
        return ComplexityReport(
            file_id=path,
            language=language,
            cyclomatic_complexity=complexity,
            maintainability_index=maintainability_index(complexity, loc),
            loc=loc,
            strategy=self.name,
        )
