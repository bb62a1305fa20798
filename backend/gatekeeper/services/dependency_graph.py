"""Python dependency graph: imports, exports, cycles and coupling.

Parses each Python file with the standard ``ast`` module, resolves imports to
files inside the analyzed set and derives coupling metrics and import cycles
from the resulting directed graph.
"""

import ast
import logging
import sys
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from typing import Any

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImportRef:
    """One import statement target.

    ``module`` is the dotted module name (empty for ``from . import x``),
    ``level`` the number of leading dots of a relative import and ``names``
    the names pulled in by a ``from`` import.
    """

    module: str
    level: int = 0
    names: tuple[str, ...] = ()

    @property
    def target(self) -> str:
        return "." * self.level + self.module


@dataclass
class FileDependencies:
    """Imports and exports of one file."""

    path: str
    imports: list[str] = field(default_factory=list)
    exports: list[str] = field(default_factory=list)
    refs: list[ImportRef] = field(default_factory=list)


@dataclass(frozen=True)
class CouplingMetrics:
    afferent: int
    efferent: int
    instability: float

    @property
    def total(self) -> int:
        return self.afferent + self.efferent


@dataclass
class DependencyTreeNode:
    path: str
    dependencies: list["DependencyTreeNode"] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {"file": self.path, "dependencies": [d.to_dict() for d in self.dependencies]}


class _ImportCollector(ast.NodeVisitor):
    """Collects import statements at any nesting level."""

    def __init__(self) -> None:
        self.refs: list[ImportRef] = []

    def visit_Import(self, node: ast.Import) -> None:
        for alias in node.names:
            self.refs.append(ImportRef(module=alias.name))

    def visit_ImportFrom(self, node: ast.ImportFrom) -> None:
        self.refs.append(ImportRef(
            module=node.module or "",
            level=node.level or 0,
            names=tuple(alias.name for alias in node.names),
        ))


def _collect_refs(tree: ast.AST) -> list[ImportRef]:
    collector = _ImportCollector()
    collector.visit(tree)
    return collector.refs


def _collect_exports(tree: ast.Module) -> list[str]:
    """``__all__`` entries when declared, else public top-level names."""
    public: list[str] = []
    for node in tree.body:
        if isinstance(node, ast.Assign | ast.AnnAssign):
            targets = node.targets if isinstance(node, ast.Assign) else [node.target]
            names = [t.id for t in targets if isinstance(t, ast.Name)]
            if "__all__" in names and isinstance(node.value, ast.List | ast.Tuple):
                return [
                    elt.value for elt in node.value.elts
                    if isinstance(elt, ast.Constant) and isinstance(elt.value, str)
                ]
            public.extend(n for n in names if not n.startswith("_"))
        elif isinstance(node, ast.FunctionDef | ast.AsyncFunctionDef | ast.ClassDef):
            if not node.name.startswith("_"):
                public.append(node.name)
    return list(dict.fromkeys(public))


def extract_imports(content: str) -> list[str]:
    """Imported module names in source order, relative ones keep their dots.

    Raises SyntaxError when the content does not parse.
    """
    refs = _collect_refs(ast.parse(content))
    return list(dict.fromkeys(ref.target for ref in refs))


def extract_file_dependencies(path: str, content: str) -> FileDependencies:
    """Imports and exports of a Python file. Unparseable files yield empty lists."""
    try:
        tree = ast.parse(content)
    except (SyntaxError, ValueError) as e:
        logger.warning(f"Cannot parse {path} for dependencies: {e}")
        return FileDependencies(path=path)

    refs = _collect_refs(tree)
    return FileDependencies(
        path=path,
        imports=list(dict.fromkeys(ref.target for ref in refs)),
        exports=_collect_exports(tree),
        refs=refs,
    )


def module_name_for(path: str) -> str:
    """Dotted module name for a repository-relative path."""
    parts = list(PurePosixPath(path).with_suffix("").parts)
    if parts and parts[-1] == "__init__":
        parts = parts[:-1]
    return ".".join(parts)


class DependencyGraph:
    """Directed graph of file-to-file imports within one file set."""

    def __init__(self, files: Mapping[str, FileDependencies]):
        self.files = dict(files)
        self.edges: dict[str, list[str]] = {path: [] for path in self.files}
        self._modules, self._suffixes = self._index_modules(self.files)
        for path, deps in self.files.items():
            for ref in deps.refs:
                for target in self._resolve(path, ref):
                    if target != path and target not in self.edges[path]:
                        self.edges[path].append(target)

    @staticmethod
    def _index_modules(files: Mapping[str, FileDependencies]) -> tuple[dict[str, str], dict[str, set[str]]]:
        """Index files by full dotted name and by every shorter dotted suffix.

        Suffixes let ``pkg.mod`` find ``src/pkg/mod.py``. Shallower files are
        indexed first so they win a clash of full names.
        """
        modules: dict[str, str] = {}
        suffixes: dict[str, set[str]] = {}
        for path in sorted(files, key=lambda p: (len(PurePosixPath(p).parts), p)):
            parts = module_name_for(path).split(".")
            if not parts[0]:
                continue
            modules.setdefault(".".join(parts), path)
            for start in range(1, len(parts)):
                suffixes.setdefault(".".join(parts[start:]), set()).add(path)
        return modules, suffixes

    def _lookup(self, module: str, relative: bool) -> str | None:
        """File for a dotted name: exact match, else a unique suffix match.

        Relative imports and names rooted in the standard library only match
        exactly.
        """
        if module in self._modules:
            return self._modules[module]
        if relative or module.partition(".")[0] in sys.stdlib_module_names:
            return None
        candidates = self._suffixes.get(module, set())
        return next(iter(candidates)) if len(candidates) == 1 else None

    def _resolve(self, path: str, ref: ImportRef) -> list[str]:
        if ref.level:
            package = list(PurePosixPath(path).parts[:-1])
            prefix = ".".join(package[: len(package) - (ref.level - 1)])
            module = ".".join(p for p in (prefix, ref.module) if p)
        else:
            module = ref.module
        relative = bool(ref.level)

        found: list[str] = []
        # "from pkg import mod" may name submodules rather than attributes
        for name in ref.names:
            candidate = self._lookup(f"{module}.{name}" if module else name, relative)
            if candidate:
                found.append(candidate)
        if found:
            return found

        while module:
            target = self._lookup(module, relative)
            if target:
                return [target]
            if relative:
                break
            module = module.rpartition(".")[0]
        return []

    @property
    def nodes(self) -> list[str]:
        return list(self.edges)

    def dependents_of(self, path: str) -> list[str]:
        return [src for src, targets in self.edges.items() if path in targets]

    def find_cycles(self) -> list[list[str]]:
        """Import cycles found by depth-first search.

        Each cycle is the path slice from the first revisited node to the
        closure, with the closing node repeated at the end.
        """
        visited: set[str] = set()
        cycles: list[list[str]] = []

        for start in self.edges:
            if start in visited:
                continue
            on_stack: set[str] = {start}
            path: list[str] = [start]
            stack: list[tuple[str, int]] = [(start, 0)]
            visited.add(start)

            while stack:
                node, index = stack[-1]
                targets = self.edges[node]
                if index >= len(targets):
                    stack.pop()
                    path.pop()
                    on_stack.discard(node)
                    continue
                stack[-1] = (node, index + 1)
                target = targets[index]
                if target in on_stack:
                    cycles.append(path[path.index(target):] + [target])
                elif target not in visited:
                    visited.add(target)
                    on_stack.add(target)
                    path.append(target)
                    stack.append((target, 0))

        return cycles

    def coupling(self) -> dict[str, CouplingMetrics]:
        """Afferent/efferent coupling and instability ``Ce / (Ca + Ce)`` per file."""
        afferent = {path: 0 for path in self.edges}
        for targets in self.edges.values():
            for target in targets:
                afferent[target] += 1

        metrics = {}
        for path, targets in self.edges.items():
            ca, ce = afferent[path], len(targets)
            instability = ce / (ca + ce) if ca + ce else 0.0
            metrics[path] = CouplingMetrics(afferent=ca, efferent=ce, instability=round(instability, 4))
        return metrics

    def highly_coupled(self, threshold: int = 10) -> list[tuple[str, CouplingMetrics]]:
        """Files whose total coupling exceeds the threshold, most coupled first."""
        coupled = [(path, m) for path, m in self.coupling().items() if m.total > threshold]
        return sorted(coupled, key=lambda item: item[1].total, reverse=True)

    def dependency_tree(self, root: str, max_depth: int = 3) -> DependencyTreeNode | None:
        """Dependencies of ``root`` expanded at most ``max_depth`` levels deep."""
        return self._subtree(root, max_depth, 0)

    def _subtree(self, path: str, max_depth: int, depth: int) -> DependencyTreeNode | None:
        if depth >= max_depth or path not in self.edges:
            return None
        node = DependencyTreeNode(path=path)
        for target in self.edges[path]:
            child = self._subtree(target, max_depth, depth + 1)
            if child:
                node.dependencies.append(child)
        return node


def build_graph(files: Mapping[str, str]) -> DependencyGraph:
    """Build the graph for ``{path: content}``; non-Python paths are ignored."""
    deps = {
        path: extract_file_dependencies(path, content)
        for path, content in files.items()
        if path.endswith((".py", ".pyi"))
    }
    return DependencyGraph(deps)
