"""File extension to language mapping for the complexity analyzers."""

from pathlib import PurePosixPath

SUPPORTED_EXTENSIONS: dict[str, str] = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "typescript",
    ".tsx": "typescript",
    ".java": "java",
    ".go": "go",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".cc": "cpp",
    ".cxx": "cpp",
    ".hpp": "cpp",
    ".hh": "cpp",
    ".cs": "csharp",
    ".rb": "ruby",
    ".php": "php",
    ".rs": "rust",
    ".swift": "swift",
    ".kt": "kotlin",
    ".kts": "kotlin",
    ".scala": "scala",
}

PRIMARY_LANGUAGE = "python"
UNKNOWN_LANGUAGE = "other"

# Languages whose sources are checked for balanced brackets by the lint layer
C_FAMILY_LANGUAGES = frozenset({
    "javascript", "typescript", "java", "go", "c", "cpp", "csharp",
    "php", "rust", "swift", "kotlin", "scala",
})

# Directories never walked during a repository scan
EXCLUDED_DIRS = frozenset({
    ".git",
    "node_modules",
    "dist",
    "build",
    "vendor",
    "__pycache__",
    ".venv",
    "venv",
    "coverage",
    ".next",
    "target",
})


def extension_of(path: str) -> str:
    return PurePosixPath(path).suffix.lower()


def detect_language(path: str) -> str:
    """Return the language for a path, or ``"other"`` when unknown."""
    return SUPPORTED_EXTENSIONS.get(extension_of(path), UNKNOWN_LANGUAGE)


def is_analyzable(path: str) -> bool:
    """True when the path has a supported extension and no excluded directory."""
    parts = PurePosixPath(path).parts
    if any(part in EXCLUDED_DIRS for part in parts[:-1]):
        return False
    return extension_of(path) in SUPPORTED_EXTENSIONS


def is_excluded_dir(name: str) -> bool:
    return name in EXCLUDED_DIRS
