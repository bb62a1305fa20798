"""Churn miner.

Reads commit history of a local working copy through the ``git`` CLI and
reports per-file modification frequency and authorship. Churn is best-effort
telemetry: every git failure is logged and turns into a zero or empty result.
"""

import logging
import subprocess
from collections import Counter
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 90


@dataclass(frozen=True)
class ChurnRecord:
    """Commit count and authorship of one file within a trailing window.

    Attributes:
        file_id: Path relative to the repository root
        commit_count: Commits touching the file in the window
        window_days: Size of the trailing window
        primary_author: Author with the most commits, if any
        authors: Commit count per author name
    """

    file_id: str
    commit_count: int = 0
    window_days: int = DEFAULT_WINDOW_DAYS
    primary_author: str | None = None
    authors: dict[str, int] = field(default_factory=dict)


@dataclass(frozen=True)
class CommitEvent:
    sha: str
    author: str
    date: datetime | None
    message: str = ""


@dataclass
class ModificationPattern:
    """Who changed a file, when, and how often."""

    total_commits: int = 0
    authors: dict[str, int] = field(default_factory=dict)
    timeline: list[CommitEvent] = field(default_factory=list)
    primary_author: str | None = None


@dataclass(frozen=True)
class Hotspot:
    path: str
    churn: int
    complexity: int

    @property
    def score(self) -> int:
        return self.churn * self.complexity


@dataclass(frozen=True)
class ChurnTrendPoint:
    start: datetime
    end: datetime
    commits: int


def _primary_author(authors: Mapping[str, int]) -> str | None:
    if not authors:
        return None
    return max(authors.items(), key=lambda item: (item[1], item[0]))[0]


def _parse_date(value: str) -> datetime | None:
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


class ChurnMiner:
    """Mines ``git log`` of one working copy.

    The working copy is only read. Callers must not run two miners against
    the same clone while it is being updated.
    """

    def __init__(self, repo_path: Path | str, timeout: int = 120):
        self.repo_path = Path(repo_path)
        self.timeout = timeout

    def _since(self, days: int) -> str:
        return (datetime.now(UTC) - timedelta(days=days)).isoformat()

    def _run_git(self, *args: str) -> str | None:
        """Run a git command in the working copy. Returns None on any failure."""
        if not (self.repo_path / ".git").exists():
            logger.warning(f"Not a git repository: {self.repo_path}")
            return None

        try:
            result = subprocess.run(
                ["git", *args],
                cwd=self.repo_path,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout,
            )
        except subprocess.CalledProcessError as e:
            logger.error(f"Git command failed: {e.stderr.strip() if e.stderr else e}")
            return None
        except subprocess.TimeoutExpired:
            logger.error(f"Git command timed out after {self.timeout}s: git {' '.join(args)}")
            return None
        except OSError as e:
            logger.error(f"Failed to run git: {e}")
            return None
        return result.stdout

    def churn_rate(self, path: str, window_days: int = DEFAULT_WINDOW_DAYS) -> ChurnRecord:
        """Commit count and author histogram for one file."""
        output = self._run_git(
            "log",
            f"--since={self._since(window_days)}",
            "--no-merges",
            "--format=%H%x09%an",
            "--",
            path,
        )
        if not output:
            return ChurnRecord(file_id=path, window_days=window_days)

        authors: Counter[str] = Counter()
        commits = 0
        for line in output.splitlines():
            sha, _, author = line.partition("\t")
            if not sha.strip():
                continue
            commits += 1
            authors[author.strip()] += 1

        return ChurnRecord(
            file_id=path,
            commit_count=commits,
            window_days=window_days,
            primary_author=_primary_author(authors),
            authors=dict(authors),
        )

    def all_files_churn(self, window_days: int = DEFAULT_WINDOW_DAYS) -> dict[str, int]:
        """Commit count for every file touched in the window, from one log query."""
        output = self._run_git(
            "log",
            f"--since={self._since(window_days)}",
            "--no-merges",
            "--name-only",
            "--format=",
        )
        if not output:
            return {}

        counts = Counter(line.strip() for line in output.splitlines() if line.strip())
        logger.info(f"Analyzed git history: {len(counts)} files with changes")
        return dict(counts)

    def modification_pattern(
        self, path: str, window_days: int = DEFAULT_WINDOW_DAYS
    ) -> ModificationPattern:
        """Timeline and per-author commit counts for one file, newest first."""
        output = self._run_git(
            "log",
            f"--since={self._since(window_days)}",
            "--no-merges",
            "--format=%H%x09%an%x09%aI%x09%s",
            "--",
            path,
        )
        if not output:
            return ModificationPattern()

        pattern = ModificationPattern()
        authors: Counter[str] = Counter()
        for line in output.splitlines():
            parts = line.split("\t", 3)
            if len(parts) < 3:
                continue
            sha, author, date = parts[0], parts[1], parts[2]
            message = parts[3] if len(parts) == 4 else ""
            authors[author] += 1
            pattern.timeline.append(CommitEvent(sha=sha, author=author, date=_parse_date(date), message=message))

        pattern.total_commits = len(pattern.timeline)
        pattern.authors = dict(authors)
        pattern.primary_author = _primary_author(authors)
        return pattern

    def files_changed_in_commit(self, sha: str) -> list[str]:
        output = self._run_git("show", sha, "--name-only", "--format=")
        if not output:
            return []
        return [line.strip() for line in output.splitlines() if line.strip()]

    def churn_trend(
        self, path: str, intervals: int = 6, interval_days: int = 30
    ) -> list[ChurnTrendPoint]:
        """Commit counts per consecutive interval, oldest interval first."""
        now = datetime.now(UTC)
        trend: list[ChurnTrendPoint] = []
        for i in range(intervals):
            end = now - timedelta(days=i * interval_days)
            start = end - timedelta(days=interval_days)
            output = self._run_git(
                "log",
                f"--since={start.isoformat()}",
                f"--until={end.isoformat()}",
                "--no-merges",
                "--format=%H",
                "--",
                path,
            )
            commits = len([line for line in (output or "").splitlines() if line.strip()])
            trend.insert(0, ChurnTrendPoint(start=start, end=end, commits=commits))
        return trend

    @staticmethod
    def identify_hotspots(
        churn_map: Mapping[str, int],
        complexity_map: Mapping[str, int],
        churn_threshold: int = 5,
        complexity_threshold: int = 15,
    ) -> list[Hotspot]:
        """Files meeting both thresholds, sorted by ``churn * complexity`` descending."""
        hotspots = [
            Hotspot(path=path, churn=churn, complexity=complexity_map.get(path, 0))
            for path, churn in churn_map.items()
            if churn >= churn_threshold and complexity_map.get(path, 0) >= complexity_threshold
        ]
        return sorted(hotspots, key=lambda h: h.score, reverse=True)
