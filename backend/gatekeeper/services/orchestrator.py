"""Orchestrates full repository scans and pull request analyses.

Each entry point is what a queue processor runs for one job. Analysis
results go to the store, progress goes to the repository's event channel.
"""

import logging
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import AbstractContextManager, contextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from gatekeeper.core.config import Settings, get_settings
from gatekeeper.core.database import SessionFactory
from gatekeeper.core.exceptions import AnalysisUnavailableError, RecoverableProviderError
from gatekeeper.core.redis import publish_event, repository_lock
from gatekeeper.models import PullRequest
from gatekeeper.models.base import utcnow
from gatekeeper.services.ai_scan import AIScanProvider, LiteLLMScanProvider
from gatekeeper.services.churn_miner import ChurnMiner, ChurnRecord, Hotspot
from gatekeeper.services.complexity import ComplexityReport, analyze_file, is_analyzable
from gatekeeper.services.dependency_graph import build_graph
from gatekeeper.services.local_clone import (
    CloneFactory,
    LocalClone,
    LocalCloneError,
    list_analyzable_files,
    local_clone_factory,
    read_source,
)
from gatekeeper.services.metrics_aggregator import MetricsAggregator, MetricsSummary
from gatekeeper.services.pipeline import (
    PENDING,
    PipelineContext,
    PipelineResult,
    SourceFile,
    Thresholds,
    VerdictPipeline,
)
from gatekeeper.services.queue.registry import DURABLE, EPHEMERAL
from gatekeeper.services.risk import assess_file
from gatekeeper.services.source_control import (
    ProviderFactory,
    SourceControlError,
    SourceControlProvider,
    github_provider_factory,
)
from gatekeeper.services.store import AnalysisStore

logger = logging.getLogger(__name__)

Publish = Callable[[str, str, dict[str, Any] | None], Any]
LockFactory = Callable[[str], AbstractContextManager]

PYTHON_EXTENSIONS = (".py", ".pyi")


@dataclass
class ScanSummary:
    repo_id: str
    source: str
    files_analyzed: int = 0
    files_skipped: int = 0
    files_failed: int = 0
    cycles: list[list[str]] = field(default_factory=list)
    hotspots: list[Hotspot] = field(default_factory=list)
    metrics: MetricsSummary | None = None
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "repo_id": self.repo_id,
            "source": self.source,
            "files_analyzed": self.files_analyzed,
            "files_skipped": self.files_skipped,
            "files_failed": self.files_failed,
            "cycles": self.cycles,
            "hotspots": [
                {"path": h.path, "churn": h.churn, "complexity": h.complexity, "score": h.score}
                for h in self.hotspots[:10]
            ],
            "metrics": self.metrics.to_dict() if self.metrics else None,
            "duration_seconds": round(self.duration_seconds, 2),
        }


def scan_progress(processed: int, total: int, current_path: str | None = None) -> dict[str, Any]:
    """Payload of a ``scan:progress`` event."""
    percentage = round(processed / total * 100) if total else 100
    return {
        "processedCount": processed,
        "totalCount": total,
        "percentage": percentage,
        "currentPath": current_path,
    }


def _redis_locks(settings: Settings) -> LockFactory:
    """Per-repository locks shared by every process through Redis."""

    def lock(repo_id: str) -> AbstractContextManager:
        return repository_lock(repo_id, timeout_seconds=settings.job_timeout_seconds)

    return lock


def _local_locks() -> LockFactory:
    """Per-repository locks for a single process."""
    guard = threading.Lock()
    locks: dict[str, threading.Lock] = {}

    @contextmanager
    def lock(repo_id: str) -> Iterator[None]:
        with guard:
            repo_lock = locks.setdefault(repo_id, threading.Lock())
        with repo_lock:
            yield

    return lock


class Orchestrator:
    def __init__(
        self,
        store: AnalysisStore,
        provider_factory: ProviderFactory,
        ai_provider: AIScanProvider | None = None,
        publish: Publish = publish_event,
        settings: Settings | None = None,
        clone_factory: CloneFactory | None = None,
        lock: LockFactory | None = None,
    ):
        self.store = store
        self.provider_factory = provider_factory
        self.publish = publish
        self.settings = settings or get_settings()
        self.clone_factory = clone_factory
        self.lock = lock or _local_locks()
        self.pipeline = VerdictPipeline(Thresholds.from_settings(self.settings), ai_provider)
        self.metrics = MetricsAggregator(store)

    @classmethod
    def from_settings(
        cls, settings: Settings, session_factory: SessionFactory, queue_backend: str = DURABLE
    ) -> "Orchestrator":
        """Production wiring: GitHub, LiteLLM and Redis events.

        Scans are serialized through Redis locks on the durable backend and
        through in-process locks on the ephemeral one, which runs without Redis.
        """
        ai_provider = None
        if settings.ai_scan_enabled:
            ai_provider = LiteLLMScanProvider(
                model=settings.ai_scan_model,
                timeout=settings.ai_scan_timeout_seconds,
                debug=settings.debug,
            )
        clone_factory = None
        if settings.clone_root:
            clone_factory = local_clone_factory(
                settings.clone_root,
                access_token=settings.github_token,
                timeout=settings.git_timeout_seconds,
            )
        return cls(
            store=AnalysisStore(session_factory, file_history_limit=settings.file_history_limit),
            provider_factory=github_provider_factory(settings.github_token, settings.github_api_url),
            ai_provider=ai_provider,
            settings=settings,
            clone_factory=clone_factory,
            lock=_local_locks() if queue_backend == EPHEMERAL else _redis_locks(settings),
        )

    # Full scans

    def scan_repository(self, repo_id: str, ref: str | None = None, local_path: str | None = None) -> ScanSummary:
        """Analyze every analyzable file of a repository and refresh its rollups.

        Scans of the same repository never overlap.
        """
        with self.lock(repo_id):
            started = time.monotonic()
            self.publish(repo_id, "scan:started", {"ref": ref})
            try:
                summary = self._scan(repo_id, ref, local_path)
            except Exception as e:
                logger.error(f"Scan of {repo_id} failed: {e}")
                self.publish(repo_id, "scan:failed", {"error": str(e)})
                raise

            summary.duration_seconds = time.monotonic() - started
            self.publish(repo_id, "scan:complete", summary.to_dict())
            logger.info(
                f"Scan of {repo_id} complete: {summary.files_analyzed} files "
                f"in {summary.duration_seconds:.1f}s ({summary.source})"
            )
            return summary

    def _working_copy(self, repo_id: str, ref: str | None, local_path: str | None) -> Path | None:
        if local_path:
            return Path(local_path)
        if self.clone_factory is None:
            return None
        try:
            return self.clone_factory(repo_id).ensure(ref)
        except LocalCloneError as e:
            logger.warning(f"No working copy for {repo_id}, reading through the provider: {e.message}")
            return None

    def _provider_sources(self, repo_id: str, ref: str | None) -> tuple[list[str], Callable[[str], str | None]]:
        provider = self.provider_factory(repo_id)
        max_bytes = self.settings.max_file_bytes
        entries = provider.list_repository_tree(ref or "HEAD")
        paths = sorted(e.path for e in entries if is_analyzable(e.path) and e.size <= max_bytes)

        def read(path: str) -> str | None:
            try:
                return provider.get_file_content(path, ref)
            except SourceControlError as e:
                logger.warning(f"Could not read {repo_id}:{path}: {e.message}")
                return None

        return paths, read

    def _scan(self, repo_id: str, ref: str | None, local_path: str | None) -> ScanSummary:
        root = self._working_copy(repo_id, ref, local_path)
        if root is not None:
            paths = list_analyzable_files(root)
            max_bytes = self.settings.max_file_bytes

            def read(path: str) -> str | None:
                return read_source(root, path, max_bytes)

            source = "local"
        else:
            paths, read = self._provider_sources(repo_id, ref)
            source = "provider"

        summary = ScanSummary(repo_id=repo_id, source=source)
        total = len(paths)
        logger.info(f"Scanning {total} files of {repo_id} ({source})")
        self.publish(repo_id, "scan:progress", scan_progress(0, total))

        def analyze(path: str) -> tuple[str, str, ComplexityReport] | None:
            content = read(path)
            if content is None:
                return None
            return path, content, analyze_file(path, content)

        results: dict[str, tuple[str, ComplexityReport]] = {}
        interval = max(1, self.settings.progress_interval)
        with ThreadPoolExecutor(max_workers=max(1, self.settings.scan_workers)) as executor:
            futures = {executor.submit(analyze, path): path for path in paths}
            for processed, future in enumerate(as_completed(futures), start=1):
                outcome = future.result()
                if outcome is None:
                    summary.files_skipped += 1
                else:
                    path, content, report = outcome
                    results[path] = (content, report)
                    if report.error:
                        summary.files_failed += 1
                if processed % interval == 0 or processed == total:
                    self.publish(repo_id, "scan:progress", scan_progress(processed, total, futures[future]))

        window = self.settings.churn_window_days
        churn_map = ChurnMiner(root, timeout=self.settings.git_timeout_seconds).all_files_churn(window) if root else {}

        # Sorted so cycle reports do not depend on worker completion order
        graph = build_graph({
            path: results[path][0] for path in sorted(results) if path.endswith(PYTHON_EXTENSIONS)
        })
        coupling = graph.coupling()
        summary.cycles = graph.find_cycles()

        analyzed_at = utcnow()
        for path in sorted(results):
            report = results[path][1]
            churn = ChurnRecord(file_id=path, commit_count=churn_map.get(path, 0), window_days=window)
            self.store.upsert_file(repo_id, assess_file(report, churn), coupling.get(path), analyzed_at=analyzed_at)
            summary.files_analyzed += 1

        summary.hotspots = ChurnMiner.identify_hotspots(
            {path: churn_map.get(path, 0) for path in results},
            {path: report.cyclomatic_complexity for path, (_, report) in results.items()},
        )
        summary.metrics = self.metrics.compute_all(
            repo_id,
            block_rate_days=self.settings.block_rate_window_days,
            risk_reduced_days=self.settings.risk_reduced_window_days,
            hotspot_threshold=self.settings.hotspot_threshold,
            hotspot_limit=self.settings.hotspot_limit,
        )
        return summary

    # Pull requests

    def analyze_pull_request(
        self,
        repo_id: str,
        pr_number: int,
        head_sha: str | None = None,
        ticket: str | None = None,
        title: str | None = None,
        author: str | None = None,
        branch: str | None = None,
    ) -> PullRequest:
        """Run the verdict pipeline on a pull request and persist the verdict.

        The record is PENDING while the run is in flight. If the run fails it
        stays PENDING with the failure as its reason and the error propagates
        so the queue can retry.
        """
        known = {"title": title, "author": author, "branch": branch, "head_sha": head_sha}
        self.store.upsert_pull_request(
            repo_id, pr_number, status=PENDING, **{k: v for k, v in known.items() if v is not None}
        )
        self.publish(repo_id, "pr:started", {"pr_number": pr_number})

        try:
            provider = self.provider_factory(repo_id)
            if head_sha is None or title is None:
                head_sha, title, author, branch = self._fill_pull_request_info(
                    provider, pr_number, head_sha, title, author, branch
                )

            files = self._collect_pr_files(repo_id, pr_number, provider, head_sha)
            context = PipelineContext(
                repo_id=repo_id,
                pr_number=pr_number,
                baselines=self.store.get_baselines(repo_id, [f.path for f in files]),
                ticket=ticket,
                title=title,
            )
            result = self.pipeline.run(files, context)

            record = self.store.upsert_pull_request(
                repo_id,
                pr_number,
                title=title,
                author=author,
                branch=branch,
                head_sha=head_sha,
                files_changed=[f.path for f in files],
                analyzed_at=utcnow(),
                **result.record_fields(),
            )
        except Exception as e:
            logger.error(f"Analysis of {repo_id}#{pr_number} failed: {e}")
            self.store.upsert_pull_request(
                repo_id,
                pr_number,
                status=PENDING,
                block_reasons=[f"Analysis failed: {e}"],
                summary="Analysis did not complete and will be retried.",
            )
            self.publish(repo_id, "pr:failed", {"pr_number": pr_number, "error": str(e)})
            raise

        self._report_verdict(provider, repo_id, pr_number, head_sha, result)
        self.publish(repo_id, "pr:analyzed", {
            "pr_number": pr_number,
            "status": result.status,
            "overall_risk": result.overall_risk,
            "health_delta": result.health_delta,
            "reasons": result.reasons,
        })
        return record

    def _fill_pull_request_info(
        self,
        provider: SourceControlProvider,
        pr_number: int,
        head_sha: str | None,
        title: str | None,
        author: str | None,
        branch: str | None,
    ) -> tuple[str | None, str | None, str | None, str | None]:
        try:
            info = provider.get_pull_request(pr_number)
        except RecoverableProviderError as e:
            logger.warning(f"Could not fetch pull request #{pr_number} details: {e.message}")
            return head_sha, title, author, branch
        return (
            head_sha or info.head_sha,
            title or info.title,
            author or info.author,
            branch or info.branch,
        )

    def _collect_pr_files(
        self,
        repo_id: str,
        pr_number: int,
        provider: SourceControlProvider,
        head_sha: str | None,
    ) -> list[SourceFile]:
        """Files of the pull request as the pipeline sees them.

        Raises ``AnalysisUnavailableError`` when the provider cannot list the
        changes and no local clone can stand in, so the verdict stays pending.
        """
        try:
            changed = provider.list_changed_files(pr_number)
        except RecoverableProviderError as e:
            logger.warning(f"Provider unavailable for {repo_id}#{pr_number}, using local clone: {e.message}")
            try:
                files = self._fallback_files(repo_id, head_sha)
            except LocalCloneError as clone_error:
                raise AnalysisUnavailableError(
                    f"Changed files unavailable ({e.message} {clone_error.message})"
                ) from e
            if not files:
                raise AnalysisUnavailableError(
                    f"Changed files unavailable ({e.message} The local clone has no analyzable files.)"
                ) from e
            return files

        if not changed:
            logger.info(f"No changed files reported for {repo_id}#{pr_number}, using local clone")
            try:
                return self._fallback_files(repo_id, head_sha)
            except LocalCloneError as e:
                logger.info(f"Nothing to analyze for {repo_id}#{pr_number}: {e.message}")
                return []

        read_head = self._head_reader(repo_id, provider, head_sha)
        files: list[SourceFile] = []
        for changed_file in changed:
            if changed_file.removed or not is_analyzable(changed_file.path):
                continue
            if changed_file.patch:
                files.append(SourceFile.from_patch(
                    changed_file.path, changed_file.patch, full_content=read_head(changed_file.path)
                ))
                continue
            # No patch (binary or too large diff): analyze the full file
            try:
                content = provider.get_file_content(changed_file.path, head_sha)
            except SourceControlError as e:
                logger.warning(f"Skipping {changed_file.path}: {e.message}")
                continue
            files.append(SourceFile(path=changed_file.path, content=content))
        return files

    def _head_reader(
        self, repo_id: str, provider: SourceControlProvider, head_sha: str | None
    ) -> Callable[[str], str | None]:
        """Reads whole files at the head commit: provider first, local clone second.

        Without a head commit nothing is read, since the default branch is not
        what the pull request changes.
        """
        clones: list[LocalClone | None] = []

        def clone() -> LocalClone | None:
            if not clones:
                try:
                    clones.append(self._ensure_clone(repo_id, head_sha))
                except LocalCloneError as e:
                    logger.warning(f"No local clone for {repo_id} at {head_sha}: {e.message}")
                    clones.append(None)
            return clones[0]

        def read(path: str) -> str | None:
            if head_sha is None:
                return None
            try:
                return provider.get_file_content(path, head_sha)
            except SourceControlError as e:
                logger.debug(f"Could not read {repo_id}:{path} at {head_sha} through the provider: {e.message}")
            local = clone()
            return local.read(path, self.settings.max_file_bytes) if local else None

        return read

    def _ensure_clone(self, repo_id: str, head_sha: str | None) -> LocalClone:
        if self.clone_factory is None:
            raise LocalCloneError("No local clone is configured.")
        clone = self.clone_factory(repo_id)
        clone.ensure(head_sha)
        return clone

    def _fallback_files(self, repo_id: str, head_sha: str | None) -> list[SourceFile]:
        """Recently changed files of the local clone. Raises ``LocalCloneError``."""
        clone = self._ensure_clone(repo_id, head_sha)
        files: list[SourceFile] = []
        for path in clone.fallback_files():
            content = clone.read(path, self.settings.max_file_bytes)
            if content is not None:
                files.append(SourceFile(path=path, content=content, local_path=str(clone.path / path)))
        return files

    def _report_verdict(
        self,
        provider: SourceControlProvider,
        repo_id: str,
        pr_number: int,
        head_sha: str | None,
        result: PipelineResult,
    ) -> None:
        """Post the verdict back to the provider. Failures are logged only."""
        if self.settings.post_commit_status and head_sha:
            description = "; ".join(result.reasons) or result.summary
            try:
                provider.post_commit_status(head_sha, result.status, description)
            except Exception as e:
                logger.warning(f"Could not post commit status for {repo_id}#{pr_number}: {e}")

        if self.settings.post_review_comments:
            try:
                provider.post_review_comment(pr_number, format_review(result))
            except Exception as e:
                logger.warning(f"Could not post review for {repo_id}#{pr_number}: {e}")


def format_review(result: PipelineResult) -> str:
    """Markdown review body for a verdict."""
    lines = [f"## Gatekeeper verdict: {result.status}", "", result.summary]
    if result.block_reasons:
        lines += ["", "**Blocking:**"] + [f"- {r}" for r in result.block_reasons]
    if result.warn_reasons:
        lines += ["", "**Warnings:**"] + [f"- {r}" for r in result.warn_reasons]
    if result.findings:
        lines += ["", "**Findings:**"]
        for finding in result.findings[:20]:
            location = finding.get("file", "")
            if finding.get("line"):
                location += f":{finding['line']}"
            lines.append(f"- `{location}` {finding.get('message', '')}")
    return "\n".join(lines)
