"""Tests for the scan and pull request orchestration."""

from contextlib import contextmanager
from pathlib import Path

import pytest

from gatekeeper.core.exceptions import AnalysisUnavailableError
from gatekeeper.services.local_clone import LocalCloneError
from gatekeeper.services.orchestrator import Orchestrator, format_review, scan_progress
from gatekeeper.services.pipeline import PipelineResult
from gatekeeper.services.source_control import (
    ChangedFile,
    PullRequestInfo,
    RateLimitError,
    SourceControlError,
    TreeEntry,
)

REPO = "acme/widgets"

LOGIN_PATCH = "@@ -0,0 +1,2 @@\n+def login(user):\n+    return user\n"


def branchy(decisions: int) -> str:
    body = "\n".join(f"    if a == {i}:\n        return {i}" for i in range(decisions))
    return f"def f(a):\n{body}\n    return -1\n"


class FakeProvider:
    def __init__(self, changed=None, contents=None, tree=None, info=None, files_error=None, status_error=None):
        self.changed = changed or []
        self.contents = contents or {}
        self.tree = tree or []
        self.info = info
        self.files_error = files_error
        self.status_error = status_error
        self.statuses = []
        self.reviews = []
        self.content_reads = []

    def list_repository_tree(self, ref="HEAD"):
        return self.tree

    def list_changed_files(self, pr_number):
        if self.files_error:
            raise self.files_error
        return self.changed

    def get_file_content(self, path, ref=None):
        self.content_reads.append((path, ref))
        if path not in self.contents:
            raise SourceControlError("Resource not found or access denied.", status_code=404)
        return self.contents[path]

    def get_pull_request(self, pr_number):
        return self.info

    def post_commit_status(self, sha, verdict, description):
        if self.status_error:
            raise self.status_error
        self.statuses.append((sha, verdict, description))

    def post_review_comment(self, pr_number, body, event="COMMENT"):
        self.reviews.append((pr_number, body))


class FakeClone:
    def __init__(self, root: Path, files: dict[str, str], error=None):
        self.path = root
        self.files = files
        self.error = error
        self.refs = []

    def ensure(self, ref=None):
        if self.error:
            raise self.error
        self.refs.append(ref)
        return self.path

    def fallback_files(self, limit=50):
        return sorted(self.files)[:limit]

    def read(self, path, max_bytes=None):
        return self.files.get(path)


class EventRecorder:
    def __init__(self):
        self.events = []

    def __call__(self, repo_id, event_type, data=None):
        self.events.append((repo_id, event_type, data or {}))
        return True

    @property
    def types(self):
        return [event_type for _, event_type, _ in self.events]


def make_orchestrator(store, settings, provider, clone=None, **kwargs):
    publish = EventRecorder()
    orchestrator = Orchestrator(
        store=store,
        provider_factory=lambda repo_id: provider,
        publish=publish,
        settings=settings,
        clone_factory=(lambda repo_id: clone) if clone else None,
        **kwargs,
    )
    return orchestrator, publish


class TestAnalyzePullRequest:
    def test_clean_change_passes_and_is_reported(self, store, settings):
        provider = FakeProvider(changed=[
            ChangedFile("app/login.py", patch=LOGIN_PATCH),
            ChangedFile("docs/readme.md", patch="+hello"),
            ChangedFile("app/old.py", status="removed"),
        ])
        orchestrator, publish = make_orchestrator(store, settings, provider)

        record = orchestrator.analyze_pull_request(REPO, 5, head_sha="abc123", title="Login")

        assert record.status == "PASS"
        assert record.files_changed == ["app/login.py"]
        assert record.head_sha == "abc123"
        assert record.block_reasons == []
        assert record.analyzed_at is not None
        assert store.get_pull_request(REPO, 5).status == "PASS"
        assert publish.types == ["pr:started", "pr:analyzed"]
        assert provider.statuses == [("abc123", "PASS", record.summary)]
        assert provider.reviews == []

    def test_blocked_change_posts_reasons(self, store, settings):
        provider = FakeProvider(changed=[ChangedFile("app/run.py", patch="+result = eval(data)\n")])
        orchestrator, publish = make_orchestrator(store, settings, provider)

        record = orchestrator.analyze_pull_request(REPO, 6, head_sha="def456", title="Run")

        assert record.status == "BLOCK"
        assert record.block_reasons == ["Security issues detected: 1"]
        assert provider.statuses == [("def456", "BLOCK", "Security issues detected: 1")]
        analyzed = publish.events[-1][2]
        assert analyzed["status"] == "BLOCK"
        assert analyzed["reasons"] == ["Security issues detected: 1"]

    def test_missing_details_are_fetched(self, store, settings):
        provider = FakeProvider(
            changed=[ChangedFile("app/login.py", patch=LOGIN_PATCH)],
            info=PullRequestInfo(number=7, title="Add login", author="alice", branch="login", head_sha="fff000"),
        )
        orchestrator, _ = make_orchestrator(store, settings, provider)

        record = orchestrator.analyze_pull_request(REPO, 7)

        assert record.title == "Add login"
        assert record.author == "alice"
        assert record.branch == "login"
        assert record.head_sha == "fff000"

    def test_files_without_patch_are_read_in_full(self, store, settings):
        provider = FakeProvider(
            changed=[ChangedFile("app/big.py"), ChangedFile("app/gone.py")],
            contents={"app/big.py": "def big():\n    return 1\n"},
        )
        orchestrator, _ = make_orchestrator(store, settings, provider)

        record = orchestrator.analyze_pull_request(REPO, 8, head_sha="abc", title="Big")

        assert record.files_changed == ["app/big.py"]
        assert provider.content_reads == [("app/big.py", "abc"), ("app/gone.py", "abc")]

    def test_rate_limit_falls_back_to_local_clone(self, store, settings, tmp_path):
        provider = FakeProvider(files_error=RateLimitError())
        clone = FakeClone(tmp_path, {"app/a.py": "def a():\n    return 1\n", "app/b.py": "x = 1\n"})
        orchestrator, _ = make_orchestrator(store, settings, provider, clone=clone)

        record = orchestrator.analyze_pull_request(REPO, 9, head_sha="abc", title="Fallback")

        assert record.status == "PASS"
        assert record.files_changed == ["app/a.py", "app/b.py"]
        assert clone.refs == ["abc"]

    def test_empty_change_list_falls_back_to_local_clone(self, store, settings, tmp_path):
        clone = FakeClone(tmp_path, {"app/a.py": "x = 1\n"})
        orchestrator, _ = make_orchestrator(store, settings, FakeProvider(), clone=clone)

        record = orchestrator.analyze_pull_request(REPO, 10, head_sha="abc", title="Empty")

        assert record.files_changed == ["app/a.py"]

    def test_rate_limit_without_clone_stays_pending(self, store, settings):
        provider = FakeProvider(files_error=RateLimitError())
        orchestrator, publish = make_orchestrator(store, settings, provider)

        with pytest.raises(AnalysisUnavailableError, match="Changed files unavailable"):
            orchestrator.analyze_pull_request(REPO, 11, head_sha="abc", title="Nothing")

        record = store.get_pull_request(REPO, 11)
        assert record.status == "PENDING"
        assert record.block_reasons == [
            "Analysis failed: Changed files unavailable "
            "(GitHub API rate limit exceeded. No local clone is configured.)"
        ]
        assert publish.types == ["pr:started", "pr:failed"]
        assert provider.statuses == []

    def test_clone_failure_stays_pending(self, store, settings, tmp_path):
        provider = FakeProvider(files_error=RateLimitError())
        clone = FakeClone(tmp_path, {}, error=LocalCloneError("clone failed"))
        orchestrator, _ = make_orchestrator(store, settings, provider, clone=clone)

        with pytest.raises(AnalysisUnavailableError, match="clone failed"):
            orchestrator.analyze_pull_request(REPO, 12, head_sha="abc", title="Nothing")

        assert store.get_pull_request(REPO, 12).status == "PENDING"
        assert provider.statuses == []

    def test_empty_clone_after_rate_limit_stays_pending(self, store, settings, tmp_path):
        provider = FakeProvider(files_error=RateLimitError())
        orchestrator, _ = make_orchestrator(store, settings, provider, clone=FakeClone(tmp_path, {}))

        with pytest.raises(AnalysisUnavailableError, match="no analyzable files"):
            orchestrator.analyze_pull_request(REPO, 17, head_sha="abc", title="Nothing")

        assert store.get_pull_request(REPO, 17).status == "PENDING"

    def test_empty_change_list_without_clone_has_nothing_to_analyze(self, store, settings):
        orchestrator, _ = make_orchestrator(store, settings, FakeProvider())

        record = orchestrator.analyze_pull_request(REPO, 18, head_sha="abc", title="Empty")

        assert record.status == "PASS"
        assert record.files_changed == []

    def test_failure_leaves_record_pending_and_propagates(self, store, settings):
        provider = FakeProvider(files_error=RuntimeError("boom"))
        orchestrator, publish = make_orchestrator(store, settings, provider)

        with pytest.raises(RuntimeError, match="boom"):
            orchestrator.analyze_pull_request(REPO, 13, head_sha="abc", title="Broken")

        record = store.get_pull_request(REPO, 13)
        assert record.status == "PENDING"
        assert record.block_reasons == ["Analysis failed: boom"]
        assert publish.types == ["pr:started", "pr:failed"]
        assert provider.statuses == []

    def test_commit_status_failure_is_tolerated(self, store, settings):
        provider = FakeProvider(
            changed=[ChangedFile("app/login.py", patch=LOGIN_PATCH)],
            status_error=SourceControlError("nope", status_code=422),
        )
        orchestrator, _ = make_orchestrator(store, settings, provider)

        record = orchestrator.analyze_pull_request(REPO, 14, head_sha="abc", title="Login")

        assert record.status == "PASS"

    def test_review_comment_when_enabled(self, store, settings):
        provider = FakeProvider(changed=[ChangedFile("app/run.py", patch="+eval(x)\n")])
        orchestrator, _ = make_orchestrator(
            store, settings.model_copy(update={"post_review_comments": True}), provider
        )

        orchestrator.analyze_pull_request(REPO, 15, head_sha="abc", title="Run")

        assert provider.reviews[0][0] == 15
        assert provider.reviews[0][1].startswith("## Gatekeeper verdict: BLOCK")

    def test_persisted_files_become_the_baseline(self, store, settings, tmp_path):
        (tmp_path / "app").mkdir()
        (tmp_path / "app" / "login.py").write_text("def login(user):\n    return user\n")
        orchestrator, _ = make_orchestrator(store, settings, FakeProvider())
        orchestrator.scan_repository(REPO, local_path=str(tmp_path))

        provider = FakeProvider(
            changed=[ChangedFile("app/login.py", patch=LOGIN_PATCH)],
            contents={"app/login.py": "def login(user):\n    return user\n"},
        )
        orchestrator.provider_factory = lambda repo_id: provider
        record = orchestrator.analyze_pull_request(REPO, 16, head_sha="abc", title="Login")

        assert record.health_delta == 0.0
        assert record.analysis_results["complexity"]["has_baseline"] is True
        assert ("app/login.py", "abc") in provider.content_reads

    def test_ratchet_compares_the_whole_head_file(self, store, settings, tmp_path):
        (tmp_path / "app").mkdir()
        (tmp_path / "app" / "svc.py").write_text(branchy(20))
        orchestrator, _ = make_orchestrator(store, settings, FakeProvider())
        orchestrator.scan_repository(REPO, local_path=str(tmp_path))
        assert store.get_file_record(REPO, "app/svc.py").complexity == 21

        added = "".join(f"+    if a == {i}:\n+        return {i}\n" for i in range(20, 30))
        provider = FakeProvider(
            changed=[ChangedFile("app/svc.py", patch=f"@@ -40,0 +41,20 @@\n{added}")],
            contents={"app/svc.py": branchy(30)},
        )
        orchestrator.provider_factory = lambda repo_id: provider
        record = orchestrator.analyze_pull_request(REPO, 19, head_sha="abc", title="More branches")

        change = record.analysis_results["complexity"]["file_changes"][0]
        assert change["complexity"] == 31
        assert change["strategy"] == "python-ast"
        assert record.health_delta < 0
        assert record.status == "BLOCK"
        assert "File complexity exceeds limit: app/svc.py has 31 (limit 25)" in record.block_reasons

    def test_head_content_falls_back_to_local_clone(self, store, settings, tmp_path):
        provider = FakeProvider(changed=[ChangedFile("app/login.py", patch=LOGIN_PATCH)])
        clone = FakeClone(tmp_path, {"app/login.py": "def login(user):\n    return user\n"})
        orchestrator, _ = make_orchestrator(store, settings, provider, clone=clone)

        record = orchestrator.analyze_pull_request(REPO, 20, head_sha="abc", title="Login")

        assert record.analysis_results["complexity"]["files_without_head_content"] == []
        assert clone.refs == ["abc"]


class TestScanRepository:
    def write_tree(self, root: Path) -> None:
        (root / "pkg").mkdir()
        (root / "pkg" / "__init__.py").write_text("")
        (root / "pkg" / "a.py").write_text("from pkg import b\n\n\ndef fa(x):\n    if x:\n        return b.fb()\n    return 0\n")
        (root / "pkg" / "b.py").write_text("from pkg import a\n\n\ndef fb():\n    return a\n")
        (root / "web").mkdir()
        (root / "web" / "app.js").write_text("function go(a) {\n  if (a) { return 1; }\n  return 0;\n}\n")
        (root / "node_modules").mkdir()
        (root / "node_modules" / "dep.js").write_text("module.exports = 1;\n")
        (root / "notes.txt").write_text("not code\n")

    def test_scan_of_local_path(self, store, settings, tmp_path):
        self.write_tree(tmp_path)
        orchestrator, publish = make_orchestrator(store, settings, FakeProvider())

        summary = orchestrator.scan_repository(REPO, local_path=str(tmp_path))

        assert summary.source == "local"
        assert summary.files_analyzed == 4
        assert summary.files_failed == 0
        assert summary.cycles == [["pkg/a.py", "pkg/b.py", "pkg/a.py"]]
        assert summary.metrics is not None

        paths = [r.path for r in store.get_file_records(REPO)]
        assert paths == ["pkg/__init__.py", "pkg/a.py", "pkg/b.py", "web/app.js"]
        a = store.get_file_record(REPO, "pkg/a.py")
        assert a.complexity == 2
        assert a.afferent_coupling == 1
        assert a.efferent_coupling == 1
        assert store.get_file_record(REPO, "web/app.js").complexity == 2

        assert publish.types[0] == "scan:started"
        assert publish.types[-1] == "scan:complete"
        progress = [data for _, kind, data in publish.events if kind == "scan:progress"]
        assert progress[0] == {"processedCount": 0, "totalCount": 4, "percentage": 0, "currentPath": None}
        assert [p["processedCount"] for p in progress] == [0, 1, 2, 3, 4]
        assert progress[-1]["percentage"] == 100
        assert {p["currentPath"] for p in progress[1:]} == set(paths)
        assert set(store.latest_snapshots(REPO)) == {"debtRatio", "blockRate", "hotspots", "riskReduced"}

    def test_progress_of_an_empty_tree_is_complete(self, store, settings, tmp_path):
        orchestrator, publish = make_orchestrator(store, settings, FakeProvider())

        orchestrator.scan_repository(REPO, local_path=str(tmp_path))

        progress = [data for _, kind, data in publish.events if kind == "scan:progress"]
        assert progress == [{"processedCount": 0, "totalCount": 0, "percentage": 100, "currentPath": None}]

    def test_progress_percentage_is_rounded(self):
        assert scan_progress(1, 3, "a.py") == {
            "processedCount": 1,
            "totalCount": 3,
            "percentage": 33,
            "currentPath": "a.py",
        }
        assert scan_progress(2, 3)["percentage"] == 67

    def test_scan_of_git_repository_records_churn(self, store, settings, git_repo):
        orchestrator, _ = make_orchestrator(store, settings, FakeProvider())

        orchestrator.scan_repository(REPO, local_path=str(git_repo))

        record = store.get_file_record(REPO, "app/service.py")
        assert record.churn == 3
        assert record.risk == round(record.complexity * (1 + 0.6020599913279624))

    def test_rescan_keeps_one_record_per_file(self, store, settings, tmp_path):
        self.write_tree(tmp_path)
        orchestrator, _ = make_orchestrator(store, settings, FakeProvider())

        orchestrator.scan_repository(REPO, local_path=str(tmp_path))
        orchestrator.scan_repository(REPO, local_path=str(tmp_path))

        records = store.get_file_records(REPO)
        assert len(records) == 4
        assert all(len(r.history) == 1 for r in records)

    def test_scan_through_provider(self, store, settings):
        provider = FakeProvider(
            tree=[
                TreeEntry("app/main.py", 30),
                TreeEntry("app/huge.py", settings.max_file_bytes + 1),
                TreeEntry("README.md", 10),
                TreeEntry("app/unreadable.py", 10),
            ],
            contents={"app/main.py": "def main():\n    return 0\n", "app/huge.py": "x = 1\n"},
        )
        orchestrator, _ = make_orchestrator(store, settings, provider)

        summary = orchestrator.scan_repository(REPO, ref="main")

        assert summary.source == "provider"
        assert summary.files_analyzed == 1
        assert summary.files_skipped == 1
        assert [r.path for r in store.get_file_records(REPO)] == ["app/main.py"]
        assert ("app/main.py", "main") in provider.content_reads

    def test_clone_is_preferred_over_provider(self, store, settings, tmp_path):
        self.write_tree(tmp_path)
        clone = FakeClone(tmp_path, {})
        orchestrator, _ = make_orchestrator(store, settings, FakeProvider(), clone=clone)

        summary = orchestrator.scan_repository(REPO, ref="abc")

        assert summary.source == "local"
        assert clone.refs == ["abc"]

    def test_clone_failure_falls_back_to_provider(self, store, settings, tmp_path):
        clone = FakeClone(tmp_path, {}, error=LocalCloneError("no git"))
        provider = FakeProvider(tree=[TreeEntry("a.py", 5)], contents={"a.py": "x = 1\n"})
        orchestrator, _ = make_orchestrator(store, settings, provider, clone=clone)

        summary = orchestrator.scan_repository(REPO)

        assert summary.source == "provider"
        assert summary.files_analyzed == 1

    def test_failed_scan_is_published_and_raised(self, store, settings):
        class BrokenProvider(FakeProvider):
            def list_repository_tree(self, ref="HEAD"):
                raise SourceControlError("Resource not found or access denied.", status_code=404)

        orchestrator, publish = make_orchestrator(store, settings, BrokenProvider())

        with pytest.raises(SourceControlError):
            orchestrator.scan_repository(REPO)

        assert publish.types == ["scan:started", "scan:failed"]

    def test_scan_holds_the_repository_lock(self, store, settings, tmp_path):
        held = []

        @contextmanager
        def lock(repo_id):
            held.append(repo_id)
            yield

        orchestrator, _ = make_orchestrator(store, settings, FakeProvider(), lock=lock)

        orchestrator.scan_repository(REPO, local_path=str(tmp_path))

        assert held == [REPO]

    def test_summary_to_dict(self, store, settings, tmp_path):
        self.write_tree(tmp_path)
        orchestrator, _ = make_orchestrator(store, settings, FakeProvider())

        data = orchestrator.scan_repository(REPO, local_path=str(tmp_path)).to_dict()

        assert data["repo_id"] == REPO
        assert data["files_analyzed"] == 4
        assert data["metrics"]["debtRatio"] >= 0
        assert isinstance(data["hotspots"], list)

class TestFromSettings:
    def test_ephemeral_backend_scans_without_redis(self, settings, session_factory, tmp_path, monkeypatch):
        def redis_lock(repo_id, timeout_seconds):
            raise AssertionError("the Redis lock must not be used")

        monkeypatch.setattr("gatekeeper.services.orchestrator.repository_lock", redis_lock)
        (tmp_path / "a.py").write_text("x = 1\n")
        orchestrator = Orchestrator.from_settings(settings, session_factory, "ephemeral")
        orchestrator.publish = EventRecorder()

        summary = orchestrator.scan_repository(REPO, local_path=str(tmp_path))

        assert summary.files_analyzed == 1

    def test_durable_backend_locks_through_redis(self, settings, session_factory, monkeypatch):
        calls = []

        @contextmanager
        def redis_lock(repo_id, timeout_seconds):
            calls.append((repo_id, timeout_seconds))
            yield

        monkeypatch.setattr("gatekeeper.services.orchestrator.repository_lock", redis_lock)
        orchestrator = Orchestrator.from_settings(settings, session_factory, "durable")

        with orchestrator.lock(REPO):
            pass

        assert calls == [(REPO, settings.job_timeout_seconds)]



def test_format_review_lists_reasons_and_findings():
    result = PipelineResult(
        status="BLOCK",
        block_reasons=["Security issues detected: 1"],
        warn_reasons=["Code quality concerns: 6 code smells"],
        analysis_results={},
        overall_risk=20,
        health_current=90.0,
        health_delta=None,
        findings=[{"file": "app/run.py", "line": 3, "message": "Security concern: eval detected"}],
        summary="Analyzed 1 files.",
    )

    body = format_review(result)

    assert body.startswith("## Gatekeeper verdict: BLOCK\n\nAnalyzed 1 files.")
    assert "- Security issues detected: 1" in body
    assert "- Code quality concerns: 6 code smells" in body
    assert "- `app/run.py:3` Security concern: eval detected" in body
