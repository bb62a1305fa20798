"""Tests for git history mining."""

from gatekeeper.services.churn_miner import ChurnMiner


class TestChurnMiner:
    def test_all_files_churn(self, git_repo):
        churn = ChurnMiner(git_repo).all_files_churn(window_days=90)

        assert churn == {"app/service.py": 3, "app/util.py": 1}

    def test_churn_rate_counts_commits_and_authors(self, git_repo):
        record = ChurnMiner(git_repo).churn_rate("app/service.py", window_days=90)

        assert record.file_id == "app/service.py"
        assert record.commit_count == 3
        assert record.window_days == 90
        assert record.authors == {"Alice": 2, "Bob": 1}
        assert record.primary_author == "Alice"

    def test_modification_pattern_is_newest_first(self, git_repo):
        pattern = ChurnMiner(git_repo).modification_pattern("app/service.py")

        assert pattern.total_commits == 3
        assert [event.author for event in pattern.timeline] == ["Bob", "Alice", "Alice"]
        assert pattern.timeline[0].message == "Tweak service again"
        assert pattern.timeline[0].date is not None
        assert pattern.primary_author == "Alice"

    def test_files_changed_in_commit(self, git_repo):
        assert ChurnMiner(git_repo).files_changed_in_commit("HEAD") == ["app/util.py"]

    def test_churn_trend_puts_recent_interval_last(self, git_repo):
        trend = ChurnMiner(git_repo).churn_trend("app/service.py", intervals=3, interval_days=30)

        assert len(trend) == 3
        assert trend[-1].commits == 3
        assert trend[0].commits == 0
        assert trend[0].start < trend[-1].start

    def test_unknown_file_has_zero_churn(self, git_repo):
        record = ChurnMiner(git_repo).churn_rate("nope.py")

        assert record.commit_count == 0
        assert record.primary_author is None

    def test_missing_repository_yields_empty_results(self, tmp_path):
        miner = ChurnMiner(tmp_path / "not-a-repo")

        assert miner.all_files_churn() == {}
        assert miner.churn_rate("a.py").commit_count == 0
        assert miner.modification_pattern("a.py").total_commits == 0
        assert miner.files_changed_in_commit("HEAD") == []


class TestIdentifyHotspots:
    def test_both_thresholds_must_be_met(self):
        hotspots = ChurnMiner.identify_hotspots(
            {"a.py": 10, "b.py": 2, "c.py": 6, "d.py": 20},
            {"a.py": 20, "b.py": 50, "c.py": 30, "d.py": 3},
        )

        assert [h.path for h in hotspots] == ["a.py", "c.py"]
        assert hotspots[0].score == 200
        assert hotspots[1].score == 180

    def test_missing_complexity_is_not_a_hotspot(self):
        assert ChurnMiner.identify_hotspots({"a.py": 10}, {}) == []
