"""Shared fixtures: in-memory database, store, settings and git repositories."""

import shutil
import subprocess
from pathlib import Path

import pytest

from gatekeeper.core.config import Settings
from gatekeeper.core.database import create_db_engine, create_session_factory, init_db
from gatekeeper.services.store import AnalysisStore


@pytest.fixture
def session_factory():
    """Session factory over a fresh in-memory SQLite database."""
    engine = create_db_engine("sqlite:///:memory:")
    init_db(engine)
    yield create_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return AnalysisStore(session_factory, file_history_limit=3)


@pytest.fixture
def settings():
    return Settings(
        app_env="development",
        queue_backend="ephemeral",
        github_webhook_secret="test-secret",
        github_token="",
        clone_root="",
        ai_scan_enabled=False,
        post_commit_status=True,
        post_review_comments=False,
        scan_workers=2,
        progress_interval=1,
    )


def _git(cwd: Path, *args: str) -> None:
    subprocess.run(["git", *args], cwd=cwd, check=True, capture_output=True, text=True)


@pytest.fixture
def git_repo(tmp_path):
    """A repository with a few commits by two authors."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q")
    _git(repo, "config", "commit.gpgsign", "false")

    def commit(path: str, content: str, author: str, message: str) -> None:
        target = repo / path
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(content)
        _git(repo, "add", path)
        _git(
            repo,
            "-c", f"user.name={author}",
            "-c", f"user.email={author.lower()}@example.com",
            "commit", "-q", "-m", message,
        )

    commit("app/service.py", "def run():\n    return 1\n", "Alice", "Add service")
    commit("app/service.py", "def run():\n    return 2\n", "Alice", "Tweak service")
    commit("app/service.py", "def run():\n    return 3\n", "Bob", "Tweak service again")
    commit("app/util.py", "def helper():\n    return 0\n", "Bob", "Add util")
    return repo
