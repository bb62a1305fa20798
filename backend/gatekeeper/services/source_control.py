"""Source-control provider boundary and its GitHub implementation."""

import base64
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Protocol

import httpx

from gatekeeper.core.exceptions import GatekeeperError, RecoverableProviderError

logger = logging.getLogger(__name__)

STATUS_CONTEXT = "gatekeeper/verdict"

# Commit status state per verdict
VERDICT_STATES = {
    "PASS": "success",
    "WARN": "success",
    "OVERRIDDEN": "success",
    "BLOCK": "failure",
    "PENDING": "pending",
}


class SourceControlError(GatekeeperError):
    """Base exception for provider errors."""

    def __init__(self, message: str, status_code: int = 500):
        self.status_code = status_code
        super().__init__(message)


class RateLimitError(RecoverableProviderError, SourceControlError):
    """Raised when the provider's rate limit is exceeded."""

    def __init__(self, reset_at: datetime | None = None, message: str | None = None):
        self.reset_at = reset_at
        if message is None:
            if reset_at:
                minutes = max(1, int((reset_at - datetime.now(UTC)).total_seconds() / 60))
                message = f"GitHub API rate limit exceeded. Resets in {minutes} minute{'s' if minutes != 1 else ''}."
            else:
                message = "GitHub API rate limit exceeded."
        super().__init__(message, status_code=403)


class ProviderUnavailableError(RecoverableProviderError, SourceControlError):
    """Raised on timeouts and transport failures."""

    def __init__(self, message: str = "GitHub API request failed. Please try again."):
        super().__init__(message, status_code=504)


class PermissionDeniedError(SourceControlError):
    def __init__(self, message: str = "No permission to access this resource."):
        super().__init__(message, status_code=403)


class AuthenticationError(SourceControlError):
    def __init__(self, message: str = "GitHub authentication failed."):
        super().__init__(message, status_code=401)


@dataclass(frozen=True)
class TreeEntry:
    path: str
    size: int = 0


@dataclass(frozen=True)
class ChangedFile:
    """One file of a pull request diff."""

    path: str
    status: str = "modified"
    patch: str | None = None
    additions: int = 0
    deletions: int = 0

    @property
    def removed(self) -> bool:
        return self.status == "removed"


@dataclass(frozen=True)
class PullRequestInfo:
    number: int
    title: str
    author: str | None
    branch: str | None
    head_sha: str | None
    body: str | None = None


class SourceControlProvider(Protocol):
    """Capabilities the orchestrator consumes from a hosting provider."""

    def list_repository_tree(self, ref: str = "HEAD") -> list[TreeEntry]: ...

    def list_changed_files(self, pr_number: int) -> list[ChangedFile]: ...

    def get_file_content(self, path: str, ref: str | None = None) -> str: ...

    def get_pull_request(self, pr_number: int) -> PullRequestInfo: ...

    def post_commit_status(self, sha: str, verdict: str, description: str) -> None: ...

    def post_review_comment(self, pr_number: int, body: str, event: str = "COMMENT") -> None: ...


ProviderFactory = Callable[[str], SourceControlProvider]


def split_repo_id(repo_id: str) -> tuple[str, str]:
    """``"owner/name"`` to ``("owner", "name")``."""
    owner, sep, name = repo_id.partition("/")
    if not sep or not owner or not name or "/" in name:
        raise ValueError(f"Repository id must look like 'owner/name', got {repo_id!r}")
    return owner, name


class GitHubProvider:
    """GitHub REST implementation of ``SourceControlProvider``."""

    DEFAULT_TIMEOUT = httpx.Timeout(connect=30.0, read=60.0, write=30.0, pool=30.0)
    MAX_FILE_PAGES = 30

    def __init__(
        self,
        repo_id: str,
        access_token: str = "",
        base_url: str = "https://api.github.com",
        timeout: httpx.Timeout | None = None,
        transport: httpx.BaseTransport | None = None,
    ):
        self.owner, self.name = split_repo_id(repo_id)
        self.access_token = access_token
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or self.DEFAULT_TIMEOUT
        self.transport = transport

    @property
    def repo_url(self) -> str:
        return f"{self.base_url}/repos/{self.owner}/{self.name}"

    def _get_headers(self) -> dict[str, str]:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def _handle_response_error(self, response: httpx.Response) -> None:
        """Map error responses onto provider exceptions.

        Raises:
            RateLimitError: 403 or 429 with an exhausted quota or a rate-limit message.
            AuthenticationError: 401.
            PermissionDeniedError: Any other 403.
            SourceControlError: Everything else.
        """
        if response.is_success:
            return

        status_code = response.status_code
        if status_code in (403, 429):
            remaining = response.headers.get("x-ratelimit-remaining")
            reset_timestamp = response.headers.get("x-ratelimit-reset")
            if status_code == 429 or remaining == "0" or "rate limit" in response.text.lower():
                reset_at = None
                if reset_timestamp:
                    try:
                        reset_at = datetime.fromtimestamp(int(reset_timestamp), tz=UTC)
                    except (ValueError, TypeError):
                        reset_at = None
                raise RateLimitError(reset_at=reset_at)
            raise PermissionDeniedError()

        if status_code == 401:
            raise AuthenticationError()

        if status_code == 404:
            raise SourceControlError("Resource not found or access denied.", status_code=404)

        try:
            message = response.json().get("message", response.text)
        except ValueError:
            message = response.text or f"GitHub API error: {status_code}"
        raise SourceControlError(message, status_code=status_code)

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.request(method, f"{self.repo_url}{path}", headers=self._get_headers(), **kwargs)
        except httpx.TimeoutException as e:
            raise ProviderUnavailableError(f"GitHub API request timed out: {method} {path}") from e
        except httpx.TransportError as e:
            raise ProviderUnavailableError(f"GitHub API request failed: {e}") from e
        self._handle_response_error(response)
        return response

    def list_repository_tree(self, ref: str = "HEAD") -> list[TreeEntry]:
        """Every blob of the tree at ``ref``."""
        data = self._request("GET", f"/git/trees/{ref}", params={"recursive": "1"}).json()
        if data.get("truncated"):
            logger.warning(f"Tree listing for {self.owner}/{self.name}@{ref} was truncated")
        return [
            TreeEntry(path=item["path"], size=item.get("size", 0))
            for item in data.get("tree", [])
            if item.get("type") == "blob"
        ]

    def list_changed_files(self, pr_number: int) -> list[ChangedFile]:
        files: list[ChangedFile] = []
        for page in range(1, self.MAX_FILE_PAGES + 1):
            batch = self._request(
                "GET",
                f"/pulls/{pr_number}/files",
                params={"per_page": 100, "page": page},
            ).json()
            files.extend(
                ChangedFile(
                    path=item["filename"],
                    status=item.get("status", "modified"),
                    patch=item.get("patch"),
                    additions=item.get("additions", 0),
                    deletions=item.get("deletions", 0),
                )
                for item in batch
            )
            if len(batch) < 100:
                break
        return files

    def get_file_content(self, path: str, ref: str | None = None) -> str:
        params = {"ref": ref} if ref else {}
        result = self._request("GET", f"/contents/{path}", params=params).json()
        if isinstance(result, list) or result.get("type") != "file":
            raise SourceControlError(f"Path '{path}' is not a file", status_code=400)

        content = result.get("content", "")
        if result.get("encoding", "base64") == "base64":
            return base64.b64decode(content).decode("utf-8", errors="replace")
        return content

    def get_pull_request(self, pr_number: int) -> PullRequestInfo:
        data = self._request("GET", f"/pulls/{pr_number}").json()
        head = data.get("head") or {}
        return PullRequestInfo(
            number=data.get("number", pr_number),
            title=data.get("title", ""),
            author=(data.get("user") or {}).get("login"),
            branch=head.get("ref"),
            head_sha=head.get("sha"),
            body=data.get("body"),
        )

    def post_commit_status(self, sha: str, verdict: str, description: str) -> None:
        self._request(
            "POST",
            f"/statuses/{sha}",
            json={
                "state": VERDICT_STATES.get(verdict, "error"),
                "description": description[:140],
                "context": STATUS_CONTEXT,
            },
        )

    def post_review_comment(self, pr_number: int, body: str, event: str = "COMMENT") -> None:
        self._request("POST", f"/pulls/{pr_number}/reviews", json={"body": body, "event": event})


def github_provider_factory(access_token: str, base_url: str) -> ProviderFactory:
    """Factory building one provider per repository id."""

    def factory(repo_id: str) -> SourceControlProvider:
        return GitHubProvider(repo_id, access_token=access_token, base_url=base_url)

    return factory
