"""GitHub webhook payloads (only the fields the service reads)."""

from pydantic import BaseModel, ConfigDict


class _Lenient(BaseModel):
    model_config = ConfigDict(extra="ignore")


class WebhookRepository(_Lenient):
    full_name: str
    default_branch: str = "main"


class WebhookUser(_Lenient):
    login: str


class WebhookRef(_Lenient):
    ref: str
    sha: str


class WebhookPullRequest(_Lenient):
    number: int
    title: str = ""
    body: str | None = None
    user: WebhookUser | None = None
    head: WebhookRef


class PullRequestEvent(_Lenient):
    action: str
    number: int | None = None
    pull_request: WebhookPullRequest
    repository: WebhookRepository


class PushEvent(_Lenient):
    ref: str
    after: str | None = None
    repository: WebhookRepository
