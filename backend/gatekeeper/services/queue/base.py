"""Job queue interface shared by the ephemeral and durable backends."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any

from gatekeeper.models.base import utcnow

logger = logging.getLogger(__name__)

DEFAULT_PROCESSOR = "default"

QUEUED = "queued"
RUNNING = "running"
COMPLETED = "completed"
FAILED = "failed"


@dataclass
class Job:
    """A unit of work as seen by processors."""

    id: str
    queue_name: str
    name: str
    payload: dict[str, Any]
    status: str = QUEUED
    attempts: int = 0
    max_attempts: int = 1
    error: str | None = None
    result: Any = None
    created_at: datetime = field(default_factory=utcnow)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def repo_id(self) -> str | None:
        return self.payload.get("repo_id")

    @property
    def is_terminal(self) -> bool:
        return self.status in (COMPLETED, FAILED)


@dataclass(frozen=True)
class QueueStats:
    queued: int = 0
    active: int = 0
    completed: int = 0
    failed: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


Processor = Callable[[Job], Any]


class JobQueue(ABC):
    """A named queue of jobs dispatched to processors by job name.

    A processor registered under ``"default"`` handles every job name that
    has no processor of its own.
    """

    backend: str = "abstract"

    def __init__(self, name: str):
        self.name = name
        self._processors: dict[str, Processor] = {}
        self._closed = False

    def processor_for(self, job_name: str) -> Processor | None:
        return self._processors.get(job_name) or self._processors.get(DEFAULT_PROCESSOR)

    def _check_open(self) -> None:
        if self._closed:
            raise RuntimeError(f"Queue '{self.name}' is closed")

    @abstractmethod
    def enqueue(self, job_name: str, payload: dict[str, Any]) -> Job:
        """Add a job; it runs as soon as a processor for its name exists."""

    @abstractmethod
    def register_processor(self, job_name: str, handler: Processor) -> None:
        """Register a handler and run any jobs waiting for it."""

    @abstractmethod
    def stats(self) -> QueueStats:
        """Job counts by state."""

    def close(self) -> None:
        self._processors.clear()
        self._closed = True
        logger.info(f"Closed {self.backend} queue '{self.name}'")
