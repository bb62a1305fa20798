"""Backend selection and ownership of named queues."""

import logging
from collections.abc import Callable

from gatekeeper.core.config import Settings
from gatekeeper.core.database import SessionFactory, get_session_factory
from gatekeeper.core.exceptions import ConfigurationError
from gatekeeper.core.redis import ping_broker
from gatekeeper.services.queue.base import JobQueue, QueueStats
from gatekeeper.services.queue.durable import Dispatch, DurableQueue
from gatekeeper.services.queue.ephemeral import EphemeralQueue

logger = logging.getLogger(__name__)

DURABLE = "durable"
EPHEMERAL = "ephemeral"


class QueueRegistry:
    """Owns every queue of the process.

    The backend is chosen once, at construction:

    - ``durable``: the broker must answer, otherwise ``ConfigurationError``.
    - ``ephemeral``: refused in production.
    - ``auto``: durable when the broker answers; in development an
      unreachable broker falls back to ephemeral, in production it is fatal.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: SessionFactory | None = None,
        dispatch: Dispatch | None = None,
        broker_check: Callable[[str], bool] = ping_broker,
    ):
        self.settings = settings
        self.session_factory = session_factory
        self.dispatch = dispatch
        self.backend = self._select_backend(broker_check)
        self._queues: dict[str, JobQueue] = {}
        logger.info(f"Job queue backend: {self.backend}")

    def _select_backend(self, broker_check: Callable[[str], bool]) -> str:
        requested = self.settings.queue_backend
        production = self.settings.is_production

        if requested == EPHEMERAL:
            if production:
                raise ConfigurationError("The ephemeral queue backend cannot be used in production")
            return EPHEMERAL

        if broker_check(self.settings.celery_broker_url):
            return DURABLE

        if requested == DURABLE or production:
            raise ConfigurationError(
                "Queue broker is unreachable and the durable backend is required. "
                "Check CELERY_BROKER_URL."
            )

        logger.warning("Queue broker unreachable, falling back to the ephemeral in-memory queue")
        return EPHEMERAL

    def _create(self, name: str) -> JobQueue:
        if self.backend == EPHEMERAL:
            return EphemeralQueue(name, keep_finished=self.settings.queue_keep_completed)

        dispatch = self.dispatch
        if dispatch is None:
            from gatekeeper.workers.jobs import celery_dispatch

            dispatch = celery_dispatch
        return DurableQueue(
            name,
            session_factory=self.session_factory or get_session_factory(),
            dispatch=dispatch,
            max_attempts=self.settings.queue_max_attempts,
            backoff_seconds=self.settings.queue_backoff_seconds,
            keep_completed=self.settings.queue_keep_completed,
            keep_failed=self.settings.queue_keep_failed,
            # Past the hard time limit the worker is gone
            stale_after_seconds=self.settings.job_timeout_seconds + 5 * 60,
        )

    def get_queue(self, name: str) -> JobQueue:
        """Get the queue with this name, creating it on first use."""
        if name not in self._queues:
            self._queues[name] = self._create(name)
        return self._queues[name]

    @property
    def queues(self) -> dict[str, JobQueue]:
        return dict(self._queues)

    def stats(self) -> dict[str, QueueStats]:
        return {name: queue.stats() for name, queue in self._queues.items()}

    def close(self) -> None:
        for queue in self._queues.values():
            queue.close()
        self._queues.clear()
