"""In-memory queue for development and tests.

Jobs run synchronously in the caller's thread, one at a time, without
retries. Nothing survives a restart, and only the newest finished jobs are
kept.
"""

import logging
import threading
import uuid
from typing import Any

from gatekeeper.models.base import utcnow
from gatekeeper.services.queue.base import (
    COMPLETED,
    DEFAULT_PROCESSOR,
    FAILED,
    QUEUED,
    RUNNING,
    Job,
    JobQueue,
    Processor,
    QueueStats,
)

logger = logging.getLogger(__name__)


class EphemeralQueue(JobQueue):
    backend = "ephemeral"

    def __init__(self, name: str, keep_finished: int = 1000):
        super().__init__(name)
        self.jobs: list[Job] = []
        self.keep_finished = max(1, keep_finished)
        self._run_lock = threading.RLock()
        self._jobs_lock = threading.Lock()
        logger.info(f"Created ephemeral queue '{name}' (in-memory, synchronous)")

    def enqueue(self, job_name: str, payload: dict[str, Any]) -> Job:
        """Add a job and run it immediately when a processor exists.

        Raises:
            Exception: Whatever the processor raised; the job is marked failed first.
        """
        self._check_open()
        job = Job(id=str(uuid.uuid4()), queue_name=self.name, name=job_name, payload=dict(payload))
        with self._jobs_lock:
            self.jobs.append(job)
        logger.info(f"[{self.name}] Added job {job.id} '{job_name}'")
        self._process(job)
        return job

    def _process(self, job: Job) -> None:
        handler = self.processor_for(job.name)
        if handler is None:
            logger.info(f"[{self.name}] No processor for job {job.id} '{job.name}', parked")
            return

        with self._run_lock:
            # Another thread may have taken it while we waited
            if job.status != QUEUED:
                return
            job.status = RUNNING
            job.attempts += 1
            job.started_at = utcnow()

            try:
                job.result = handler(job)
            except Exception as e:
                job.status = FAILED
                job.error = str(e)
                job.finished_at = utcnow()
                logger.error(f"[{self.name}] Job {job.id} '{job.name}' failed: {e}")
                raise
            else:
                job.status = COMPLETED
                job.finished_at = utcnow()
                logger.info(f"[{self.name}] Completed job {job.id} '{job.name}'")
            finally:
                self._prune()

    def _prune(self) -> None:
        """Forget the oldest finished jobs beyond ``keep_finished``."""
        with self._jobs_lock:
            finished = [job.id for job in self.jobs if job.status in (COMPLETED, FAILED)]
            excess = len(finished) - self.keep_finished
            if excess <= 0:
                return
            forgotten = set(finished[:excess])
            self.jobs[:] = [job for job in self.jobs if job.id not in forgotten]
        logger.debug(f"[{self.name}] Forgot {excess} finished jobs")

    def register_processor(self, job_name: str, handler: Processor) -> None:
        self._check_open()
        self._processors[job_name] = handler
        logger.info(f"[{self.name}] Registered processor '{job_name}'")

        with self._jobs_lock:
            pending = [
                job for job in self.jobs
                if job.status == QUEUED and (job.name == job_name or job_name == DEFAULT_PROCESSOR)
            ]
        for job in pending:
            try:
                self._process(job)
            except Exception:
                # Already recorded on the job; keep draining the rest
                continue

    def get_job(self, job_id: str) -> Job | None:
        with self._jobs_lock:
            return next((job for job in self.jobs if job.id == job_id), None)

    def stats(self) -> QueueStats:
        counts = {QUEUED: 0, RUNNING: 0, COMPLETED: 0, FAILED: 0}
        with self._jobs_lock:
            for job in self.jobs:
                counts[job.status] += 1
        return QueueStats(
            queued=counts[QUEUED],
            active=counts[RUNNING],
            completed=counts[COMPLETED],
            failed=counts[FAILED],
        )

    def close(self) -> None:
        """Refuse new jobs, wait for the running one, then drop everything."""
        super().close()
        with self._run_lock, self._jobs_lock:
            logger.info(f"[{self.name}] Dropping {len(self.jobs)} in-memory jobs")
            self.jobs.clear()
