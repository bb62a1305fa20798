"""Database-backed queue dispatched through Celery.

Job rows live in ``analysis_jobs``. A dispatch only carries the job id; the
worker claims the row atomically (``queued -> running``), so a job that is
dispatched twice still runs once per attempt. Failed attempts are retried
with exponential backoff until ``max_attempts`` is reached. A row left
``running`` by a lost worker counts as a failed attempt once it is older
than ``stale_after_seconds`` and is reclaimed by the next dispatch.
"""

import logging
import uuid
from collections.abc import Callable
from datetime import timedelta
from typing import Any

from celery.exceptions import SoftTimeLimitExceeded
from sqlalchemy import delete, func, select, update

from gatekeeper.core.database import SessionFactory, session_scope
from gatekeeper.core.exceptions import JobExecutionError, PayloadValidationError
from gatekeeper.models import AnalysisJob
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

# (queue_name, job_id, countdown_seconds)
Dispatch = Callable[[str, str, float], None]


def _to_job(row: AnalysisJob) -> Job:
    return Job(
        id=str(row.id),
        queue_name=row.queue_name,
        name=row.name,
        payload=dict(row.payload or {}),
        status=row.status,
        attempts=row.attempts,
        max_attempts=row.max_attempts,
        error=row.error,
        result=row.result,
        created_at=row.created_at,
        started_at=row.started_at,
        finished_at=row.finished_at,
    )


class DurableQueue(JobQueue):
    backend = "durable"

    def __init__(
        self,
        name: str,
        session_factory: SessionFactory,
        dispatch: Dispatch,
        max_attempts: int = 3,
        backoff_seconds: float = 1.0,
        keep_completed: int = 1000,
        keep_failed: int = 5000,
        stale_after_seconds: float = 30 * 60,
    ):
        super().__init__(name)
        self.session_factory = session_factory
        self.dispatch = dispatch
        self.max_attempts = max_attempts
        self.backoff_seconds = backoff_seconds
        self.keep_completed = keep_completed
        self.keep_failed = keep_failed
        self.stale_after_seconds = stale_after_seconds

    def backoff(self, attempt: int) -> float:
        """Delay before retrying after the given (1-based) attempt."""
        return self.backoff_seconds * 2 ** (attempt - 1)

    def enqueue(self, job_name: str, payload: dict[str, Any]) -> Job:
        self._check_open()
        with session_scope(self.session_factory) as session:
            row = AnalysisJob(
                queue_name=self.name,
                name=job_name,
                repo_id=payload.get("repo_id"),
                payload=dict(payload),
                status=QUEUED,
                attempts=0,
                max_attempts=self.max_attempts,
            )
            session.add(row)
            session.flush()
            job = _to_job(row)

        logger.info(f"[{self.name}] Enqueued job {job.id} '{job_name}'")
        if self.processor_for(job_name) is not None:
            self.dispatch(self.name, job.id, 0)
        else:
            logger.info(f"[{self.name}] No processor for '{job_name}' yet, job {job.id} parked")
        return job

    def register_processor(self, job_name: str, handler: Processor) -> None:
        self._check_open()
        self._processors[job_name] = handler
        logger.info(f"[{self.name}] Registered processor '{job_name}'")

        query = select(AnalysisJob.id).where(
            AnalysisJob.queue_name == self.name,
            AnalysisJob.status == QUEUED,
        )
        if job_name != DEFAULT_PROCESSOR:
            query = query.where(AnalysisJob.name == job_name)
        with session_scope(self.session_factory) as session:
            parked = [str(job_id) for job_id in session.execute(query.order_by(AnalysisJob.created_at)).scalars()]

        for job_id in parked:
            self.dispatch(self.name, job_id, 0)
        if parked:
            logger.info(f"[{self.name}] Re-dispatched {len(parked)} parked jobs for '{job_name}'")

    def get_job(self, job_id: str) -> Job | None:
        with session_scope(self.session_factory) as session:
            row = session.get(AnalysisJob, uuid.UUID(job_id))
            return _to_job(row) if row else None

    def _claim(self, job_id: str) -> Job | None:
        with session_scope(self.session_factory) as session:
            claimed = session.execute(
                update(AnalysisJob)
                .where(AnalysisJob.id == uuid.UUID(job_id), AnalysisJob.status == QUEUED)
                .values(status=RUNNING, attempts=AnalysisJob.attempts + 1, started_at=utcnow(), error=None)
            ).rowcount
            if not claimed:
                return None
            return _to_job(session.get(AnalysisJob, uuid.UUID(job_id), populate_existing=True))

    def _reclaim_abandoned(self, job: Job) -> None:
        """Requeue a running row whose worker is gone, or fail it when out of attempts."""
        cutoff = utcnow() - timedelta(seconds=self.stale_after_seconds)
        abandoned = (
            AnalysisJob.id == uuid.UUID(job.id),
            AnalysisJob.status == RUNNING,
            AnalysisJob.started_at < cutoff,
        )
        error = str(JobExecutionError(job.id, job.name, "worker lost before the attempt finished"))
        with session_scope(self.session_factory) as session:
            failed = session.execute(
                update(AnalysisJob)
                .where(*abandoned, AnalysisJob.attempts >= AnalysisJob.max_attempts)
                .values(status=FAILED, error=error, finished_at=utcnow())
            ).rowcount
            requeued = session.execute(
                update(AnalysisJob)
                .where(*abandoned, AnalysisJob.attempts < AnalysisJob.max_attempts)
                .values(status=QUEUED, error=error)
            ).rowcount

        if failed:
            logger.error(f"[{self.name}] {error}; giving up after {job.attempts} attempts")
            self._prune(FAILED, self.keep_failed)
        elif requeued:
            logger.warning(f"[{self.name}] {error}; reclaiming it")

    def _finish(self, job_id: str, **values: Any) -> None:
        with session_scope(self.session_factory) as session:
            session.execute(update(AnalysisJob).where(AnalysisJob.id == uuid.UUID(job_id)).values(**values))

    def execute(self, job_id: str) -> Job | None:
        """Run one attempt of a job. Called by the worker for every dispatch.

        Returns:
            The job after this attempt, or None when there was nothing to run
            (unknown id, no processor, or already claimed elsewhere).
        """
        job = self.get_job(job_id)
        if job is None:
            logger.warning(f"[{self.name}] Job {job_id} not found")
            return None

        handler = self.processor_for(job.name)
        if handler is None:
            logger.info(f"[{self.name}] No processor for '{job.name}', job {job_id} stays parked")
            return None

        if job.status == RUNNING:
            self._reclaim_abandoned(job)

        job = self._claim(job_id)
        if job is None:
            logger.debug(f"[{self.name}] Job {job_id} already claimed")
            return None

        logger.info(f"[{self.name}] Running job {job.id} '{job.name}' (attempt {job.attempts}/{job.max_attempts})")
        try:
            result = handler(job)
        except SoftTimeLimitExceeded:
            logger.error(f"[{self.name}] Job {job.id} '{job.name}' exceeded its time limit")
            self._fail(job, "Job timed out")
        except PayloadValidationError as e:
            logger.error(f"[{self.name}] Job {job.id} rejected: {e.message}")
            self._fail(job, str(JobExecutionError(job.id, job.name, e.message)))
        except Exception as e:
            error = str(JobExecutionError(job.id, job.name, str(e)))
            if job.attempts < job.max_attempts:
                delay = self.backoff(job.attempts)
                logger.warning(f"[{self.name}] {error}; retrying in {delay:.1f}s")
                self._finish(job.id, status=QUEUED, error=error)
                self.dispatch(self.name, job.id, delay)
            else:
                logger.error(f"[{self.name}] {error}; giving up after {job.attempts} attempts")
                self._fail(job, error)
        else:
            self._finish(job.id, status=COMPLETED, result=result, finished_at=utcnow())
            logger.info(f"[{self.name}] Completed job {job.id} '{job.name}'")
            self._prune(COMPLETED, self.keep_completed)

        return self.get_job(job_id)

    def _fail(self, job: Job, error: str) -> None:
        self._finish(job.id, status=FAILED, error=error, finished_at=utcnow())
        self._prune(FAILED, self.keep_failed)

    def _prune(self, status: str, keep: int) -> None:
        """Delete all but the newest ``keep`` terminal jobs of one status."""
        with session_scope(self.session_factory) as session:
            stale = list(session.execute(
                select(AnalysisJob.id)
                .where(AnalysisJob.queue_name == self.name, AnalysisJob.status == status)
                .order_by(AnalysisJob.finished_at.desc(), AnalysisJob.created_at.desc())
                .offset(keep)
            ).scalars())
            if stale:
                session.execute(delete(AnalysisJob).where(AnalysisJob.id.in_(stale)))
                logger.debug(f"[{self.name}] Pruned {len(stale)} {status} jobs")

    def stats(self) -> QueueStats:
        with session_scope(self.session_factory) as session:
            counts = dict(session.execute(
                select(AnalysisJob.status, func.count())
                .where(AnalysisJob.queue_name == self.name)
                .group_by(AnalysisJob.status)
            ).all())
        return QueueStats(
            queued=counts.get(QUEUED, 0),
            active=counts.get(RUNNING, 0),
            completed=counts.get(COMPLETED, 0),
            failed=counts.get(FAILED, 0),
        )
