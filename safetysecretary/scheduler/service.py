import asyncio
import logging
import time
from datetime import timedelta
from typing import Any, Optional, Union
from uuid import uuid4

from pydantic import BaseModel

from safetysecretary.api.v1.metrics import (
    JOB_DURATION,
    JOB_TIMEOUTS,
    JOBS_ENQUEUED,
    JOBS_EVICTED,
    JOBS_FINISHED,
    JOBS_RETAINED,
    QUEUE_DEPTH,
)
from safetysecretary.domain.errors import JobTimeoutError
from safetysecretary.domain.models import Job, JobView, utcnow
from safetysecretary.domain.states import JobStatus, JobType
from safetysecretary.scheduler.context import Handler, HandlerContext
from safetysecretary.scheduler.dispatcher import HANDLERS, dispatch

logger = logging.getLogger(__name__)


class JobManager:
    """
    In-process LLM job queue.

    A single consumer task drains an asyncio.Queue, so jobs run one at a
    time, across all tenants and types, in enqueue order. Job records live
    in memory only; terminal ones are evicted by age and by count.
    """

    def __init__(
        self,
        context: HandlerContext,
        job_timeout: Optional[float] = None,
        retention_seconds: Optional[float] = None,
        max_retained_jobs: Optional[int] = None,
        handlers: Optional[dict[JobType, Handler]] = None,
    ):
        self.context = context
        self.job_timeout = job_timeout or None
        self.retention_seconds = retention_seconds
        self.max_retained_jobs = max_retained_jobs
        self.handlers = handlers or HANDLERS

        self._jobs: dict[str, Job] = {}
        self._queue: asyncio.Queue[Job] = asyncio.Queue()
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self):
        self._stopped = False
        if not self.running:
            self._task = asyncio.create_task(self._loop())
            logger.info("Job manager started.")

    async def stop(self):
        self._stopped = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Job manager stopped.")

    async def join(self):
        """Waits until every job enqueued so far has reached a terminal state."""
        await self._queue.join()

    def enqueue(self, job_type: Union[JobType, str], payload: Union[BaseModel, dict[str, Any]]) -> JobView:
        job_type = JobType(job_type)
        job = Job(id=uuid4().hex, type=job_type, input=payload)

        self._evict()
        self._jobs[job.id] = job
        self._queue.put_nowait(job)

        JOBS_ENQUEUED.labels(type=job_type).inc()
        QUEUE_DEPTH.set(self._queue.qsize())
        JOBS_RETAINED.set(len(self._jobs))
        logger.info(f"Enqueued job {job.id} ({job_type})")

        self._ensure_consumer()
        return job.view()

    def get_job(self, job_id: str, tenant_connection_ref: Optional[str] = None) -> Optional[JobView]:
        """
        Snapshot of a job, or None when unknown. With a tenant reference, jobs
        of other tenants are reported as unknown too.
        """
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if tenant_connection_ref is not None and job.tenant_connection_ref != tenant_connection_ref:
            return None
        return job.view()

    def __len__(self) -> int:
        return len(self._jobs)

    def _ensure_consumer(self):
        if self._stopped or self.running:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            # No loop yet; start() picks the backlog up
            return
        self._task = asyncio.create_task(self._loop())

    async def _loop(self):
        while True:
            job = await self._queue.get()
            try:
                await self._run(job)
            finally:
                self._queue.task_done()
                QUEUE_DEPTH.set(self._queue.qsize())

    async def _run(self, job: Job):
        job.transition(JobStatus.RUNNING)
        logger.info(f"Running job {job.id} ({job.type})")
        started = time.monotonic()

        try:
            result = await self._invoke(job)
        except JobTimeoutError as e:
            JOB_TIMEOUTS.labels(type=job.type).inc()
            logger.warning(f"Job {job.id} ({job.type}) timed out after {self.job_timeout}s")
            job.fail(str(e))
        except asyncio.CancelledError:
            job.fail("Job cancelled during shutdown")
            JOBS_FINISHED.labels(type=job.type, status=job.status).inc()
            raise
        except Exception as e:
            logger.error(f"Job {job.id} ({job.type}) failed: {e}", exc_info=True)
            job.fail(str(e) or type(e).__name__)
        else:
            job.complete(result)
            logger.info(f"Job {job.id} ({job.type}) completed: {result}")

        JOB_DURATION.labels(type=job.type).observe(time.monotonic() - started)
        JOBS_FINISHED.labels(type=job.type, status=job.status).inc()

    async def _invoke(self, job: Job) -> dict[str, Any]:
        call = dispatch(job.type, job.input, self.context, self.handlers)
        if not self.job_timeout:
            return await call
        try:
            async with asyncio.timeout(self.job_timeout) as deadline:
                return await call
        except TimeoutError:
            if deadline.expired():
                raise JobTimeoutError(self.job_timeout) from None
            raise

    def _evict(self):
        """Drops terminal jobs past the retention age, then the oldest beyond the count cap."""
        terminal = [job for job in self._jobs.values() if job.status.is_terminal]
        if not terminal:
            return

        evicted = 0
        if self.retention_seconds:
            cutoff = utcnow() - timedelta(seconds=self.retention_seconds)
            for job in terminal:
                if job.updated_at < cutoff:
                    del self._jobs[job.id]
                    evicted += 1
            terminal = [job for job in terminal if job.id in self._jobs]

        if self.max_retained_jobs is not None and len(terminal) > self.max_retained_jobs:
            terminal.sort(key=lambda job: job.updated_at)
            for job in terminal[: len(terminal) - self.max_retained_jobs]:
                del self._jobs[job.id]
                evicted += 1

        if evicted:
            JOBS_EVICTED.inc(evicted)
            logger.info(f"Evicted {evicted} finished job(s)")
