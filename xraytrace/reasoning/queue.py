"""Bounded-concurrency job queue generating reasoning for recorded steps."""

from __future__ import annotations

import asyncio
import logging
import threading
import uuid
from datetime import timedelta
from typing import Any, Coroutine, Iterable, Optional

from ..config import ReasoningConfig
from ..errors import ExecutionNotFoundError, GenerationTimeoutError, StepNotFoundError
from ..models import JobStatus, QueueStats, ReasoningJob, Step, utcnow
from ..persistence.repository import JobStore, StorageProvider
from ..utils.retry import compute_backoff, is_retryable_error
from .generator import ReasoningGenerator

logger = logging.getLogger(__name__)

RECOVERABLE_STATUSES = (JobStatus.PENDING, JobStatus.PROCESSING)


class ReasoningQueue:
    """Dispatch reasoning jobs to a generator with retries and recovery.

    Jobs are keyed by ``(execution_id, step_name)`` and run on the current
    event loop, at most ``config.concurrency`` at a time. Failed jobs whose
    error looks transient are re-submitted after the configured backoff
    until ``config.max_retries`` attempts have been made.

    When a ``job_store`` is supplied, every job transition is mirrored to
    it and jobs left pending or processing by a previous process are
    re-enqueued on construction. Mirror writes are best effort: failures
    are logged and never fail the job.

    A queue is tied to the event loop it first runs on: its semaphore,
    idle event and tasks belong to that loop, so do not share one
    instance across separate ``asyncio.run`` calls once work has started.
    """

    def __init__(
        self,
        storage: StorageProvider,
        generator: ReasoningGenerator,
        config: Optional[ReasoningConfig] = None,
        job_store: Optional[JobStore] = None,
    ) -> None:
        self._storage = storage
        self._generator = generator
        self._config = config or ReasoningConfig()
        self._job_store = job_store

        self._jobs: dict[str, ReasoningJob] = {}
        self._lock = threading.Lock()
        self._semaphore = asyncio.Semaphore(self._config.concurrency)
        self._tasks: set[asyncio.Task] = set()
        self._outstanding = 0
        self._idle = asyncio.Event()
        self._idle.set()

        self._log(
            f"Reasoning queue initialized (concurrency={self._config.concurrency}, "
            f"max_retries={self._config.max_retries})"
        )

        self._recovery_task: Optional[asyncio.Task] = None
        self._recovery_pending = job_store is not None
        if self._recovery_pending:
            self._start_recovery()

    @property
    def config(self) -> ReasoningConfig:
        return self._config

    # ------------------------------------------------------------------
    # Public API
    async def enqueue(self, execution_id: str, step_name: str) -> str:
        """Queue reasoning generation for one step and return the job id."""
        self._start_recovery()

        job = ReasoningJob(
            id=str(uuid.uuid4()), execution_id=execution_id, step_name=step_name
        )
        with self._lock:
            self._jobs[job.id] = job
            snapshot = job.model_copy()

        await self._persist(snapshot)
        self._submit(job.id)
        self._log(f"Job enqueued: {execution_id}/{step_name}")
        return job.id

    async def enqueue_execution(self, execution_id: str) -> list[str]:
        """Queue every step of an execution that has no reasoning yet.

        Raises:
            ExecutionNotFoundError: If storage has no such execution.
        """
        self._start_recovery()
        execution = await self._storage.get_execution_by_id(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)

        job_ids: list[str] = []
        for step in execution.steps:
            if not step.reasoning:
                job_ids.append(await self.enqueue(execution_id, step.name))
        return job_ids

    async def process_execution(self, execution_id: str) -> None:
        """Queue an execution's steps and wait until the queue drains."""
        job_ids = await self.enqueue_execution(execution_id)
        if not job_ids:
            recovery = self._recovery_task
            if recovery is not None and not recovery.done():
                # persisted jobs are loaded before returning, not processed
                await asyncio.shield(recovery)
            self._log(f"No pending reasoning for execution {execution_id}")
            return

        logger.info(f"Processing {len(job_ids)} steps for execution {execution_id}")
        await self.wait_until_idle()
        logger.info(f"Completed processing for execution {execution_id}")

    async def wait_until_idle(self) -> None:
        """Block until no job is running, queued or waiting for a retry."""
        self._start_recovery()
        await self._idle.wait()

    async def load_pending_jobs(self) -> int:
        """Re-enqueue jobs the job store still lists as pending or processing.

        Returns the number of jobs re-enqueued.
        """
        self._recovery_pending = False
        if self._job_store is None:
            return 0

        persisted = await self._job_store.load_jobs(RECOVERABLE_STATUSES)
        if not persisted:
            return 0
        logger.info(
            f"Found {len(persisted)} pending jobs in job store, re-enqueuing..."
        )

        restored: list[str] = []
        with self._lock:
            for stored in persisted:
                if stored.id in self._jobs:
                    continue
                self._jobs[stored.id] = stored.model_copy(
                    update={
                        "status": JobStatus.PENDING,
                        "started_at": None,
                        "next_retry_at": None,
                    }
                )
                restored.append(stored.id)

        for job_id in restored:
            self._submit(job_id)
        logger.info(f"Re-enqueued {len(restored)} jobs from job store")
        return len(restored)

    def get_stats(self) -> QueueStats:
        with self._lock:
            statuses = [job.status for job in self._jobs.values()]
        return QueueStats(
            pending=statuses.count(JobStatus.PENDING),
            processing=statuses.count(JobStatus.PROCESSING),
            completed=statuses.count(JobStatus.COMPLETED),
            failed=statuses.count(JobStatus.FAILED),
            total_jobs=len(statuses),
        )

    def get_job(self, job_id: str) -> Optional[ReasoningJob]:
        """Return a snapshot of the job, or ``None`` if unknown."""
        with self._lock:
            job = self._jobs.get(job_id)
            return job.model_copy() if job else None

    def clear(self) -> None:
        """Drop all in-memory job state. Persisted job rows are untouched."""
        with self._lock:
            self._jobs.clear()

    def prune(
        self, statuses: Iterable[JobStatus] = (JobStatus.COMPLETED, JobStatus.FAILED)
    ) -> int:
        """Drop in-memory jobs in ``statuses`` and return how many were removed."""
        wanted = set(statuses)
        with self._lock:
            doomed = [jid for jid, job in self._jobs.items() if job.status in wanted]
            for jid in doomed:
                del self._jobs[jid]
        return len(doomed)

    # ------------------------------------------------------------------
    # Dispatching
    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        self._outstanding += 1
        self._idle.clear()
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        self._outstanding -= 1
        if self._outstanding == 0:
            self._idle.set()
        if not task.cancelled() and task.exception() is not None:
            logger.error("Reasoning queue task crashed", exc_info=task.exception())

    def _submit(self, job_id: str, delay: float = 0.0) -> None:
        self._spawn(self._dispatch(job_id, delay))

    async def _dispatch(self, job_id: str, delay: float) -> None:
        if delay > 0:
            await asyncio.sleep(delay)
        async with self._semaphore:
            await self._process_job(job_id)

    def _start_recovery(self) -> None:
        if not self._recovery_pending:
            return
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running event loop, deferring job recovery")
            return
        self._recovery_pending = False
        self._recovery_task = self._spawn(self._recover())

    async def _recover(self) -> None:
        try:
            await self.load_pending_jobs()
        except Exception:
            logger.error("Failed to load pending jobs from job store", exc_info=True)

    # ------------------------------------------------------------------
    # Job processing
    async def _process_job(self, job_id: str) -> None:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.error(f"Job {job_id} not found")
                return
            job.status = JobStatus.PROCESSING
            job.started_at = utcnow()
            job.next_retry_at = None
            snapshot = job.model_copy()

        await self._persist(snapshot)
        self._log(
            f"Processing job {job_id} (attempt {snapshot.attempt}/{self._config.max_retries})"
        )

        try:
            execution = await self._storage.get_execution_by_id(job.execution_id)
            if execution is None:
                raise ExecutionNotFoundError(job.execution_id)

            step = execution.find_step(job.step_name)
            if step is None:
                raise StepNotFoundError(job.execution_id, job.step_name)

            if step.reasoning:
                logger.info(
                    f"Reasoning already exists for {job.execution_id}/{job.step_name}, skipping"
                )
                await self._complete(job)
                return

            reasoning = await self._generate(step)
            await self._storage.update_step_reasoning(
                job.execution_id, job.step_name, reasoning
            )
        except Exception as exc:
            logger.error(f"Error processing job {job_id}: {exc}")
            await self._handle_job_error(job, exc)
            return

        await self._complete(job, reasoning)
        self._log(f"Generated reasoning for {job.execution_id}/{job.step_name}")

    async def _generate(self, step: Step) -> str:
        timeout = self._config.generator_timeout
        if timeout is None:
            reasoning = await self._generator(step)
        else:
            try:
                reasoning = await asyncio.wait_for(self._generator(step), timeout)
            except asyncio.TimeoutError as exc:
                raise GenerationTimeoutError(step.name, timeout) from exc

        if not isinstance(reasoning, str) or not reasoning.strip():
            raise ValueError(f"Generator returned no reasoning for step {step.name}")
        return reasoning

    async def _complete(self, job: ReasoningJob, reasoning: str | None = None) -> None:
        with self._lock:
            job.status = JobStatus.COMPLETED
            job.completed_at = utcnow()
            job.error = None
            snapshot = job.model_copy()
        await self._persist(snapshot, reasoning)

    async def _handle_job_error(self, job: ReasoningJob, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        retryable = is_retryable_error(error)

        with self._lock:
            job.error = message
            retry = retryable and job.attempt < self._config.max_retries
            if retry:
                delay = compute_backoff(job.attempt, self._config.retry_delays)
                job.attempt += 1
                job.status = JobStatus.PENDING
                job.next_retry_at = utcnow() + timedelta(seconds=delay)
            else:
                job.status = JobStatus.FAILED
                job.completed_at = utcnow()
            snapshot = job.model_copy()

        await self._persist(snapshot)

        if retry:
            logger.warning(
                f"Retry {snapshot.attempt}/{self._config.max_retries} for "
                f"{job.step_name} in {delay * 1000:.0f}ms"
            )
            self._submit(job.id, delay)
        else:
            logger.error(
                f"Failed to generate reasoning for {job.execution_id}/{job.step_name} "
                f"after {snapshot.attempt} attempts: {message}"
            )

    async def _persist(self, job: ReasoningJob, reasoning: str | None = None) -> None:
        if self._job_store is None:
            return
        try:
            await self._job_store.save_job(job, reasoning)
        except Exception:
            logger.error(
                f"Failed to persist job {job.id} ({job.status.value}) to job store",
                exc_info=True,
            )

    def _log(self, message: str) -> None:
        if self._config.debug:
            logger.info(message)
        else:
            logger.debug(message)
