"""In-memory implementation of the storage and job repositories."""

from __future__ import annotations

import logging
from typing import Dict, Iterable

from ..errors import ExecutionNotFoundError, StepNotFoundError
from ..models import Execution, JobStatus, ReasoningJob
from .repository import JobStore, StorageProvider

logger = logging.getLogger(__name__)


class InMemoryStorage(StorageProvider, JobStore):
    """Store executions and job rows in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts. Records are deep-copied on the way
    in and out so callers never share state with the store.
    """

    def __init__(self) -> None:
        self._executions: Dict[str, Execution] = {}
        self._jobs: Dict[str, ReasoningJob] = {}
        self._job_reasoning: Dict[str, str] = {}

    # ------------------------------------------------------------------
    async def save_execution(self, execution: Execution) -> None:
        self._executions[execution.execution_id] = execution.model_copy(deep=True)
        logger.info(f"Saved execution {execution.execution_id}")

    async def get_execution_by_id(self, execution_id: str) -> Execution | None:
        execution = self._executions.get(execution_id)
        return execution.model_copy(deep=True) if execution else None

    async def get_all_executions(self, limit: int = 100) -> list[Execution]:
        ordered = sorted(
            self._executions.values(), key=lambda e: e.started_at, reverse=True
        )
        return [e.model_copy(deep=True) for e in ordered[:limit]]

    async def update_step_reasoning(
        self, execution_id: str, step_name: str, reasoning: str
    ) -> None:
        execution = self._executions.get(execution_id)
        if execution is None:
            raise ExecutionNotFoundError(execution_id)
        step = execution.find_step(step_name)
        if step is None:
            raise StepNotFoundError(execution_id, step_name)
        step.reasoning = reasoning
        logger.info(f"Updated reasoning for {execution_id}/{step_name}")

    # ------------------------------------------------------------------
    async def save_job(self, job: ReasoningJob, reasoning: str | None = None) -> None:
        self._jobs[job.id] = job.model_copy(deep=True)
        if reasoning is not None:
            self._job_reasoning[job.id] = reasoning

    async def load_jobs(self, statuses: Iterable[JobStatus]) -> list[ReasoningJob]:
        wanted = set(statuses)
        return [
            job.model_copy(deep=True)
            for job in self._jobs.values()
            if job.status in wanted
        ]

    async def get_job_reasoning(self, job_id: str) -> str | None:
        return self._job_reasoning.get(job_id)

    def clear(self) -> None:
        self._executions.clear()
        self._jobs.clear()
        self._job_reasoning.clear()
