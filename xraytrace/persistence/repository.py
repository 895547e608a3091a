"""Repository abstractions for execution and job persistence."""

from __future__ import annotations

from typing import Iterable, Protocol, runtime_checkable

from ..models import Execution, JobStatus, ReasoningJob


@runtime_checkable
class StorageProvider(Protocol):
    """Protocol for execution record persistence backends."""

    async def save_execution(self, execution: Execution) -> None:
        """Upsert ``execution`` by its id."""

    async def get_execution_by_id(self, execution_id: str) -> Execution | None:
        """Retrieve an execution with its ordered steps."""

    async def get_all_executions(self, limit: int = 100) -> list[Execution]:
        """Return the most recent executions first."""

    async def update_step_reasoning(
        self, execution_id: str, step_name: str, reasoning: str
    ) -> None:
        """Set the reasoning of one step.

        Raises:
            ExecutionNotFoundError: If the execution does not exist.
            StepNotFoundError: If the execution has no step named ``step_name``.
        """


@runtime_checkable
class JobStore(Protocol):
    """Protocol for the persisted mirror of reasoning jobs."""

    async def save_job(self, job: ReasoningJob, reasoning: str | None = None) -> None:
        """Upsert ``job`` by id."""

    async def load_jobs(self, statuses: Iterable[JobStatus]) -> list[ReasoningJob]:
        """Return persisted jobs whose status is in ``statuses``."""


def is_saveable(execution: Execution) -> bool:
    """Executions without an id or without steps are not persisted."""
    return bool(execution.execution_id) and len(execution.steps) > 0
