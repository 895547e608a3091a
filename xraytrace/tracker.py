"""Step tracker assembling an execution record for one pipeline run."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .errors import DuplicateStepError
from .models import Execution, Step, utcnow
from .persistence.repository import StorageProvider

if TYPE_CHECKING:
    from .reasoning.queue import ReasoningQueue

logger = logging.getLogger(__name__)


class XRay:
    """Record the steps of one pipeline execution.

    Steps are opened with :meth:`start_step` and closed with
    :meth:`end_step` or :meth:`error_step`; closed steps are appended to the
    execution in completion order. Persisting the execution and queueing
    reasoning are separate, explicit calls (:meth:`save` then
    :meth:`enqueue_reasoning`) so the caller regains control before any
    reasoning cost is incurred.
    """

    def __init__(
        self,
        execution_id: str,
        metadata: Optional[Dict[str, Any]] = None,
        storage: Optional[StorageProvider] = None,
        project_id: Optional[str] = None,
        strict: bool = False,
    ) -> None:
        self._execution = Execution(
            execution_id=execution_id,
            project_id=project_id,
            metadata=metadata,
        )
        self._storage = storage
        self._strict = strict
        self._active_steps: Dict[str, Step] = {}
        self._pending_reasoning: List[str] = []

    @property
    def execution_id(self) -> str:
        return self._execution.execution_id

    @property
    def pending_reasoning_steps(self) -> List[str]:
        return list(self._pending_reasoning)

    def log_step(
        self,
        name: str,
        input: Any,
        output: Any,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Record an already finished step without timing or queued reasoning."""
        self._execution.steps.append(
            Step(
                name=name,
                input=input,
                output=output,
                timestamp=utcnow(),
                metadata=metadata,
            )
        )

    def start_step(
        self, name: str, input: Any, metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Open a step.

        Raises:
            DuplicateStepError: In strict mode, if ``name`` is already open.
                Otherwise the open step is replaced and a warning is logged.
        """
        if name in self._active_steps:
            if self._strict:
                raise DuplicateStepError(name)
            logger.warning(
                f"Step {name} started again before it ended; replacing the open step"
            )

        now = utcnow()
        self._active_steps[name] = Step(
            name=name,
            input=input,
            timestamp=now,
            started_at=now,
            metadata=metadata,
        )

    def end_step(self, name: str, output: Any) -> None:
        """Close an open step with its output. Unknown names are ignored."""
        step = self._active_steps.get(name)
        if step is None:
            return
        step.output = output
        self._finish(step)

    def error_step(self, name: str, error: BaseException | str) -> None:
        """Close an open step as failed. Unknown names are ignored."""
        step = self._active_steps.get(name)
        if step is None:
            return
        step.error = str(error)
        self._finish(step)

    def _finish(self, step: Step) -> None:
        step.ended_at = utcnow()
        step.duration_ms = (step.ended_at - step.started_at) // timedelta(milliseconds=1)
        step.reasoning = None

        self._execution.steps.append(step)
        del self._active_steps[step.name]
        self._pending_reasoning.append(step.name)

    def end(self, final_outcome: Any) -> Execution:
        """Close the execution. Does not persist or queue reasoning."""
        self._execution.ended_at = utcnow()
        self._execution.final_outcome = final_outcome
        return self._execution

    async def save(self) -> None:
        """Persist the execution to the configured storage, if any."""
        if self._storage is not None:
            await self._storage.save_execution(self._execution)

    async def enqueue_reasoning(self, queue: ReasoningQueue) -> List[str]:
        """Queue reasoning for every closed step. Call after :meth:`save`."""
        job_ids = []
        for step_name in self._pending_reasoning:
            job_ids.append(await queue.enqueue(self._execution.execution_id, step_name))
        return job_ids

    def get_execution(self) -> Execution:
        """Return the live execution record."""
        return self._execution
