"""Exceptions raised by the tracing SDK."""

from __future__ import annotations


class XRayError(Exception):
    """Base class for all SDK errors."""


class NotFoundError(XRayError, LookupError):
    """A referenced execution or step does not exist."""


class ExecutionNotFoundError(NotFoundError):
    def __init__(self, execution_id: str) -> None:
        self.execution_id = execution_id
        super().__init__(f"Execution {execution_id} not found")


class StepNotFoundError(NotFoundError):
    def __init__(self, execution_id: str, step_name: str) -> None:
        self.execution_id = execution_id
        self.step_name = step_name
        super().__init__(f"Step {step_name} not found in execution {execution_id}")


class DuplicateStepError(XRayError):
    """A step was started while another step of the same name is still open."""

    def __init__(self, step_name: str) -> None:
        self.step_name = step_name
        super().__init__(f"Step {step_name} is already open")


class GenerationTimeoutError(XRayError, TimeoutError):
    """The reasoning generator did not answer within the configured timeout."""

    def __init__(self, step_name: str, timeout: float) -> None:
        self.step_name = step_name
        self.timeout = timeout
        super().__init__(
            f"Reasoning generation timeout for step {step_name} after {timeout}s"
        )
