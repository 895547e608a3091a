"""Execution record and reasoning job models."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    """Current UTC time truncated to millisecond resolution."""
    now = datetime.now(timezone.utc)
    return now.replace(microsecond=(now.microsecond // 1000) * 1000)


class Step(BaseModel):
    """One tracked unit of work within an execution."""

    name: str
    input: Any = None
    output: Any = None
    error: Optional[str] = None
    timestamp: Optional[datetime] = None
    started_at: Optional[datetime] = None
    ended_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    reasoning: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None


class Execution(BaseModel):
    """One end-to-end run of a tracked pipeline."""

    execution_id: str
    project_id: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow)
    ended_at: Optional[datetime] = None
    metadata: Optional[dict[str, Any]] = None
    steps: list[Step] = Field(default_factory=list)
    final_outcome: Any = None

    def find_step(self, name: str) -> Optional[Step]:
        """Return the first recorded step called ``name``."""
        return next((s for s in self.steps if s.name == name), None)


class JobStatus(str, Enum):
    """Reasoning job lifecycle states."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ReasoningJob(BaseModel):
    """Queued request to generate reasoning for a single step."""

    id: str
    execution_id: str
    step_name: str
    attempt: int = 1
    status: JobStatus = JobStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    error: Optional[str] = None
    next_retry_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)


class QueueStats(BaseModel):
    """Snapshot of job counts held by a reasoning queue."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total_jobs: int = 0
