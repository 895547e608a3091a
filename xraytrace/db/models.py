from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlmodel import Field, SQLModel


class ReasoningJobRecord(SQLModel, table=True):
    """Persisted mirror of a reasoning job, used for crash recovery."""

    __tablename__ = "reasoning_jobs"

    id: str = Field(primary_key=True)
    execution_id: str = Field(index=True)
    step_name: str
    status: str = Field(default="pending", index=True)
    attempts: int = 1
    error: Optional[str] = None
    reasoning: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    next_retry_at: Optional[datetime] = None
