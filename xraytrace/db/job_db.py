from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Iterable

from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlmodel import SQLModel, select

from ..models import JobStatus, ReasoningJob
from ..persistence.repository import JobStore
from .models import ReasoningJobRecord


def _aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class ReasoningJobDB(JobStore):
    """Async SQLModel job store for the reasoning queue."""

    def __init__(self, database_url: str) -> None:
        connect_args = (
            {"check_same_thread": False} if database_url.startswith("sqlite") else {}
        )
        self.engine = create_async_engine(
            database_url, echo=False, future=True, connect_args=connect_args
        )

    async def init_db(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        async with AsyncSession(self.engine, expire_on_commit=False) as session:
            yield session

    async def save_job(self, job: ReasoningJob, reasoning: str | None = None) -> None:
        async with self.session() as session:
            row = await session.get(ReasoningJobRecord, job.id)
            if row is None:
                row = ReasoningJobRecord(
                    id=job.id,
                    execution_id=job.execution_id,
                    step_name=job.step_name,
                    created_at=job.created_at,
                )
            row.status = job.status.value
            row.attempts = job.attempt
            row.error = job.error
            row.started_at = job.started_at
            row.completed_at = job.completed_at
            row.next_retry_at = job.next_retry_at
            if reasoning is not None:
                row.reasoning = reasoning
            session.add(row)
            await session.commit()

    async def load_jobs(self, statuses: Iterable[JobStatus]) -> list[ReasoningJob]:
        values = [JobStatus(s).value for s in statuses]
        async with self.session() as session:
            result = await session.execute(
                select(ReasoningJobRecord)
                .where(ReasoningJobRecord.status.in_(values))
                .order_by(ReasoningJobRecord.created_at)
            )
            rows = result.scalars().all()
        return [
            ReasoningJob(
                id=row.id,
                execution_id=row.execution_id,
                step_name=row.step_name,
                attempt=row.attempts,
                status=JobStatus(row.status),
                created_at=_aware(row.created_at),
                started_at=_aware(row.started_at),
                completed_at=_aware(row.completed_at),
                error=row.error,
                next_retry_at=_aware(row.next_retry_at),
            )
            for row in rows
        ]

    async def get_job_reasoning(self, job_id: str) -> str | None:
        async with self.session() as session:
            row = await session.get(ReasoningJobRecord, job_id)
            return row.reasoning if row else None

    async def dispose(self) -> None:
        await self.engine.dispose()
