"""PostgreSQL implementation of the storage and job repositories."""

from __future__ import annotations

import json
import logging
from typing import Any, Iterable

import asyncpg

from ..errors import ExecutionNotFoundError, StepNotFoundError
from ..models import Execution, JobStatus, ReasoningJob, Step, utcnow
from .repository import JobStore, StorageProvider, is_saveable

logger = logging.getLogger(__name__)


def _dump(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _load(value: Any) -> Any:
    if isinstance(value, str):
        return json.loads(value)
    return value


class PostgresStorage(StorageProvider, JobStore):
    """Persist executions and reasoning jobs using PostgreSQL."""

    def __init__(self, dsn: str):
        self._dsn = dsn
        self._initialized = False

    async def _connect(self) -> asyncpg.Connection:
        conn = await asyncpg.connect(self._dsn)
        if not self._initialized:
            await self._ensure_schema(conn)
            self._initialized = True
        return conn

    async def _ensure_schema(self, conn: asyncpg.Connection) -> None:
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                project_id TEXT,
                started_at TIMESTAMPTZ NOT NULL,
                ended_at TIMESTAMPTZ,
                metadata JSONB,
                final_outcome JSONB
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS steps (
                id SERIAL PRIMARY KEY,
                execution_id TEXT NOT NULL REFERENCES executions(execution_id) ON DELETE CASCADE,
                position INTEGER NOT NULL,
                name TEXT NOT NULL,
                input JSONB,
                output JSONB,
                error TEXT,
                timestamp TIMESTAMPTZ,
                started_at TIMESTAMPTZ,
                ended_at TIMESTAMPTZ,
                duration_ms INTEGER,
                reasoning TEXT,
                metadata JSONB
            )
            """
        )
        await conn.execute(
            """
            CREATE TABLE IF NOT EXISTS reasoning_jobs (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL,
                step_name TEXT NOT NULL,
                status TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 1,
                error TEXT,
                reasoning TEXT,
                created_at TIMESTAMPTZ NOT NULL,
                started_at TIMESTAMPTZ,
                completed_at TIMESTAMPTZ,
                next_retry_at TIMESTAMPTZ
            )
            """
        )

    def _record_to_step(self, r: asyncpg.Record) -> Step:
        return Step(
            name=r["name"],
            input=_load(r["input"]),
            output=_load(r["output"]),
            error=r["error"],
            timestamp=r["timestamp"],
            started_at=r["started_at"],
            ended_at=r["ended_at"],
            duration_ms=r["duration_ms"],
            reasoning=r["reasoning"],
            metadata=_load(r["metadata"]),
        )

    def _record_to_execution(self, row: asyncpg.Record, steps: list[Step]) -> Execution:
        return Execution(
            execution_id=row["execution_id"],
            project_id=row["project_id"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
            metadata=_load(row["metadata"]),
            final_outcome=_load(row["final_outcome"]),
            steps=steps,
        )

    async def _fetch_steps(self, conn: asyncpg.Connection, execution_id: str) -> list[Step]:
        rows = await conn.fetch(
            "SELECT * FROM steps WHERE execution_id = $1 ORDER BY position, id",
            execution_id,
        )
        return [self._record_to_step(r) for r in rows]

    # ------------------------------------------------------------------
    async def save_execution(self, execution: Execution) -> None:
        if not is_saveable(execution):
            logger.warning(f"Skipping invalid execution: {execution.execution_id}")
            return
        conn = await self._connect()
        try:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO executions
                        (execution_id, project_id, started_at, ended_at, metadata, final_outcome)
                    VALUES ($1, $2, $3, $4, $5, $6)
                    ON CONFLICT (execution_id) DO UPDATE SET
                        project_id = EXCLUDED.project_id,
                        ended_at = EXCLUDED.ended_at,
                        metadata = EXCLUDED.metadata,
                        final_outcome = EXCLUDED.final_outcome
                    """,
                    execution.execution_id,
                    execution.project_id,
                    execution.started_at,
                    execution.ended_at or utcnow(),
                    _dump(execution.metadata or {}),
                    _dump(execution.final_outcome),
                )
                await conn.execute(
                    "DELETE FROM steps WHERE execution_id = $1", execution.execution_id
                )
                await conn.executemany(
                    """
                    INSERT INTO steps
                        (execution_id, position, name, input, output, error, timestamp,
                         started_at, ended_at, duration_ms, reasoning, metadata)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)
                    """,
                    [
                        (
                            execution.execution_id,
                            position,
                            step.name,
                            _dump(step.input),
                            _dump(step.output),
                            step.error,
                            step.timestamp,
                            step.started_at,
                            step.ended_at,
                            step.duration_ms,
                            step.reasoning,
                            _dump(step.metadata),
                        )
                        for position, step in enumerate(execution.steps)
                    ],
                )
        finally:
            await conn.close()
        logger.info(f"Saved execution {execution.execution_id}")

    async def get_execution_by_id(self, execution_id: str) -> Execution | None:
        conn = await self._connect()
        try:
            row = await conn.fetchrow(
                "SELECT * FROM executions WHERE execution_id = $1", execution_id
            )
            if not row:
                return None
            steps = await self._fetch_steps(conn, execution_id)
        finally:
            await conn.close()
        return self._record_to_execution(row, steps)

    async def get_all_executions(self, limit: int = 100) -> list[Execution]:
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT * FROM executions ORDER BY started_at DESC LIMIT $1", limit
            )
            executions = [
                self._record_to_execution(
                    r, await self._fetch_steps(conn, r["execution_id"])
                )
                for r in rows
            ]
        finally:
            await conn.close()
        return executions

    async def update_step_reasoning(
        self, execution_id: str, step_name: str, reasoning: str
    ) -> None:
        conn = await self._connect()
        try:
            async with conn.transaction():
                exists = await conn.fetchval(
                    "SELECT 1 FROM executions WHERE execution_id = $1", execution_id
                )
                if not exists:
                    raise ExecutionNotFoundError(execution_id)
                step_id = await conn.fetchval(
                    "SELECT id FROM steps WHERE execution_id = $1 AND name = $2 ORDER BY position, id LIMIT 1",
                    execution_id,
                    step_name,
                )
                if step_id is None:
                    raise StepNotFoundError(execution_id, step_name)
                await conn.execute(
                    "UPDATE steps SET reasoning = $1 WHERE id = $2", reasoning, step_id
                )
        finally:
            await conn.close()
        logger.info(f"Updated reasoning for {execution_id}/{step_name}")

    # ------------------------------------------------------------------
    async def save_job(self, job: ReasoningJob, reasoning: str | None = None) -> None:
        conn = await self._connect()
        try:
            await conn.execute(
                """
                INSERT INTO reasoning_jobs
                    (id, execution_id, step_name, status, attempts, error, reasoning,
                     created_at, started_at, completed_at, next_retry_at)
                VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11)
                ON CONFLICT (id) DO UPDATE SET
                    status = EXCLUDED.status,
                    attempts = EXCLUDED.attempts,
                    error = EXCLUDED.error,
                    reasoning = COALESCE(EXCLUDED.reasoning, reasoning_jobs.reasoning),
                    started_at = EXCLUDED.started_at,
                    completed_at = EXCLUDED.completed_at,
                    next_retry_at = EXCLUDED.next_retry_at
                """,
                job.id,
                job.execution_id,
                job.step_name,
                job.status.value,
                job.attempt,
                job.error,
                reasoning,
                job.created_at,
                job.started_at,
                job.completed_at,
                job.next_retry_at,
            )
        finally:
            await conn.close()

    async def load_jobs(self, statuses: Iterable[JobStatus]) -> list[ReasoningJob]:
        values = [JobStatus(s).value for s in statuses]
        conn = await self._connect()
        try:
            rows = await conn.fetch(
                "SELECT * FROM reasoning_jobs WHERE status = ANY($1::text[]) ORDER BY created_at",
                values,
            )
        finally:
            await conn.close()
        return [
            ReasoningJob(
                id=r["id"],
                execution_id=r["execution_id"],
                step_name=r["step_name"],
                attempt=r["attempts"],
                status=JobStatus(r["status"]),
                created_at=r["created_at"],
                started_at=r["started_at"],
                completed_at=r["completed_at"],
                error=r["error"],
                next_retry_at=r["next_retry_at"],
            )
            for r in rows
        ]
