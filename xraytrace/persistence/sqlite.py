"""SQLite implementation of the storage and job repositories."""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, TypeVar

from ..errors import ExecutionNotFoundError, StepNotFoundError
from ..models import Execution, JobStatus, ReasoningJob, Step, utcnow
from .repository import JobStore, StorageProvider, is_saveable

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _dump(value: Any) -> str | None:
    return None if value is None else json.dumps(value, default=str)


def _load(value: str | None) -> Any:
    return None if value is None else json.loads(value)


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def _parse_ts(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteStorage(StorageProvider, JobStore):
    """Persist executions and reasoning jobs using SQLite."""

    def __init__(self, db_path: str | Path):
        self.db_path = str(db_path)
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.Lock()
        self._ensure_schema()

    # ------------------------------------------------------------------
    # Schema management
    def _ensure_schema(self) -> None:
        cur = self._conn.cursor()
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS executions (
                execution_id TEXT PRIMARY KEY,
                project_id TEXT,
                started_at TEXT NOT NULL,
                ended_at TEXT,
                metadata TEXT,
                final_outcome TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS steps (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                execution_id TEXT NOT NULL,
                position INTEGER NOT NULL,
                name TEXT NOT NULL,
                input TEXT,
                output TEXT,
                error TEXT,
                timestamp TEXT,
                started_at TEXT,
                ended_at TEXT,
                duration_ms INTEGER,
                reasoning TEXT,
                metadata TEXT
            )
            """
        )
        cur.execute(
            """
            CREATE TABLE IF NOT EXISTS reasoning_jobs (
                id TEXT PRIMARY KEY,
                execution_id TEXT NOT NULL,
                step_name TEXT NOT NULL,
                status TEXT NOT NULL,
                attempts INTEGER NOT NULL DEFAULT 1,
                error TEXT,
                reasoning TEXT,
                created_at TEXT NOT NULL,
                started_at TEXT,
                completed_at TEXT,
                next_retry_at TEXT
            )
            """
        )
        self._conn.commit()

    # ------------------------------------------------------------------
    # Helper methods
    def _run(self, fn: Callable[[sqlite3.Cursor], T]) -> T:
        """Run ``fn`` inside a single committed transaction."""
        with self._lock:
            cur = self._conn.cursor()
            try:
                result = fn(cur)
            except Exception:
                self._conn.rollback()
                raise
            self._conn.commit()
            return result

    def _fetchall(self, query: str, *params: Any) -> list[sqlite3.Row]:
        with self._lock:
            cur = self._conn.cursor()
            cur.execute(query, params)
            return cur.fetchall()

    def _row_to_step(self, row: sqlite3.Row) -> Step:
        return Step(
            name=row["name"],
            input=_load(row["input"]),
            output=_load(row["output"]),
            error=row["error"],
            timestamp=_parse_ts(row["timestamp"]),
            started_at=_parse_ts(row["started_at"]),
            ended_at=_parse_ts(row["ended_at"]),
            duration_ms=row["duration_ms"],
            reasoning=row["reasoning"],
            metadata=_load(row["metadata"]),
        )

    def _row_to_execution(self, row: sqlite3.Row, steps: list[Step]) -> Execution:
        return Execution(
            execution_id=row["execution_id"],
            project_id=row["project_id"],
            started_at=_parse_ts(row["started_at"]),
            ended_at=_parse_ts(row["ended_at"]),
            metadata=_load(row["metadata"]),
            final_outcome=_load(row["final_outcome"]),
            steps=steps,
        )

    def _load_steps(self, execution_id: str) -> list[Step]:
        rows = self._fetchall(
            "SELECT * FROM steps WHERE execution_id = ? ORDER BY position, id",
            execution_id,
        )
        return [self._row_to_step(r) for r in rows]

    def _write_execution(self, cur: sqlite3.Cursor, execution: Execution) -> None:
        cur.execute(
            """
            INSERT INTO executions
                (execution_id, project_id, started_at, ended_at, metadata, final_outcome)
            VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT(execution_id) DO UPDATE SET
                project_id = excluded.project_id,
                ended_at = excluded.ended_at,
                metadata = excluded.metadata,
                final_outcome = excluded.final_outcome
            """,
            (
                execution.execution_id,
                execution.project_id,
                _ts(execution.started_at),
                _ts(execution.ended_at or utcnow()),
                _dump(execution.metadata or {}),
                _dump(execution.final_outcome),
            ),
        )
        cur.execute("DELETE FROM steps WHERE execution_id = ?", (execution.execution_id,))
        cur.executemany(
            """
            INSERT INTO steps
                (execution_id, position, name, input, output, error, timestamp,
                 started_at, ended_at, duration_ms, reasoning, metadata)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    execution.execution_id,
                    position,
                    step.name,
                    _dump(step.input),
                    _dump(step.output),
                    step.error,
                    _ts(step.timestamp),
                    _ts(step.started_at),
                    _ts(step.ended_at),
                    step.duration_ms,
                    step.reasoning,
                    _dump(step.metadata),
                )
                for position, step in enumerate(execution.steps)
            ],
        )

    def _write_reasoning(
        self, cur: sqlite3.Cursor, execution_id: str, step_name: str, reasoning: str
    ) -> None:
        cur.execute(
            "SELECT 1 FROM executions WHERE execution_id = ?", (execution_id,)
        )
        if cur.fetchone() is None:
            raise ExecutionNotFoundError(execution_id)
        cur.execute(
            "SELECT id FROM steps WHERE execution_id = ? AND name = ? ORDER BY position, id LIMIT 1",
            (execution_id, step_name),
        )
        row = cur.fetchone()
        if row is None:
            raise StepNotFoundError(execution_id, step_name)
        cur.execute("UPDATE steps SET reasoning = ? WHERE id = ?", (reasoning, row["id"]))

    # ------------------------------------------------------------------
    # Storage API
    async def save_execution(self, execution: Execution) -> None:
        if not is_saveable(execution):
            logger.warning(f"Skipping invalid execution: {execution.execution_id}")
            return
        await asyncio.to_thread(self._run, lambda cur: self._write_execution(cur, execution))
        logger.info(f"Saved execution {execution.execution_id}")

    async def get_execution_by_id(self, execution_id: str) -> Execution | None:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM executions WHERE execution_id = ?",
            execution_id,
        )
        if not rows:
            return None
        steps = await asyncio.to_thread(self._load_steps, execution_id)
        return self._row_to_execution(rows[0], steps)

    async def get_all_executions(self, limit: int = 100) -> list[Execution]:
        rows = await asyncio.to_thread(
            self._fetchall,
            "SELECT * FROM executions ORDER BY started_at DESC LIMIT ?",
            limit,
        )
        executions: list[Execution] = []
        for row in rows:
            steps = await asyncio.to_thread(self._load_steps, row["execution_id"])
            executions.append(self._row_to_execution(row, steps))
        return executions

    async def update_step_reasoning(
        self, execution_id: str, step_name: str, reasoning: str
    ) -> None:
        await asyncio.to_thread(
            self._run,
            lambda cur: self._write_reasoning(cur, execution_id, step_name, reasoning),
        )
        logger.info(f"Updated reasoning for {execution_id}/{step_name}")

    # ------------------------------------------------------------------
    # Job store API
    async def save_job(self, job: ReasoningJob, reasoning: str | None = None) -> None:
        params = (
            job.id,
            job.execution_id,
            job.step_name,
            job.status.value,
            job.attempt,
            job.error,
            reasoning,
            _ts(job.created_at),
            _ts(job.started_at),
            _ts(job.completed_at),
            _ts(job.next_retry_at),
        )
        await asyncio.to_thread(
            self._run,
            lambda cur: cur.execute(
                """
                INSERT INTO reasoning_jobs
                    (id, execution_id, step_name, status, attempts, error, reasoning,
                     created_at, started_at, completed_at, next_retry_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    attempts = excluded.attempts,
                    error = excluded.error,
                    reasoning = COALESCE(excluded.reasoning, reasoning_jobs.reasoning),
                    started_at = excluded.started_at,
                    completed_at = excluded.completed_at,
                    next_retry_at = excluded.next_retry_at
                """,
                params,
            ),
        )

    async def load_jobs(self, statuses: Iterable[JobStatus]) -> list[ReasoningJob]:
        values = [JobStatus(s).value for s in statuses]
        if not values:
            return []
        placeholders = ", ".join("?" for _ in values)
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT * FROM reasoning_jobs WHERE status IN ({placeholders}) ORDER BY created_at",
            *values,
        )
        return [
            ReasoningJob(
                id=r["id"],
                execution_id=r["execution_id"],
                step_name=r["step_name"],
                attempt=r["attempts"],
                status=JobStatus(r["status"]),
                created_at=_parse_ts(r["created_at"]),
                started_at=_parse_ts(r["started_at"]),
                completed_at=_parse_ts(r["completed_at"]),
                error=r["error"],
                next_retry_at=_parse_ts(r["next_retry_at"]),
            )
            for r in rows
        ]

    async def get_job_reasoning(self, job_id: str) -> str | None:
        rows = await asyncio.to_thread(
            self._fetchall, "SELECT reasoning FROM reasoning_jobs WHERE id = ?", job_id
        )
        return rows[0]["reasoning"] if rows else None

    def close(self) -> None:
        self._conn.close()
