"""Persistence layer for execution records and reasoning jobs."""

from __future__ import annotations

from typing import Callable, Optional

from ..config import XRayConfig, load_config
from .inmemory import InMemoryStorage
from .repository import JobStore, StorageProvider
from .sqlite import SQLiteStorage


def _open_sqlite(url: str) -> StorageProvider:
    path = url.split("://", 1)[1]
    if not path:
        raise ValueError(f"SQLite URL has no database path: {url}")
    return SQLiteStorage(path)


def _open_postgres(url: str) -> StorageProvider:
    try:
        from .postgres import PostgresStorage
    except ImportError as exc:
        raise RuntimeError(
            "Postgres storage needs asyncpg; install xraytrace[postgres]"
        ) from exc
    return PostgresStorage(url)


BACKENDS: dict[str, Callable[[str], StorageProvider]] = {
    "memory": lambda url: InMemoryStorage(),
    "sqlite": _open_sqlite,
    "postgres": _open_postgres,
    "postgresql": _open_postgres,
}


def get_storage(
    database_url: Optional[str] = None, config: Optional[XRayConfig] = None
) -> StorageProvider:
    """Open the storage backend named by a database URL.

    ``database_url`` wins over ``config.database_url``; without either the
    config is read with :func:`load_config`, which already applies the
    ``XRAY_DATABASE_URL`` override. No URL means an in-memory store.

    Every backend also implements :class:`JobStore`, so the returned object
    can be passed as the queue's ``job_store`` to get crash recovery
    against the same database. Each call opens a new backend; callers that
    want one shared store keep the instance themselves.
    """
    if database_url is None:
        database_url = (config or load_config()).database_url
    if not database_url:
        return InMemoryStorage()

    scheme = database_url.partition("://")[0].lower()
    opener = BACKENDS.get(scheme)
    if opener is None:
        raise ValueError(f"Unsupported database backend: {database_url}")
    return opener(database_url)


__all__ = [
    "BACKENDS",
    "JobStore",
    "StorageProvider",
    "InMemoryStorage",
    "SQLiteStorage",
    "get_storage",
]
