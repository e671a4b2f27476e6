"""Persistence layer for workflow instances."""

from __future__ import annotations

import os
from typing import Optional

from ..config import HireflowConfig, load_config
from .inmemory import InMemoryInstanceRepository
from .repository import InstanceRepository
from .sqlite import SQLiteInstanceRepository

try:  # pragma: no cover - optional dependency
    from .postgres import PostgresInstanceRepository
except ImportError:  # pragma: no cover - optional dependency
    PostgresInstanceRepository = None  # type: ignore

_repository_instance: InstanceRepository | None = None


def get_repository(
    database_url: Optional[str] = None, config: Optional[HireflowConfig] = None
) -> InstanceRepository:
    """Factory function to obtain an instance repository.

    The backend is selected based on ``database_url`` which can be provided
    explicitly, via environment variable ``HIREFLOW_DATABASE_URL`` or
    ``DATABASE_URL``, or from loaded configuration. When no database is
    configured, an in-memory repository is returned.
    """

    global _repository_instance
    if _repository_instance is not None and database_url is None and config is None:
        return _repository_instance

    config = config or load_config()
    database_url = (
        database_url
        or os.getenv("HIREFLOW_DATABASE_URL")
        or os.getenv("DATABASE_URL")
        or config.database_url
    )

    if not database_url:
        _repository_instance = InMemoryInstanceRepository()
        return _repository_instance

    if database_url.startswith("sqlite://"):
        path = database_url.replace("sqlite://", "", 1)
        _repository_instance = SQLiteInstanceRepository(path)
    elif database_url.startswith("postgres://") or database_url.startswith(
        "postgresql://"
    ):
        if PostgresInstanceRepository is None:
            raise RuntimeError("Postgres support not available")
        _repository_instance = PostgresInstanceRepository(database_url)
    else:
        raise ValueError(f"Unsupported database backend: {database_url}")

    return _repository_instance


__all__ = [
    "InstanceRepository",
    "InMemoryInstanceRepository",
    "SQLiteInstanceRepository",
    "PostgresInstanceRepository",
    "get_repository",
]
