"""Job store factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import HireflowConfig, load_config
from .base import BaseJobStore
from .inmemory import InMemoryJobStore


def get_job_store(
    backend: Optional[str] = None, config: Optional[HireflowConfig] = None
) -> BaseJobStore:
    """Factory function to get the configured job store."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("HIREFLOW_QUEUE_BACKEND")
        or config.queue.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryJobStore()
    elif backend == "redis":
        from .redis import RedisJobStore

        redis_conf = config.queue.redis
        return RedisJobStore(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            prefix=redis_conf.prefix,
        )
    else:
        raise ValueError(f"Unsupported queue backend: {backend}")


__all__ = ["BaseJobStore", "InMemoryJobStore", "get_job_store"]
