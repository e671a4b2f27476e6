"""Base job store interface backing the action queues."""

from __future__ import annotations

import abc
from datetime import datetime
from typing import Dict, Iterable, Optional

from ..jobs import ActionJob, JobStatus


class BaseJobStore(metaclass=abc.ABCMeta):
    """Abstract durable store for queued jobs.

    Jobs are indexed per ``(queue, lane)`` by the time they become ready;
    finished jobs are kept per queue until purged.
    """

    async def connect(self) -> None:
        """Open connection to the backing store (no-op by default)."""
        pass

    async def disconnect(self) -> None:
        """Close connection to the backing store (no-op by default)."""
        pass

    @abc.abstractmethod
    async def enqueue(self, job: ActionJob) -> None:
        """Persist ``job`` and make it claimable once ``available_at`` passes."""
        raise NotImplementedError

    @abc.abstractmethod
    async def claim(self, queue: str, lane: str, now: datetime) -> Optional[ActionJob]:
        """Take the earliest ready job of a lane and mark it active.

        The returned job has its ``attempts`` counter already incremented.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def save(self, job: ActionJob) -> None:
        """Persist a job that finished (completed or failed) or is active."""
        raise NotImplementedError

    @abc.abstractmethod
    async def get(self, job_id: str) -> Optional[ActionJob]:
        raise NotImplementedError

    @abc.abstractmethod
    async def counts(
        self, queue: str, lanes: Iterable[str], now: datetime
    ) -> Dict[str, int]:
        """Return job counts by state for ``queue``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def purge(self, queue: str, status: JobStatus, older_than: datetime) -> int:
        """Delete finished jobs of ``status`` that finished before ``older_than``.

        Idempotency keys bound to the deleted jobs are released with them.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def reserve_key(self, key: str, job_id: str) -> Optional[str]:
        """Bind an idempotency key to ``job_id``.

        Returns the previously bound job id when the key is already taken,
        otherwise ``None``.
        """
        raise NotImplementedError

    @abc.abstractmethod
    async def release_key(self, key: str, job_id: str) -> None:
        """Unbind an idempotency key if it still points at ``job_id``."""
        raise NotImplementedError

    @abc.abstractmethod
    async def set_paused(self, paused: bool) -> None:
        """Record whether workers should stop claiming jobs."""
        raise NotImplementedError

    @abc.abstractmethod
    async def is_paused(self) -> bool:
        raise NotImplementedError
