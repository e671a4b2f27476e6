"""In-memory job store for tests and single-process deployments."""

from __future__ import annotations

import asyncio
import itertools
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from ..jobs import ActionJob, JobStatus
from .base import BaseJobStore


class InMemoryJobStore(BaseJobStore):
    """Simple in-process job store. Data is lost on restart."""

    def __init__(self) -> None:
        self._jobs: Dict[str, ActionJob] = {}
        self._ready: Dict[Tuple[str, str], List[Tuple[datetime, int, str]]] = {}
        self._keys: Dict[str, str] = {}
        self._seq = itertools.count()
        self._lock = asyncio.Lock()
        self._paused = False

    async def enqueue(self, job: ActionJob) -> None:
        async with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)
            entries = self._ready.setdefault((job.queue, job.lane), [])
            entries.append((job.available_at, next(self._seq), job.id))
            entries.sort()

    async def claim(self, queue: str, lane: str, now: datetime) -> Optional[ActionJob]:
        async with self._lock:
            entries = self._ready.get((queue, lane))
            if not entries or entries[0][0] > now:
                return None
            _, _, job_id = entries.pop(0)
            job = self._jobs[job_id]
            job.status = JobStatus.ACTIVE
            job.attempts += 1
            job.started_at = now
            return job.model_copy(deep=True)

    async def save(self, job: ActionJob) -> None:
        async with self._lock:
            self._jobs[job.id] = job.model_copy(deep=True)

    async def get(self, job_id: str) -> Optional[ActionJob]:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job else None

    async def counts(
        self, queue: str, lanes: Iterable[str], now: datetime
    ) -> Dict[str, int]:
        result = {status.value: 0 for status in JobStatus}
        for job in self._jobs.values():
            if job.queue != queue:
                continue
            status = job.status
            if status in (JobStatus.WAITING, JobStatus.DELAYED):
                status = JobStatus.DELAYED if job.available_at > now else JobStatus.WAITING
            result[status.value] += 1
        return result

    async def purge(self, queue: str, status: JobStatus, older_than: datetime) -> int:
        async with self._lock:
            doomed = [
                job_id
                for job_id, job in self._jobs.items()
                if job.queue == queue
                and job.status == status
                and job.finished_at is not None
                and job.finished_at < older_than
            ]
            for job_id in doomed:
                job = self._jobs.pop(job_id)
                if job.idempotency_key and self._keys.get(job.idempotency_key) == job_id:
                    del self._keys[job.idempotency_key]
            return len(doomed)

    async def reserve_key(self, key: str, job_id: str) -> Optional[str]:
        async with self._lock:
            existing = self._keys.get(key)
            if existing is not None:
                return existing
            self._keys[key] = job_id
            return None

    async def release_key(self, key: str, job_id: str) -> None:
        async with self._lock:
            if self._keys.get(key) == job_id:
                del self._keys[key]

    async def set_paused(self, paused: bool) -> None:
        self._paused = paused

    async def is_paused(self) -> bool:
        return self._paused
