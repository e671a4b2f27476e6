"""Redis job store for cross-process queues."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Iterable, Optional

import redis.asyncio as redis

from ..jobs import ActionJob, JobStatus
from .base import BaseJobStore

# Delete KEYS[1] only while it still holds ARGV[1].
_RELEASE_KEY_SCRIPT = """
if redis.call("GET", KEYS[1]) == ARGV[1] then
    return redis.call("DEL", KEYS[1])
end
return 0
"""


class RedisJobStore(BaseJobStore):
    """Redis-backed job store.

    Layout, under ``prefix``:
        ``job:<id>``                  job JSON
        ``<queue>:<lane>:ready``      sorted set of job ids scored by ready time
        ``<queue>:active``            set of claimed job ids
        ``<queue>:completed|failed``  sorted sets scored by finish time
        ``idem:<key>``                idempotency key -> job id
    """

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        prefix: str = "hireflow",
    ) -> None:
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.prefix = prefix
        self._redis: Optional[Any] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        self._redis = redis.Redis(
            host=self.host,
            port=self.port,
            db=self.db,
            password=self.password,
            decode_responses=True,
        )
        await self._redis.ping()

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._redis:
            await self._redis.aclose()
            self._redis = None

    async def _client(self) -> Any:
        if not self._redis:
            await self.connect()
        return self._redis

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix,) + parts)

    async def enqueue(self, job: ActionJob) -> None:
        client = await self._client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.set(self._key("job", job.id), job.to_json())
            pipe.srem(self._key(job.queue, "active"), job.id)
            pipe.zadd(
                self._key(job.queue, job.lane, "ready"),
                {job.id: job.available_at.timestamp()},
            )
            await pipe.execute()

    async def claim(self, queue: str, lane: str, now: datetime) -> Optional[ActionJob]:
        client = await self._client()
        ready_key = self._key(queue, lane, "ready")
        candidates = await client.zrangebyscore(
            ready_key, "-inf", now.timestamp(), start=0, num=5
        )
        for job_id in candidates:
            # Whoever removes the id from the ready set owns the job.
            if not await client.zrem(ready_key, job_id):
                continue
            raw = await client.get(self._key("job", job_id))
            if raw is None:
                continue
            job = ActionJob.from_json(raw)
            job.status = JobStatus.ACTIVE
            job.attempts += 1
            job.started_at = now
            await self.save(job)
            return job
        return None

    async def save(self, job: ActionJob) -> None:
        client = await self._client()
        async with client.pipeline(transaction=True) as pipe:
            pipe.set(self._key("job", job.id), job.to_json())
            if job.status == JobStatus.ACTIVE:
                pipe.sadd(self._key(job.queue, "active"), job.id)
            elif job.status in (JobStatus.COMPLETED, JobStatus.FAILED):
                finished = (job.finished_at or job.started_at or job.created_at).timestamp()
                pipe.srem(self._key(job.queue, "active"), job.id)
                pipe.zadd(self._key(job.queue, job.status.value), {job.id: finished})
            await pipe.execute()

    async def get(self, job_id: str) -> Optional[ActionJob]:
        client = await self._client()
        raw = await client.get(self._key("job", job_id))
        return ActionJob.from_json(raw) if raw else None

    async def counts(
        self, queue: str, lanes: Iterable[str], now: datetime
    ) -> Dict[str, int]:
        client = await self._client()
        result = {status.value: 0 for status in JobStatus}
        ts = now.timestamp()
        for lane in lanes:
            ready_key = self._key(queue, lane, "ready")
            result[JobStatus.WAITING.value] += await client.zcount(ready_key, "-inf", ts)
            result[JobStatus.DELAYED.value] += await client.zcount(
                ready_key, f"({ts}", "+inf"
            )
        result[JobStatus.ACTIVE.value] = await client.scard(self._key(queue, "active"))
        for status in (JobStatus.COMPLETED, JobStatus.FAILED):
            result[status.value] = await client.zcard(self._key(queue, status.value))
        return result

    async def purge(self, queue: str, status: JobStatus, older_than: datetime) -> int:
        client = await self._client()
        finished_key = self._key(queue, status.value)
        job_ids = await client.zrangebyscore(
            finished_key, "-inf", f"({older_than.timestamp()}"
        )
        if not job_ids:
            return 0
        raws = await client.mget([self._key("job", job_id) for job_id in job_ids])
        bound = {
            job.idempotency_key: job.id
            for job in (ActionJob.from_json(raw) for raw in raws if raw)
            if job.idempotency_key
        }
        idem_keys = [self._key("idem", key) for key in bound]
        owners = await client.mget(idem_keys) if idem_keys else []
        async with client.pipeline(transaction=True) as pipe:
            pipe.zrem(finished_key, *job_ids)
            pipe.delete(*[self._key("job", job_id) for job_id in job_ids])
            for idem_key, job_id, owner in zip(idem_keys, bound.values(), owners):
                if owner == job_id:
                    pipe.delete(idem_key)
            await pipe.execute()
        return len(job_ids)

    async def reserve_key(self, key: str, job_id: str) -> Optional[str]:
        client = await self._client()
        idem_key = self._key("idem", key)
        if await client.set(idem_key, job_id, nx=True):
            return None
        return await client.get(idem_key)

    async def release_key(self, key: str, job_id: str) -> None:
        client = await self._client()
        await client.eval(_RELEASE_KEY_SCRIPT, 1, self._key("idem", key), job_id)

    async def set_paused(self, paused: bool) -> None:
        client = await self._client()
        if paused:
            await client.set(self._key("paused"), "1")
        else:
            await client.delete(self._key("paused"))

    async def is_paused(self) -> bool:
        client = await self._client()
        return bool(await client.exists(self._key("paused")))
