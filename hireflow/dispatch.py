"""Action queue dispatcher: named queues, worker lanes, retries and retention."""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple, Type

from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from .config import QueueSettings, QueueSpec
from .contracts import utcnow
from .errors import (
    ConfigurationError,
    JobValidationError,
    NotFoundError,
    UnknownQueueError,
    ValidationError,
)
from .jobs import (
    ActionJob,
    BackoffPolicy,
    EmailPayload,
    JobPriority,
    JobStatus,
    NotificationPayload,
    SchedulePayload,
    WorkflowActionPayload,
)
from .queues import BaseJobStore, InMemoryJobStore
from .utils.retry import next_attempt_at

logger = logging.getLogger(__name__)

JobHandler = Callable[[Any, ActionJob], Awaitable[Any]]

WORKFLOW_QUEUE = "workflow"
EMAIL_QUEUE = "email"
SCHEDULE_QUEUE = "schedule"
NOTIFICATION_QUEUE = "notification"

PAYLOAD_MODELS: Dict[str, Type[BaseModel]] = {
    WORKFLOW_QUEUE: WorkflowActionPayload,
    EMAIL_QUEUE: EmailPayload,
    SCHEDULE_QUEUE: SchedulePayload,
    NOTIFICATION_QUEUE: NotificationPayload,
}

EMAIL_LANES: Dict[JobPriority, str] = {
    JobPriority.HIGH: "high-priority",
    JobPriority.NORMAL: "normal-priority",
    JobPriority.LOW: "low-priority",
}
WORKFLOW_LANE = "execute-action"
SCHEDULE_LANE = "create-schedule"
NOTIFICATION_LANE = "send-notification"


def _jsonable(result: Any) -> Any:
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if result is None or isinstance(result, (bool, int, float, str, dict, list)):
        return result
    return str(result)


class ActionQueueDispatcher:
    """Service that owns the action queues and their worker pools.

    Jobs are persisted in a :class:`BaseJobStore`. Each queue has ordered
    lanes with their own concurrency limit; a queue's worker loop always
    claims from the first lane that has both capacity and a ready job.
    """

    def __init__(
        self,
        store: Optional[BaseJobStore] = None,
        settings: Optional[QueueSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._store = store or InMemoryJobStore()
        self._settings = settings or QueueSettings()
        self._clock = clock or utcnow
        self._processors: Dict[Tuple[str, str], JobHandler] = {}
        self._active: Dict[Tuple[str, str], int] = defaultdict(int)
        self._closed = False
        self._workers: List[asyncio.Task] = []
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def store(self) -> BaseJobStore:
        return self._store

    @property
    def settings(self) -> QueueSettings:
        return self._settings

    async def is_paused(self) -> bool:
        return await self._store.is_paused()

    def queue_spec(self, queue: str) -> QueueSpec:
        try:
            return self._settings.queues[queue]
        except KeyError:
            raise UnknownQueueError(f"Unknown queue: {queue}") from None

    def register_processor(self, queue: str, lane: str, handler: JobHandler) -> None:
        """Attach ``handler`` to one lane of ``queue``."""
        spec = self.queue_spec(queue)
        if lane not in spec.lanes:
            raise UnknownQueueError(f"Unknown lane {lane!r} for queue {queue}")
        self._processors[(queue, lane)] = handler

    def has_processor(self, queue: str, lane: str) -> bool:
        return (queue, lane) in self._processors

    # ------------------------------------------------------------------
    # Enqueueing
    async def _add(
        self,
        queue: str,
        lane: str,
        payload: BaseModel,
        priority: JobPriority = JobPriority.NORMAL,
        max_attempts: Optional[int] = None,
        backoff: Optional[BackoffPolicy] = None,
        delay_ms: int = 0,
        idempotency_key: Optional[str] = None,
    ) -> str:
        spec = self.queue_spec(queue)
        if lane not in spec.lanes:
            raise UnknownQueueError(f"Unknown lane {lane!r} for queue {queue}")
        now = self._clock()
        job = ActionJob(
            queue=queue,
            lane=lane,
            payload=payload.model_dump(mode="json"),
            priority=priority,
            status=JobStatus.DELAYED if delay_ms > 0 else JobStatus.WAITING,
            max_attempts=max_attempts or spec.attempts,
            backoff=backoff or spec.backoff,
            created_at=now,
            available_at=now + timedelta(milliseconds=delay_ms),
            idempotency_key=idempotency_key,
        )
        if idempotency_key:
            existing = await self._store.reserve_key(idempotency_key, job.id)
            if existing is not None:
                logger.info(
                    f"Skipping duplicate {queue} job for idempotency key {idempotency_key}; "
                    f"existing job {existing}"
                )
                return existing
            try:
                await self._store.enqueue(job)
            except Exception:
                await self._store.release_key(idempotency_key, job.id)
                raise
        else:
            await self._store.enqueue(job)
        logger.info(f"Added {queue}/{lane} job {job.id}")
        return job.id

    @staticmethod
    def _validate(queue: str, data: Any) -> BaseModel:
        model = PAYLOAD_MODELS[queue]
        if isinstance(data, model):
            return data
        try:
            return model.model_validate(data)
        except PydanticValidationError as e:
            raise JobValidationError(f"Invalid {queue} job payload: {e}") from e

    async def add_workflow_action_job(self, data: Any, **options: Any) -> str:
        payload = self._validate(WORKFLOW_QUEUE, data)
        return await self._add(WORKFLOW_QUEUE, WORKFLOW_LANE, payload, **options)

    async def add_email_job(self, data: Any, **options: Any) -> str:
        payload = self._validate(EMAIL_QUEUE, data)
        return await self._add(
            EMAIL_QUEUE,
            EMAIL_LANES[payload.priority],
            payload,
            priority=payload.priority,
            **options,
        )

    async def add_schedule_job(self, data: Any, **options: Any) -> str:
        payload = self._validate(SCHEDULE_QUEUE, data)
        return await self._add(SCHEDULE_QUEUE, SCHEDULE_LANE, payload, **options)

    async def add_notification_job(self, data: Any, **options: Any) -> str:
        payload = self._validate(NOTIFICATION_QUEUE, data)
        return await self._add(NOTIFICATION_QUEUE, NOTIFICATION_LANE, payload, **options)

    async def add_delayed_job(
        self, queue: str, data: Any, delay_ms: int, **options: Any
    ) -> str:
        """Enqueue a job on ``queue`` that becomes ready after ``delay_ms``."""
        adders = {
            WORKFLOW_QUEUE: self.add_workflow_action_job,
            EMAIL_QUEUE: self.add_email_job,
            SCHEDULE_QUEUE: self.add_schedule_job,
            NOTIFICATION_QUEUE: self.add_notification_job,
        }
        if queue not in adders:
            raise UnknownQueueError(f"Unknown queue: {queue}")
        return await adders[queue](data, delay_ms=delay_ms, **options)

    async def get_job(self, job_id: str) -> Optional[ActionJob]:
        return await self._store.get(job_id)

    # ------------------------------------------------------------------
    # Execution
    async def _claim_next(self, queue: str, respect_capacity: bool = True) -> Optional[ActionJob]:
        spec = self.queue_spec(queue)
        now = self._clock()
        for lane, concurrency in spec.lanes.items():
            if respect_capacity and self._active[(queue, lane)] >= concurrency:
                continue
            job = await self._store.claim(queue, lane, now)
            if job is not None:
                self._active[(queue, lane)] += 1
                return job
        return None

    async def _execute(self, job: ActionJob) -> ActionJob:
        """Run a claimed job and record its outcome."""
        try:
            handler = self._processors.get((job.queue, job.lane))
            if handler is None:
                raise ConfigurationError(
                    f"No processor registered for {job.queue}/{job.lane}"
                )
            payload = PAYLOAD_MODELS[job.queue].model_validate(job.payload)
            result = await handler(payload, job)
            job.status = JobStatus.COMPLETED
            job.finished_at = self._clock()
            job.result = _jsonable(result)
            job.last_error = None
            await self._store.save(job)
        except Exception as exc:
            try:
                await self._record_failure(job, exc)
            except Exception:
                logger.exception(
                    f"Could not record failure of job {job.id} on {job.queue}/{job.lane}"
                )
        else:
            logger.info(
                f"Job {job.id} on {job.queue}/{job.lane} completed after {job.attempts} attempt(s)"
            )
        finally:
            self._active[(job.queue, job.lane)] -= 1
        return job

    async def _record_failure(self, job: ActionJob, exc: Exception) -> None:
        now = self._clock()
        job.last_error = f"{type(exc).__name__}: {exc}"
        retryable = not isinstance(
            exc, (ValidationError, NotFoundError, PydanticValidationError)
        )
        job.result = None
        if retryable and job.attempts < job.max_attempts:
            job.status = JobStatus.DELAYED
            job.finished_at = None
            job.available_at = next_attempt_at(job.backoff, job.attempts, now)
            await self._store.enqueue(job)
            logger.warning(
                f"Job {job.id} on {job.queue}/{job.lane} failed attempt "
                f"{job.attempts}/{job.max_attempts}: {job.last_error}; retrying at "
                f"{job.available_at.isoformat()}"
            )
            return
        job.status = JobStatus.FAILED
        job.finished_at = now
        await self._store.save(job)
        logger.error(
            f"Job {job.id} on {job.queue}/{job.lane} failed permanently after "
            f"{job.attempts} attempt(s): {job.last_error}",
            exc_info=exc,
        )

    async def run_once(self, queue: str) -> Optional[ActionJob]:
        """Claim and execute one ready job of ``queue`` inline.

        Returns ``None`` when nothing is ready or the queues are paused.
        """
        if await self._store.is_paused():
            return None
        job = await self._claim_next(queue, respect_capacity=False)
        if job is None:
            return None
        return await self._execute(job)

    async def drain(self, max_jobs: int = 1000) -> int:
        """Run ready jobs on every queue inline until none are left."""
        processed = 0
        progressed = True
        while progressed and processed < max_jobs:
            progressed = False
            for queue in self._settings.queues:
                if await self.run_once(queue) is not None:
                    processed += 1
                    progressed = True
        return processed

    async def start(self) -> None:
        """Launch one worker loop per configured queue."""
        await self._store.connect()
        self._closed = False
        for queue in self._settings.queues:
            self._workers.append(
                asyncio.create_task(self._worker_loop(queue), name=f"hireflow-{queue}")
            )
        logger.info(f"Started workers for queues: {', '.join(self._settings.queues)}")

    async def _worker_loop(self, queue: str) -> None:
        interval = self._settings.poll_interval
        while not self._closed:
            try:
                if await self._store.is_paused():
                    await asyncio.sleep(interval)
                    continue
                job = await self._claim_next(queue)
            except Exception:
                logger.exception(f"Failed to claim job from {queue}")
                await asyncio.sleep(interval)
                continue
            if job is None:
                await asyncio.sleep(interval)
                continue
            task = asyncio.create_task(self._execute(job))
            self._in_flight.add(task)
            task.add_done_callback(self._in_flight.discard)

    async def run(self, lifespan: Optional[float] = None) -> None:
        """Run workers until ``lifespan`` seconds elapse (forever when ``None``)."""
        await self.start()
        try:
            if lifespan is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(lifespan)
        finally:
            await self.shutdown()

    # ------------------------------------------------------------------
    # Operations
    async def get_queue_stats(self) -> Dict[str, Dict[str, int]]:
        now = self._clock()
        return {
            queue: await self._store.counts(queue, spec.lanes.keys(), now)
            for queue, spec in self._settings.queues.items()
        }

    async def pause_queues(self) -> None:
        """Stop dequeuing. Queued jobs are kept."""
        await self._store.set_paused(True)
        logger.info("All queues paused")

    async def resume_queues(self) -> None:
        await self._store.set_paused(False)
        logger.info("All queues resumed")

    async def cleanup_queues(self) -> Dict[str, Dict[str, int]]:
        """Purge completed jobs past 24h and failed jobs past 7 days."""
        now = self._clock()
        completed_before = now - timedelta(hours=self._settings.completed_retention_hours)
        failed_before = now - timedelta(days=self._settings.failed_retention_days)
        removed: Dict[str, Dict[str, int]] = {}
        for queue in self._settings.queues:
            removed[queue] = {
                JobStatus.COMPLETED.value: await self._store.purge(
                    queue, JobStatus.COMPLETED, completed_before
                ),
                JobStatus.FAILED.value: await self._store.purge(
                    queue, JobStatus.FAILED, failed_before
                ),
            }
        logger.info(f"Queue cleanup completed: {removed}")
        return removed

    async def shutdown(self) -> None:
        """Stop worker loops, wait for in-flight jobs and close the store."""
        self._closed = True
        if self._workers:
            await asyncio.gather(*self._workers, return_exceptions=True)
            self._workers.clear()
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)
        await self._store.disconnect()
        logger.info("Queue dispatcher shut down")
