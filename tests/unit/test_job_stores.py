"""Job store tests."""

import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio

from hireflow.jobs import ActionJob, JobStatus
from hireflow.queues.inmemory import InMemoryJobStore

NOW = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


def _job(lane="execute-action", delay=0, **overrides) -> ActionJob:
    data = dict(
        queue="workflow",
        lane=lane,
        payload={"action_type": "send_email"},
        created_at=NOW,
        available_at=NOW + timedelta(seconds=delay),
    )
    data.update(overrides)
    return ActionJob(**data)


async def _redis_store_or_skip():
    from hireflow.queues.redis import RedisJobStore

    store = RedisJobStore(prefix=f"hireflow-test-{uuid.uuid4()}")
    try:
        await store.connect()
    except Exception:
        pytest.skip("Redis server not available")
    return store


@pytest_asyncio.fixture(params=["memory", "redis"])
async def store(request):
    if request.param == "memory":
        yield InMemoryJobStore()
        return
    store = await _redis_store_or_skip()
    yield store
    await store.disconnect()


@pytest.mark.asyncio
async def test_claim_takes_ready_jobs_in_order(store):
    first = _job(delay=-2)
    second = _job(delay=-1)
    later = _job(delay=30)
    for job in (later, first, second):
        await store.enqueue(job)

    claimed = await store.claim("workflow", "execute-action", NOW)
    assert claimed.id == first.id
    assert claimed.status == JobStatus.ACTIVE
    assert claimed.attempts == 1

    assert (await store.claim("workflow", "execute-action", NOW)).id == second.id
    assert await store.claim("workflow", "execute-action", NOW) is None
    assert (
        await store.claim("workflow", "execute-action", NOW + timedelta(seconds=30))
    ).id == later.id


@pytest.mark.asyncio
async def test_counts_split_waiting_and_delayed(store):
    await store.enqueue(_job())
    await store.enqueue(_job(delay=60))
    claimed_source = _job()
    await store.enqueue(claimed_source)
    await store.claim("workflow", "execute-action", NOW)

    counts = await store.counts("workflow", ["execute-action"], NOW)
    assert counts["waiting"] == 1
    assert counts["delayed"] == 1
    assert counts["active"] == 1
    assert counts["completed"] == 0


@pytest.mark.asyncio
async def test_purge_only_removes_old_finished_jobs(store):
    old = _job()
    recent = _job()
    for job, finished in ((old, NOW - timedelta(days=2)), (recent, NOW)):
        await store.enqueue(job)
        claimed = await store.claim("workflow", "execute-action", NOW)
        claimed.status = JobStatus.COMPLETED
        claimed.finished_at = finished
        await store.save(claimed)

    removed = await store.purge("workflow", JobStatus.COMPLETED, NOW - timedelta(days=1))

    assert removed == 1
    assert await store.get(old.id) is None
    assert (await store.get(recent.id)).status == JobStatus.COMPLETED


@pytest.mark.asyncio
async def test_reserve_key_returns_first_owner(store):
    assert await store.reserve_key("k", "job-1") is None
    assert await store.reserve_key("k", "job-2") == "job-1"


@pytest.mark.asyncio
async def test_pause_flag(store):
    assert await store.is_paused() is False
    await store.set_paused(True)
    assert await store.is_paused() is True
    await store.set_paused(False)
    assert await store.is_paused() is False


@pytest.mark.asyncio
async def test_release_key_only_unbinds_its_owner(store):
    await store.reserve_key("k", "job-1")

    await store.release_key("k", "job-2")
    assert await store.reserve_key("k", "job-3") == "job-1"

    await store.release_key("k", "job-1")
    assert await store.reserve_key("k", "job-3") is None


@pytest.mark.asyncio
async def test_purge_releases_idempotency_keys(store):
    job = _job(idempotency_key="welcome-C1")
    assert await store.reserve_key("welcome-C1", job.id) is None
    await store.enqueue(job)
    claimed = await store.claim("workflow", "execute-action", NOW)
    claimed.status = JobStatus.COMPLETED
    claimed.finished_at = NOW - timedelta(days=2)
    await store.save(claimed)

    assert await store.purge("workflow", JobStatus.COMPLETED, NOW) == 1

    assert await store.reserve_key("welcome-C1", "job-2") is None
