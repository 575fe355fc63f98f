"""Lock manager tests (GenerationJobRepository.try_acquire_lock).

The lock is a single conditional UPDATE. Tests cover:
- Winner gets running status, lock fields and an attempt
- Loser leaves every field untouched
- Lease expiry makes a held lock reclaimable
- Version guard, retry gate, attempt budget and terminal status block acquisition
"""

from datetime import timedelta

import pytest

from afroverse.models.generation import JobStatus
from afroverse.repositories.generation_job import GenerationJobRepository
from conftest import LEASE, add_version, load_job


async def _acquire(session_factory, job_id, execution_id, now, version_id="v1") -> bool:
    async with session_factory() as session:
        acquired = await GenerationJobRepository(session).try_acquire_lock(
            job_id, version_id, execution_id, now, LEASE
        )
        await session.commit()
    return acquired


def _snapshot(job) -> dict:
    return job.model_dump(exclude={"versions"})


@pytest.mark.asyncio
async def test_acquire_sets_lock_fields(session_factory, make_job, clock):
    job_id = await make_job(retry_after=clock() - timedelta(seconds=1))

    assert await _acquire(session_factory, job_id, "exec-a", clock())

    job = await load_job(session_factory, job_id)
    assert job.status == JobStatus.RUNNING
    assert job.locked_by == "exec-a"
    assert job.locked_at == clock()
    assert job.last_attempt_at == clock()
    assert job.attempts == 1
    assert job.retry_after is None


@pytest.mark.asyncio
async def test_second_acquire_loses_and_changes_nothing(session_factory, make_job, clock):
    job_id = await make_job()
    assert await _acquire(session_factory, job_id, "exec-a", clock())
    before = _snapshot(await load_job(session_factory, job_id))

    clock.advance(timedelta(minutes=5))
    assert not await _acquire(session_factory, job_id, "exec-b", clock())

    assert _snapshot(await load_job(session_factory, job_id)) == before


@pytest.mark.asyncio
async def test_stale_lock_is_reclaimed_after_lease(session_factory, make_job, clock):
    job_id = await make_job()
    assert await _acquire(session_factory, job_id, "exec-dead", clock())

    clock.advance(LEASE)
    assert not await _acquire(session_factory, job_id, "exec-b", clock())

    clock.advance(timedelta(seconds=1))
    assert await _acquire(session_factory, job_id, "exec-b", clock())

    job = await load_job(session_factory, job_id)
    assert job.locked_by == "exec-b"
    assert job.attempts == 2


@pytest.mark.asyncio
async def test_acquire_refused_when_version_exists(session_factory, make_job, clock):
    job_id = await make_job()
    await add_version(session_factory, job_id, "v1", 1)

    assert not await _acquire(session_factory, job_id, "exec-a", clock(), version_id="v1")
    assert await _acquire(session_factory, job_id, "exec-a", clock(), version_id="v2")


@pytest.mark.asyncio
async def test_acquire_refused_before_retry_after(session_factory, make_job, clock):
    job_id = await make_job(retry_after=clock() + timedelta(seconds=30))

    assert not await _acquire(session_factory, job_id, "exec-a", clock())

    clock.advance(timedelta(seconds=30))
    assert await _acquire(session_factory, job_id, "exec-a", clock())


@pytest.mark.asyncio
async def test_acquire_refused_when_attempts_spent(session_factory, make_job, clock):
    job_id = await make_job(attempts=3, max_attempts=3)

    assert not await _acquire(session_factory, job_id, "exec-a", clock())


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [JobStatus.SUCCEEDED, JobStatus.FAILED])
async def test_acquire_refused_for_terminal_jobs(session_factory, make_job, clock, status):
    job_id = await make_job()
    if status == JobStatus.SUCCEEDED:
        await add_version(session_factory, job_id, "v1", 1)
    async with session_factory() as session:
        job = await GenerationJobRepository(session).get_by_id(job_id)
        job.status = status
        await session.commit()

    assert not await _acquire(session_factory, job_id, "exec-a", clock(), version_id="v2")


@pytest.mark.asyncio
async def test_release_lock_only_by_holder(session_factory, make_job, clock):
    job_id = await make_job()
    assert await _acquire(session_factory, job_id, "exec-a", clock())

    async with session_factory() as session:
        repo = GenerationJobRepository(session)
        assert not await repo.release_lock(job_id, "exec-b", clock())
        assert await repo.release_lock(job_id, "exec-a", clock())
        await session.commit()

    job = await load_job(session_factory, job_id)
    assert job.status == JobStatus.RUNNING
    assert job.locked_by is None and job.locked_at is None
