"""State transition tests for generation jobs.

Transitions are applied by the repository's conditional writes, which take
their allowed source statuses from the model's transition table:
- queued → running → succeeded / queued (retry) / failed
- Terminal states cannot be left
- A job cannot be persisted as succeeded without a version
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy import update

from afroverse.models.generation import (
    ALLOWED_TRANSITIONS,
    GenerationJob,
    GenerationVersion,
    InvariantViolation,
    JobStatus,
    sources_for,
)
from afroverse.repositories.generation_job import GenerationJobRepository
from conftest import LEASE, add_version, load_job

NOW = datetime(2026, 3, 14, 9, 0, 0)
ERROR = {"code": "invalid_input", "message": "bad aspect", "retryable": False}


def test_terminal_states_are_never_a_source():
    for target, sources in ALLOWED_TRANSITIONS.items():
        assert JobStatus.SUCCEEDED not in sources, target
        assert JobStatus.FAILED not in sources, target


def test_only_running_jobs_can_finish():
    assert sources_for(JobStatus.SUCCEEDED) == {JobStatus.RUNNING}
    assert sources_for(JobStatus.FAILED) == {JobStatus.RUNNING}
    assert sources_for(JobStatus.QUEUED) == {JobStatus.RUNNING}


@pytest.mark.asyncio
@pytest.mark.parametrize("terminal", [JobStatus.SUCCEEDED, JobStatus.FAILED])
async def test_terminal_jobs_cannot_be_reclaimed(session_factory, make_job, clock, terminal):
    job_id = await make_job(attempts=1)
    await add_version(session_factory, job_id, "v1", 1)
    async with session_factory() as session:
        await session.execute(
            update(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .values(status=terminal)
        )
        await session.commit()

    async with session_factory() as session:
        repo = GenerationJobRepository(session)
        assert not await repo.try_acquire_lock(job_id, "v2", "exec-2", clock(), LEASE)
        await session.commit()

    job = await load_job(session_factory, job_id)
    assert job.status == terminal
    assert job.attempts == 1


@pytest.mark.asyncio
async def test_queued_job_cannot_fail_without_running(session_factory, make_job, clock):
    job_id = await make_job(locked_by="exec-1", locked_at=clock())

    async with session_factory() as session:
        repo = GenerationJobRepository(session)
        assert not await repo.record_failure(
            job_id, "v1", "exec-1", JobStatus.FAILED, ERROR, None, [], clock()
        )
        await session.commit()

    assert (await load_job(session_factory, job_id)).status == JobStatus.QUEUED


@pytest.mark.asyncio
async def test_running_job_fails_terminally(session_factory, make_job, clock):
    job_id = await make_job()

    async with session_factory() as session:
        repo = GenerationJobRepository(session)
        assert await repo.try_acquire_lock(job_id, "v1", "exec-1", clock(), LEASE)
        assert await repo.record_failure(
            job_id, "v1", "exec-1", JobStatus.FAILED, ERROR, None, [], clock()
        )
        await session.commit()

    job = await load_job(session_factory, job_id)
    assert job.status == JobStatus.FAILED
    assert job.error_data == ERROR
    assert job.locked_by is None and job.locked_at is None


def test_retry_gate():
    retry_after = NOW + timedelta(minutes=2)
    job = GenerationJob(owner_id=None, retry_after=retry_after)  # type: ignore[arg-type]

    assert not job.retry_gate_open(NOW)
    assert job.retry_gate_open(NOW + timedelta(minutes=2))

    job.retry_after = None
    assert job.retry_gate_open(NOW)


def test_latest_version_is_last_by_position():
    job = GenerationJob(owner_id=None)  # type: ignore[arg-type]
    assert job.latest_version is None

    job.versions.append(GenerationVersion(version_id="v1", position=1, artifact_refs={}))
    job.versions.append(GenerationVersion(version_id="v2", position=2, artifact_refs={}))

    assert job.latest_version.version_id == "v2"


@pytest.mark.asyncio
async def test_succeeded_without_versions_is_rejected_on_flush(session_factory, owner):
    """The invariant holds for ORM writes as well as for the conditional updates."""
    job = GenerationJob(owner_id=owner.id, status=JobStatus.SUCCEEDED)

    async with session_factory() as session:
        session.add(job)
        with pytest.raises(InvariantViolation):
            await session.flush()


@pytest.mark.asyncio
async def test_conditional_succeeded_write_requires_a_version(session_factory, make_job, clock):
    """The repository's finalize statement refuses a job without versions."""
    job_id = await make_job()

    async with session_factory() as session:
        repo = GenerationJobRepository(session)
        assert await repo.try_acquire_lock(job_id, "v1", "exec-1", clock(), timedelta(minutes=15))
        assert not await repo.mark_succeeded(job_id, "exec-1", [], clock())
        await session.commit()

        job = await repo.get_by_id(job_id)

    assert job.status == JobStatus.RUNNING
