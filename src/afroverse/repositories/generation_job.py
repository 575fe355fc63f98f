"""GenerationJob repository for the Afroverse backend.

Provides data access for generation jobs and the conditional writes that
coordinate concurrent executors. Every state change here is a single
``UPDATE ... WHERE <precondition>`` (or ``INSERT`` guarded by a unique
constraint); the affected row count tells the caller whether it won.
"""

from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import and_, exists, func, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from afroverse.models.generation import (
    GenerationJob,
    GenerationVersion,
    JobKind,
    JobStatus,
    sources_for,
)
from afroverse.services.exceptions import MAX_RETRIES_EXCEEDED


class GenerationJobRepository:
    """Repository for GenerationJob entities.

    Methods include the lock manager (compare-and-swap on the job row), the
    idempotency guard, the conditional version append and the recovery scan
    queries.
    """

    def __init__(self, session: AsyncSession):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy async session for database operations
        """
        self.session = session

    async def get_by_id(self, job_id: UUID) -> GenerationJob | None:
        """Retrieve job by UUID, always reflecting the current row.

        Args:
            job_id: Job's unique identifier

        Returns:
            GenerationJob with versions loaded if found, None otherwise
        """
        result = await self.session.execute(
            select(GenerationJob)
            .where(GenerationJob.id == job_id)  # type: ignore[arg-type]
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def add(self, job: GenerationJob) -> GenerationJob:
        """Persist new job to database.

        Args:
            job: GenerationJob entity to persist

        Returns:
            Persisted job with generated ID
        """
        self.session.add(job)
        await self.session.flush()
        return job

    async def count_active_for_owner(self, owner_id: UUID) -> int:
        """Count queued or running jobs belonging to an owner."""
        result = await self.session.execute(
            select(func.count(GenerationJob.id)).where(  # type: ignore[arg-type]
                GenerationJob.owner_id == owner_id,  # type: ignore[arg-type]
                GenerationJob.status.in_([JobStatus.QUEUED, JobStatus.RUNNING]),  # type: ignore[attr-defined]
            )
        )
        return result.scalar() or 0

    async def version_exists(self, job_id: UUID, version_id: str) -> bool:
        """Idempotency guard: check whether a version id was already appended.

        Read-only; takes no locks.

        Args:
            job_id: Job's unique identifier
            version_id: Requested version id (e.g. "v1")

        Returns:
            True if the job already has a version with this id
        """
        result = await self.session.execute(
            select(
                exists().where(
                    GenerationVersion.job_id == job_id,  # type: ignore[arg-type]
                    GenerationVersion.version_id == version_id,  # type: ignore[arg-type]
                )
            )
        )
        return bool(result.scalar())

    async def try_acquire_lock(
        self,
        job_id: UUID,
        version_id: str,
        execution_id: str,
        now: datetime,
        lease: timedelta,
    ) -> bool:
        """Atomically claim a job for one execution.

        Single conditional update. The job is available when:
        - status is queued or running (terminal jobs are never reclaimed)
        - locked_at is null or older than the lease
        - the requested version id has not been appended
        - retry_after is null or due
        - attempts is below max_attempts

        On success the same statement sets status=running, lock fields,
        last_attempt_at, clears retry_after and increments attempts.
        A losing attempt changes nothing.

        Args:
            job_id: Job's unique identifier
            version_id: Version id this execution intends to append
            execution_id: Opaque identifier of the claiming execution
            now: Current time from the caller's clock
            lease: Lock lease duration

        Returns:
            True if this execution now holds the lock
        """
        lease_cutoff = now - lease
        version_taken = exists().where(
            GenerationVersion.job_id == job_id,  # type: ignore[arg-type]
            GenerationVersion.version_id == version_id,  # type: ignore[arg-type]
        )
        result = await self.session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.status.in_(list(sources_for(JobStatus.RUNNING))),  # type: ignore[attr-defined]
                or_(
                    GenerationJob.locked_at.is_(None),  # type: ignore[union-attr]
                    GenerationJob.locked_at < lease_cutoff,  # type: ignore[operator]
                ),
                or_(
                    GenerationJob.retry_after.is_(None),  # type: ignore[union-attr]
                    GenerationJob.retry_after <= now,  # type: ignore[operator]
                ),
                GenerationJob.attempts < GenerationJob.max_attempts,  # type: ignore[arg-type]
                ~version_taken,
            )
            .values(
                status=JobStatus.RUNNING,
                locked_by=execution_id,
                locked_at=now,
                attempts=GenerationJob.attempts + 1,
                last_attempt_at=now,
                retry_after=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def append_version(
        self,
        job_id: UUID,
        version_id: str,
        artifact_refs: dict[str, str],
        provider_request_id: str | None,
        now: datetime,
    ) -> bool:
        """Conditionally append a version.

        The version's position is computed from the current version count in
        the same INSERT statement. Unique constraints on (job_id, version_id)
        and (job_id, position) reject a second append for the same id or the
        same slot; that rejection is reported as False and the session's
        transaction is rolled back. Must be the first write of its transaction.

        Args:
            job_id: Job's unique identifier
            version_id: Version id to append
            artifact_refs: Blob refs of the stored outputs, keyed by variant
            provider_request_id: Provider prediction id that produced the output
            now: Creation timestamp

        Returns:
            True if the version was appended, False if another execution won
        """
        next_position = (
            select(func.count(GenerationVersion.id))  # type: ignore[arg-type]
            .where(GenerationVersion.job_id == job_id)  # type: ignore[arg-type]
            .scalar_subquery()
            + 1
        )
        try:
            await self.session.execute(
                insert(GenerationVersion).values(
                    id=uuid4(),
                    job_id=job_id,
                    version_id=version_id,
                    position=next_position,
                    artifact_refs=artifact_refs,
                    provider_request_id=provider_request_id,
                    created_at=now,
                )
            )
        except IntegrityError:
            await self.session.rollback()
            return False
        return True

    async def mark_succeeded(
        self,
        job_id: UUID,
        execution_id: str,
        provider_request_ids: list[str],
        now: datetime,
    ) -> bool:
        """Finalize a job held by ``execution_id`` as succeeded and release its lock.

        Guarded so it cannot apply to a job without versions or to a job whose
        lock has since been taken by another execution.

        Returns:
            True if the job row was updated
        """
        has_version = exists().where(GenerationVersion.job_id == job_id)  # type: ignore[arg-type]
        result = await self.session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.locked_by == execution_id,  # type: ignore[arg-type]
                GenerationJob.status.in_(list(sources_for(JobStatus.SUCCEEDED))),  # type: ignore[attr-defined]
                has_version,
            )
            .values(
                status=JobStatus.SUCCEEDED,
                locked_by=None,
                locked_at=None,
                retry_after=None,
                error_data=None,
                provider_request_ids=provider_request_ids,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def record_failure(
        self,
        job_id: UUID,
        version_id: str,
        execution_id: str,
        status: JobStatus,
        error: dict,
        retry_after: datetime | None,
        provider_request_ids: list[str],
        now: datetime,
    ) -> bool:
        """Write the outcome of a failed attempt and release the lock.

        Refused when ``version_id`` has already been appended, e.g. by a stale
        execution that finished after this one took over its lock.

        Args:
            job_id: Job's unique identifier
            version_id: Version id the failed attempt was producing
            execution_id: Execution that must still hold the lock
            status: queued (retry scheduled) or failed (terminal)
            error: Error payload {code, message, retryable}
            retry_after: Next eligible attempt time, None for terminal failures
            provider_request_ids: Full provider request id log
            now: Failure timestamp

        Returns:
            True if the job row was updated
        """
        version_taken = exists().where(
            GenerationVersion.job_id == job_id,  # type: ignore[arg-type]
            GenerationVersion.version_id == version_id,  # type: ignore[arg-type]
        )
        result = await self.session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.locked_by == execution_id,  # type: ignore[arg-type]
                GenerationJob.status.in_(list(sources_for(status))),  # type: ignore[attr-defined]
                ~version_taken,
            )
            .values(
                status=status,
                locked_by=None,
                locked_at=None,
                retry_after=retry_after,
                error_data=error,
                provider_request_ids=provider_request_ids,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def release_lock(self, job_id: UUID, execution_id: str, now: datetime) -> bool:
        """Clear lock fields if ``execution_id`` still holds them.

        Status is left unchanged; a running job without a lock is picked up by
        the recovery scan.
        """
        result = await self.session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.id == job_id,  # type: ignore[arg-type]
                GenerationJob.locked_by == execution_id,  # type: ignore[arg-type]
            )
            .values(locked_by=None, locked_at=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount > 0  # type: ignore[attr-defined]

    async def find_recovery_candidates(
        self, now: datetime, lease: timedelta, limit: int = 100
    ) -> list[tuple[UUID, int, JobKind]]:
        """Retrieve jobs due for retry or holding orphaned locks.

        Query explanation:
        - queued AND (retry_after IS NULL OR retry_after <= now): due for retry
        - running AND (locked_at IS NULL OR locked_at < now - lease): orphaned
        - attempts < max_attempts: still acquirable
        - ORDER BY updated_at ASC: longest-waiting first
        - LIMIT: bounded batch per sweep

        Args:
            now: Current time
            lease: Lock lease duration
            limit: Maximum number of jobs to return (default: 100)

        Returns:
            List of (job id, current version count, job kind)
        """
        lease_cutoff = now - lease
        version_count = (
            select(func.count(GenerationVersion.id))  # type: ignore[arg-type]
            .where(GenerationVersion.job_id == GenerationJob.id)  # type: ignore[arg-type]
            .correlate(GenerationJob)
            .scalar_subquery()
        )
        result = await self.session.execute(
            select(GenerationJob.id, version_count, GenerationJob.kind)
            .where(
                GenerationJob.attempts < GenerationJob.max_attempts,  # type: ignore[arg-type]
                or_(
                    and_(
                        GenerationJob.status == JobStatus.QUEUED,  # type: ignore[arg-type]
                        or_(
                            GenerationJob.retry_after.is_(None),  # type: ignore[union-attr]
                            GenerationJob.retry_after <= now,  # type: ignore[operator]
                        ),
                    ),
                    and_(
                        GenerationJob.status == JobStatus.RUNNING,  # type: ignore[arg-type]
                        or_(
                            GenerationJob.locked_at.is_(None),  # type: ignore[union-attr]
                            GenerationJob.locked_at < lease_cutoff,  # type: ignore[operator]
                        ),
                    ),
                ),
            )
            .order_by(GenerationJob.updated_at.asc())  # type: ignore[attr-defined]
            .limit(limit)
        )
        return [(row[0], row[1], row[2]) for row in result.all()]

    async def reap_exhausted(self, now: datetime, lease: timedelta) -> int:
        """Fail orphaned running jobs that have no attempts left.

        A job whose execution crashed on its last attempt can never be
        reacquired (attempts >= max_attempts); mark it failed with
        max_retries_exceeded instead of leaving it running forever.

        Returns:
            Number of jobs marked failed
        """
        lease_cutoff = now - lease
        result = await self.session.execute(
            update(GenerationJob)
            .where(
                GenerationJob.status.in_(list(sources_for(JobStatus.FAILED))),  # type: ignore[attr-defined]
                GenerationJob.attempts >= GenerationJob.max_attempts,  # type: ignore[arg-type]
                or_(
                    GenerationJob.locked_at.is_(None),  # type: ignore[union-attr]
                    GenerationJob.locked_at < lease_cutoff,  # type: ignore[operator]
                ),
            )
            .values(
                status=JobStatus.FAILED,
                locked_by=None,
                locked_at=None,
                retry_after=None,
                error_data={
                    "code": MAX_RETRIES_EXCEEDED,
                    "message": "Execution abandoned after final attempt",
                    "retryable": False,
                },
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount  # type: ignore[attr-defined]
