"""Generation job executor.

Turns one trigger (job id + requested version id) into at most one appended
version. Any number of executors may be invoked for the same job at once;
coordination happens only through conditional writes on the job row.

## Session boundaries

Each step that touches the database opens its own session and commits before
the next step runs:

1. Guard + lock: read the job, then a single conditional UPDATE claims it.
   Committed immediately so competing executions see the claim.
2. Load: re-read the claimed job and its owner, then release the connection.
   No connection is held while the provider is working (which can take
   minutes).
3. Append + finalize: the version INSERT and the succeeded UPDATE share one
   transaction.
4. Failure: the classified outcome is written by one conditional UPDATE.

A crash between steps leaves the lock in place; the recovery scanner
reclaims it once the lease expires.
"""

import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable
from uuid import UUID

import structlog

from afroverse.core.clock import Clock, utcnow
from afroverse.models.generation import GenerationJob, JobKind
from afroverse.models.owner import Owner
from afroverse.repositories.generation_job import GenerationJobRepository
from afroverse.repositories.owner import OwnerRepository
from afroverse.services.exceptions import (
    BannedOwnerError,
    MissingPrerequisiteError,
    ProviderError,
)
from afroverse.services.generation.failures import classify_failure, decide_failure
from afroverse.services.generation.postprocess import (
    PostProcessor,
    extension_for,
    media_type,
    passthrough,
    variant_suffix,
)
from afroverse.services.generation.prompt import (
    build_refinement_prompt,
    resolve_render_options,
    validate_prompt,
)
from afroverse.services.generation.provider import GenerationProvider
from afroverse.services.storage.blob_store import BlobStore

logger = structlog.get_logger(__name__)

# Skip reasons
JOB_GONE = "job_gone"
VERSION_EXISTS = "version_exists"
RETRY_GATE = "retry_gate"
LOCK_NOT_ACQUIRED = "lock_not_acquired"
VERSION_ALREADY_APPENDED = "version_already_appended"


def new_execution_id() -> str:
    """Opaque identifier for one execution attempt."""
    return f"exec_{uuid.uuid4().hex}"


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of one ``execute`` call.

    Skips are successful outcomes: another execution owns (or already
    produced) the requested version.
    """

    success: bool
    skipped: bool = False
    reason: str | None = None
    error: str | None = None
    version_id: str | None = None

    @classmethod
    def skip(cls, reason: str) -> "ExecutionResult":
        return cls(success=True, skipped=True, reason=reason)

    def to_response(self) -> dict[str, Any]:
        """Serialize for the trigger endpoint, omitting unset fields."""
        body: dict[str, Any] = {"success": self.success}
        if self.skipped:
            body["skipped"] = True
        if self.reason:
            body["reason"] = self.reason
        if self.error:
            body["error"] = self.error
        if self.version_id:
            body["versionId"] = self.version_id
        return body


@dataclass
class _Attempt:
    """Mutable state gathered while one execution holds the lock."""

    job: GenerationJob
    owner: Owner | None
    version_id: str
    kind: JobKind
    request_ids: list[str] = field(default_factory=list)


class GenerationExecutor:
    """Executes generation jobs exactly once per requested version id."""

    def __init__(
        self,
        session_factory: Callable,
        provider: GenerationProvider,
        blob_store: BlobStore,
        lease: timedelta = timedelta(minutes=15),
        clock: Clock = utcnow,
        post_processor: PostProcessor = passthrough,
    ):
        """Initialize executor.

        Args:
            session_factory: Factory creating async database sessions
            provider: Generation provider used for the external call
            blob_store: Store used to fetch inputs and persist outputs
            lease: Lock lease; a lock older than this may be reclaimed
            clock: Source of the current (naive UTC) time
            post_processor: Hook producing named variants from the provider output
        """
        self.session_factory = session_factory
        self.provider = provider
        self.blob_store = blob_store
        self.lease = lease
        self.clock = clock
        self.post_processor = post_processor

    async def execute(
        self,
        job_id: UUID,
        requested_version_id: str,
        execution_id: str,
        kind: JobKind = JobKind.INITIAL,
    ) -> ExecutionResult:
        """Run one execution for ``job_id`` producing ``requested_version_id``.

        Never raises. Unexpected errors are logged, the lock is released if
        this execution still holds it, and a failed result is returned.

        Args:
            job_id: Job to execute
            requested_version_id: Version id to append ("v1", "v2", ...)
            execution_id: Opaque identifier of this execution
            kind: Requested kind (initial or refine); the job's stored kind wins
                on a mismatch

        Returns:
            ExecutionResult describing success, skip or failure
        """
        log = logger.bind(
            job_id=str(job_id),
            version_id=requested_version_id,
            execution_id=execution_id,
            kind=kind.value,
        )
        try:
            return await self._execute(job_id, requested_version_id, execution_id, kind, log)
        except Exception as e:
            log.error(
                "generation.execution.crashed",
                error=str(e),
                error_type=type(e).__name__,
                exc_info=True,
            )
            await self._release_after_crash(job_id, execution_id, log)
            return ExecutionResult(success=False, error=str(e) or type(e).__name__)

    async def _execute(
        self,
        job_id: UUID,
        version_id: str,
        execution_id: str,
        kind: JobKind,
        log: Any,
    ) -> ExecutionResult:
        # Step 1: guard, retry gate and lock
        async with self.session_factory() as session:
            repo = GenerationJobRepository(session)

            job = await repo.get_by_id(job_id)
            if job is None:
                log.info("generation.skipped", reason=JOB_GONE)
                return ExecutionResult.skip(JOB_GONE)

            if await repo.version_exists(job_id, version_id):
                log.info("generation.skipped", reason=VERSION_EXISTS)
                return ExecutionResult.skip(VERSION_EXISTS)

            now = self.clock()
            if not job.retry_gate_open(now):
                log.info(
                    "generation.skipped",
                    reason=RETRY_GATE,
                    retry_after=_isoformat(job.retry_after),
                )
                return ExecutionResult.skip(RETRY_GATE)

            acquired = await repo.try_acquire_lock(job_id, version_id, execution_id, now, self.lease)
            if not acquired:
                await session.rollback()
                log.info("generation.skipped", reason=LOCK_NOT_ACQUIRED)
                return ExecutionResult.skip(LOCK_NOT_ACQUIRED)
            await session.commit()

        # Step 2: load the claimed job and its owner
        async with self.session_factory() as session:
            job = await GenerationJobRepository(session).get_by_id(job_id)
            if job is None:
                raise RuntimeError(f"Generation job {job_id} vanished while locked")
            owner = await OwnerRepository(session).get_by_id(job.owner_id)

        log.info("generation.lock.acquired", attempt=job.attempts, max_attempts=job.max_attempts)
        if kind != job.kind:
            # The job record decides what is produced
            log.warning("generation.kind_mismatch", requested=kind.value, stored=job.kind.value)
        attempt = _Attempt(
            job=job,
            owner=owner,
            version_id=version_id,
            kind=job.kind,
            request_ids=list(job.provider_request_ids or []),
        )

        # Step 3: unsafe zone; every failure here is classified and recorded
        start_time = time.time()
        try:
            artifact_refs, request_id = await self._produce(attempt)
        except Exception as e:
            return await self._record_failure(attempt, execution_id, e, log)

        # Step 4: append + finalize
        return await self._append(
            attempt, execution_id, artifact_refs, request_id, time.time() - start_time, log
        )

    async def _produce(self, attempt: _Attempt) -> tuple[dict[str, str], str | None]:
        """Run owner checks, the provider call and storage for one attempt.

        Returns:
            (artifact refs keyed by variant, provider request id)

        Raises:
            Exception: Anything; the caller classifies it
        """
        job = attempt.job
        owner = attempt.owner
        if owner is None:
            raise MissingPrerequisiteError(f"Owner {job.owner_id} not found")
        if not owner.in_good_standing:
            raise BannedOwnerError(f"Owner {owner.id} is not allowed to generate")

        style = job.style_parameters or {}
        quality, aspect = resolve_render_options(style)

        if attempt.kind == JobKind.REFINE:
            # input_refs holds the base image captured when the refinement was submitted
            if not job.input_refs:
                raise MissingPrerequisiteError(f"Refinement job {job.id} has no base image")
            prompt = build_refinement_prompt(style.get("refine_instruction"))
        else:
            prompt = validate_prompt(style.get("prompt"))

        references = [await self.blob_store.fetch(ref) for ref in job.input_refs or []]

        try:
            output = await self.provider.generate(
                prompt, references, quality_tier=quality, aspect_ratio=aspect
            )
        except ProviderError as e:
            if e.request_id:
                attempt.request_ids.append(e.request_id)
            raise
        if output.request_id:
            attempt.request_ids.append(output.request_id)

        variants = await self.post_processor(output.image)

        content_type = media_type(output.content_type)
        extension = extension_for(content_type)
        timestamp = self.clock().strftime("%Y%m%d%H%M%S")
        artifact_refs: dict[str, str] = {}
        for variant, data in variants.items():
            path = (
                f"generations/{owner.id}/{job.id}/"
                f"{attempt.version_id}_{timestamp}{variant_suffix(variant)}{extension}"
            )
            artifact_refs[variant] = await self.blob_store.store(data, path, content_type)

        return artifact_refs, output.request_id

    async def _append(
        self,
        attempt: _Attempt,
        execution_id: str,
        artifact_refs: dict[str, str],
        request_id: str | None,
        duration: float,
        log: Any,
    ) -> ExecutionResult:
        job_id = attempt.job.id
        now = self.clock()

        finalized = False
        async with self.session_factory() as session:
            repo = GenerationJobRepository(session)
            appended = await repo.append_version(
                job_id, attempt.version_id, artifact_refs, request_id, now
            )
            if appended:
                finalized = await repo.mark_succeeded(
                    job_id, execution_id, attempt.request_ids, now
                )
                await session.commit()

        if not appended:
            # Another execution appended this version (or this slot) first
            async with self.session_factory() as session:
                await GenerationJobRepository(session).mark_succeeded(
                    job_id, execution_id, attempt.request_ids, now
                )
                await session.commit()
            log.info("generation.skipped", reason=VERSION_ALREADY_APPENDED)
            return ExecutionResult.skip(VERSION_ALREADY_APPENDED)

        if not finalized:
            log.warning("generation.lease_lost", stage="finalize")

        log.info(
            "generation.succeeded",
            artifact_refs=artifact_refs,
            provider_request_id=request_id,
            attempt=attempt.job.attempts,
            duration_seconds=duration,
        )
        return ExecutionResult(success=True, version_id=attempt.version_id)

    async def _record_failure(
        self,
        attempt: _Attempt,
        execution_id: str,
        exc: Exception,
        log: Any,
    ) -> ExecutionResult:
        job = attempt.job
        now = self.clock()
        classification = classify_failure(exc)
        decision = decide_failure(classification, job.attempts, job.max_attempts, now)

        async with self.session_factory() as session:
            recorded = await GenerationJobRepository(session).record_failure(
                job.id,
                attempt.version_id,
                execution_id,
                decision.status,
                decision.error,
                decision.retry_after,
                attempt.request_ids,
                now,
            )
            await session.commit()

        if not recorded:
            absorbed = await self._finalize_if_appended(attempt, execution_id, now)
            if absorbed:
                log.info(
                    "generation.skipped",
                    reason=VERSION_ALREADY_APPENDED,
                    discarded_error=classification.message,
                )
                return ExecutionResult.skip(VERSION_ALREADY_APPENDED)
            log.warning("generation.lease_lost", stage="failure")

        log.warning(
            "generation.failed",
            error=classification.message,
            error_kind=classification.kind.value,
            error_code=decision.error["code"],
            retryable=classification.retryable,
            status=decision.status.value,
            attempt=job.attempts,
            max_attempts=job.max_attempts,
            retry_after=_isoformat(decision.retry_after),
        )
        return ExecutionResult(success=False, error=classification.message)

    async def _finalize_if_appended(
        self, attempt: _Attempt, execution_id: str, now: datetime
    ) -> bool:
        """Finalize the job if another execution already appended this version.

        Happens when an execution whose lease expired still finished and
        appended the version while this one was failing.

        Returns:
            True if the requested version exists
        """
        async with self.session_factory() as session:
            repo = GenerationJobRepository(session)
            if not await repo.version_exists(attempt.job.id, attempt.version_id):
                return False
            await repo.mark_succeeded(attempt.job.id, execution_id, attempt.request_ids, now)
            await session.commit()
        return True

    async def _release_after_crash(self, job_id: UUID, execution_id: str, log: Any) -> None:
        """Best-effort lock release after an unexpected error."""
        try:
            async with self.session_factory() as session:
                released = await GenerationJobRepository(session).release_lock(
                    job_id, execution_id, self.clock()
                )
                await session.commit()
        except Exception as e:
            log.error("generation.lock.release_failed", error=str(e), error_type=type(e).__name__)
            return
        if released:
            log.info("generation.lock.released")


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
