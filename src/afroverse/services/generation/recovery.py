"""Recovery scanner and job triggers.

The scanner finds jobs that are due for retry or whose executions crashed
(orphaned locks) and hands each one to a trigger. Triggers are
fire-and-forget: they spawn a task and return immediately. Whether the
spawned execution wins the lock is decided by the executor, so triggering the
same job twice is harmless.
"""

import asyncio
import time
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Callable, Coroutine, Protocol
from uuid import UUID

import httpx
import structlog

from afroverse.core.clock import Clock, utcnow
from afroverse.models.generation import JobKind
from afroverse.repositories.generation_job import GenerationJobRepository
from afroverse.services.generation.executor import GenerationExecutor, new_execution_id

logger = structlog.get_logger(__name__)


class JobTrigger(Protocol):
    """Starts an independent execution for a job without waiting for it."""

    def fire(self, job_id: UUID, version_id: str, kind: JobKind = JobKind.INITIAL) -> None: ...

    async def drain(self) -> None: ...


class _TaskTrigger:
    """Keeps references to spawned tasks until they finish."""

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task] = set()

    def _spawn(self, coro: Coroutine[Any, Any, None], job_id: UUID, version_id: str) -> None:
        task = asyncio.create_task(coro, name=f"generation:{job_id}:{version_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("generation.trigger.cancelled", task=task.get_name())
            return
        exc = task.exception()
        if exc:
            logger.error(
                "generation.trigger.task_failed",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
                exc_info=exc,
            )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every spawned task to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)


class InProcessTrigger(_TaskTrigger):
    """Runs the executor in a task of the current event loop."""

    def __init__(self, executor: GenerationExecutor):
        super().__init__()
        self.executor = executor

    def fire(self, job_id: UUID, version_id: str, kind: JobKind = JobKind.INITIAL) -> None:
        self._spawn(self._run(job_id, version_id, kind), job_id, version_id)

    async def _run(self, job_id: UUID, version_id: str, kind: JobKind) -> None:
        await self.executor.execute(job_id, version_id, new_execution_id(), kind)


class HttpTrigger(_TaskTrigger):
    """Invokes the executor endpoint of a (possibly remote) API instance."""

    def __init__(
        self,
        api_url: str,
        timeout: float = 300.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize HTTP trigger.

        Args:
            api_url: Base URL of the API serving POST /api/jobs/generation
            timeout: Request timeout in seconds (covers a full execution)
            transport: Optional httpx transport (tests)
        """
        super().__init__()
        self.endpoint = f"{api_url.rstrip('/')}/api/jobs/generation"
        self.timeout = timeout
        self.transport = transport

    def fire(self, job_id: UUID, version_id: str, kind: JobKind = JobKind.INITIAL) -> None:
        self._spawn(self._post(job_id, version_id, kind), job_id, version_id)

    async def _post(self, job_id: UUID, version_id: str, kind: JobKind) -> None:
        payload = {
            "jobId": str(job_id),
            "requestedVersionId": version_id,
            "kind": kind.value,
            "executionId": new_execution_id(),
        }
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            response = await client.post(self.endpoint, json=payload)
            response.raise_for_status()
        logger.debug(
            "generation.trigger.delivered",
            job_id=str(job_id),
            version_id=version_id,
            result=response.json(),
        )


@dataclass
class RecoveryResult:
    """Outcome of one recovery sweep."""

    candidates: list[UUID] = field(default_factory=list)
    triggered: int = 0
    failed: int = 0
    reaped: int = 0
    duration_ms: int = 0

    @property
    def found(self) -> int:
        return len(self.candidates)

    def to_response(self) -> dict[str, Any]:
        return {
            "found": self.found,
            "triggered": self.triggered,
            "failed": self.failed,
            "reaped": self.reaped,
            "durationMs": self.duration_ms,
        }


class RecoveryScanner:
    """Periodic sweep that re-triggers due and orphaned jobs."""

    def __init__(
        self,
        session_factory: Callable,
        trigger: JobTrigger,
        lease: timedelta = timedelta(minutes=15),
        batch_size: int = 100,
        clock: Clock = utcnow,
    ):
        self.session_factory = session_factory
        self.trigger = trigger
        self.lease = lease
        self.batch_size = batch_size
        self.clock = clock

    async def scan(self, dry_run: bool = False, limit: int | None = None) -> RecoveryResult:
        """Run one sweep.

        Exhausted orphans are failed first (skipped in dry-run mode), then up
        to ``limit`` candidates are enumerated and triggered with
        ``"v" + (version count + 1)`` and the job's own kind. Only enumeration
        is awaited.

        Args:
            dry_run: Report candidates without reaping or triggering
            limit: Batch size override (default: configured batch size)

        Returns:
            RecoveryResult with candidate ids and counts
        """
        start_time = time.time()
        now = self.clock()
        result = RecoveryResult()

        async with self.session_factory() as session:
            repo = GenerationJobRepository(session)
            if not dry_run:
                result.reaped = await repo.reap_exhausted(now, self.lease)
                await session.commit()
            rows = await repo.find_recovery_candidates(
                now, self.lease, limit=limit or self.batch_size
            )

        if result.reaped:
            logger.warning("recovery.jobs_reaped", count=result.reaped)

        for job_id, version_count, kind in rows:
            result.candidates.append(job_id)
            version_id = f"v{version_count + 1}"
            if dry_run:
                logger.info(
                    "recovery.candidate",
                    job_id=str(job_id),
                    version_id=version_id,
                    kind=kind.value,
                )
                continue
            try:
                self.trigger.fire(job_id, version_id, kind)
            except Exception as e:
                result.failed += 1
                logger.error(
                    "recovery.trigger_failed",
                    job_id=str(job_id),
                    version_id=version_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            else:
                result.triggered += 1

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "recovery.sweep.completed",
            found=result.found,
            triggered=result.triggered,
            failed=result.failed,
            reaped=result.reaped,
            dry_run=dry_run,
            duration_ms=result.duration_ms,
        )
        return result
