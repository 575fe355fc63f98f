"""Generation job API endpoints.

This module implements:
- POST /api/jobs/generation - Run one execution of a job (direct trigger, recovery
  trigger, manual retry)
- GET /api/jobs/generation/{job_id} - Polling view of a job and its versions

The trigger endpoint always answers 200 once the body validates; skips and
failures are reported in the body.
"""

import time
from datetime import datetime
from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, ConfigDict, Field

from afroverse.api.dependencies import get_executor, get_uow_factory
from afroverse.models.generation import JobKind
from afroverse.services.generation.executor import GenerationExecutor, new_execution_id

logger = structlog.get_logger()
router = APIRouter(prefix="/api/jobs", tags=["jobs"])


# Request/Response Models


class ExecuteJobRequest(BaseModel):
    """Request model for one execution of a generation job."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: UUID = Field(..., alias="jobId", description="Job to execute")
    requested_version_id: str = Field(
        ...,
        alias="requestedVersionId",
        pattern=r"^v[1-9][0-9]*$",
        description='Version id to produce ("v1", "v2", ...)',
    )
    kind: JobKind = Field(default=JobKind.INITIAL, description="initial or refine")
    execution_id: str | None = Field(
        default=None,
        alias="executionId",
        max_length=64,
        description="Opaque execution identifier (generated when omitted)",
    )


class VersionDTO(BaseModel):
    """Data Transfer Object for one appended version."""

    model_config = ConfigDict(populate_by_name=True)

    version_id: str = Field(..., alias="versionId")
    position: int
    artifact_refs: dict[str, str] = Field(..., alias="artifactRefs")
    created_at: datetime = Field(..., alias="createdAt")


class JobStatusResponse(BaseModel):
    """Polling view of a generation job."""

    model_config = ConfigDict(populate_by_name=True)

    job_id: UUID = Field(..., alias="jobId")
    kind: str
    base_job_id: UUID | None = Field(default=None, alias="baseJobId")
    status: str
    attempts: int
    max_attempts: int = Field(..., alias="maxAttempts")
    versions: list[VersionDTO]
    error: dict[str, Any] | None = None
    retry_after: datetime | None = Field(default=None, alias="retryAfter")
    updated_at: datetime = Field(..., alias="updatedAt")


# API Endpoints


@router.post("/generation", status_code=status.HTTP_200_OK)
async def execute_generation_job(
    request: ExecuteJobRequest,
    executor: GenerationExecutor = Depends(get_executor),
) -> dict[str, Any]:
    """Run one execution of a generation job.

    Example:
        POST /api/jobs/generation
        {"jobId": "...", "requestedVersionId": "v1", "kind": "initial"}

        Response 200:
        {"success": true, "versionId": "v1", "durationMs": 5321}
        {"success": true, "skipped": true, "reason": "lock_not_acquired", "durationMs": 4}
    """
    start_time = time.time()
    execution_id = request.execution_id or new_execution_id()

    result = await executor.execute(
        request.job_id, request.requested_version_id, execution_id, request.kind
    )

    body = result.to_response()
    body["durationMs"] = int((time.time() - start_time) * 1000)
    return body


@router.get("/generation/{job_id}", response_model=JobStatusResponse)
async def get_generation_job(
    job_id: UUID,
    uow_factory=Depends(get_uow_factory),
) -> JobStatusResponse:
    """Return the current state of a job for polling clients.

    Raises:
        HTTPException 404: Job does not exist
    """
    async with await uow_factory() as uow:
        job = await uow.jobs.get_by_id(job_id)

    if job is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found")

    return JobStatusResponse(
        job_id=job.id,
        kind=job.kind.value,
        base_job_id=job.base_job_id,
        status=job.status.value,
        attempts=job.attempts,
        max_attempts=job.max_attempts,
        versions=[
            VersionDTO(
                version_id=v.version_id,
                position=v.position,
                artifact_refs=v.artifact_refs,
                created_at=v.created_at,
            )
            for v in job.versions
        ],
        error=job.error_data,
        retry_after=job.retry_after,
        updated_at=job.updated_at,
    )
