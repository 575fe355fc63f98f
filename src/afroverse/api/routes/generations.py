"""Generation submission endpoint.

- POST /api/generations - Create a queued generation job and trigger "v1"
- POST /api/generations/{job_id}/refine - Create a refinement job from a job's latest version
"""

from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from afroverse.api.dependencies import get_settings, get_uow_factory
from afroverse.core.config import Settings
from afroverse.services.exceptions import (
    BannedOwnerError,
    GenerationJobError,
    InvalidInputError,
    MissingPrerequisiteError,
    QuotaExceededError,
)
from afroverse.services.generation.submission import create_generation, create_refinement

logger = structlog.get_logger()
router = APIRouter(prefix="/api/generations", tags=["generations"])

_STATUS_FOR_ERROR: dict[type[GenerationJobError], int] = {
    MissingPrerequisiteError: status.HTTP_404_NOT_FOUND,
    BannedOwnerError: status.HTTP_403_FORBIDDEN,
    QuotaExceededError: status.HTTP_429_TOO_MANY_REQUESTS,
    InvalidInputError: status.HTTP_400_BAD_REQUEST,
}


class CreateGenerationRequest(BaseModel):
    """Request model for a new generation."""

    model_config = ConfigDict(populate_by_name=True)

    owner_id: UUID = Field(..., alias="ownerId")
    input_refs: list[str] = Field(
        default_factory=list,
        alias="inputRefs",
        max_length=8,
        description="Blob refs of uploaded source images",
    )
    style_parameters: dict[str, Any] = Field(
        ...,
        alias="styleParameters",
        description="prompt, quality (standard/high), aspect (1:1/9:16)",
    )


class RefineGenerationRequest(BaseModel):
    """Request model for refining a produced generation."""

    model_config = ConfigDict(populate_by_name=True)

    owner_id: UUID = Field(..., alias="ownerId")
    instruction: str = Field(..., description="Change to apply to the latest version")


def _rejected(owner_id: UUID, e: GenerationJobError) -> HTTPException:
    logger.info("generation.submission_rejected", owner_id=str(owner_id), error=str(e))
    return HTTPException(
        status_code=_STATUS_FOR_ERROR.get(type(e), status.HTTP_400_BAD_REQUEST),
        detail=str(e),
    )


@router.post("", status_code=status.HTTP_202_ACCEPTED)
async def submit_generation(
    body: CreateGenerationRequest,
    request: Request,
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Create a generation job.

    Raises:
        HTTPException 400: Invalid prompt or render options
        HTTPException 403: Owner is banned
        HTTPException 404: Owner not found
        HTTPException 429: Too many active generations
    """
    provider = request.app.state.provider
    quality = body.style_parameters.get("quality", "standard")
    try:
        job = await create_generation(
            uow_factory,
            request.app.state.trigger,
            owner_id=body.owner_id,
            input_refs=body.input_refs,
            style_parameters=body.style_parameters,
            provider_name=provider.name,
            provider_model=provider.model_for(quality),
            max_attempts=settings.default_max_attempts,
            max_concurrent=settings.max_concurrent_generations,
        )
    except GenerationJobError as e:
        raise _rejected(body.owner_id, e)

    return {"jobId": str(job.id), "status": job.status.value, "versionId": "v1"}


@router.post("/{job_id}/refine", status_code=status.HTTP_202_ACCEPTED)
async def refine_generation(
    job_id: UUID,
    body: RefineGenerationRequest,
    request: Request,
    uow_factory=Depends(get_uow_factory),
    settings: Settings = Depends(get_settings),
) -> dict[str, Any]:
    """Refine the latest version of a job as a new refinement job.

    Example:
        POST /api/generations/{job_id}/refine
        {"ownerId": "...", "instruction": "Add gold earrings"}

        Response 202:
        {"jobId": "...", "baseJobId": "...", "kind": "refine", "status": "queued",
         "versionId": "v1"}

    Raises:
        HTTPException 400: Empty instruction or nothing to refine yet
        HTTPException 403: Owner is banned
        HTTPException 404: Job not found for this owner
        HTTPException 429: Too many active generations
    """
    try:
        job = await create_refinement(
            uow_factory,
            request.app.state.trigger,
            owner_id=body.owner_id,
            base_job_id=job_id,
            instruction=body.instruction,
            max_attempts=settings.default_max_attempts,
            max_concurrent=settings.max_concurrent_generations,
        )
    except GenerationJobError as e:
        raise _rejected(body.owner_id, e)

    return {
        "jobId": str(job.id),
        "baseJobId": str(job_id),
        "kind": job.kind.value,
        "status": job.status.value,
        "versionId": "v1",
    }
