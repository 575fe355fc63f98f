"""Generation submission: persist a queued job and trigger its first version.

Refinements are submitted as new jobs; a produced job is never re-opened.
"""

from typing import Callable
from uuid import UUID

import structlog

from afroverse.models.generation import GenerationJob, JobKind
from afroverse.services.exceptions import (
    BannedOwnerError,
    InvalidInputError,
    MissingPrerequisiteError,
    QuotaExceededError,
)
from afroverse.services.generation.postprocess import PRIMARY_VARIANT
from afroverse.services.generation.prompt import (
    build_refinement_prompt,
    resolve_render_options,
    validate_prompt,
)
from afroverse.services.generation.recovery import JobTrigger

logger = structlog.get_logger(__name__)


async def create_generation(
    uow_factory: Callable,
    trigger: JobTrigger,
    owner_id: UUID,
    input_refs: list[str],
    style_parameters: dict,
    provider_name: str,
    provider_model: str,
    max_attempts: int = 5,
    max_concurrent: int = 3,
) -> GenerationJob:
    """Create a queued generation job and fire the executor for "v1".

    Validation happens before anything is written, so a rejected submission
    leaves no job behind.

    Args:
        uow_factory: Factory producing UnitOfWork instances
        trigger: Trigger that starts the first execution
        owner_id: Requesting owner
        input_refs: Blob refs of the source uploads
        style_parameters: Prompt and render options, stored verbatim
        provider_name: Provider identity recorded on the job
        provider_model: Model identifier recorded on the job
        max_attempts: Attempt ceiling for the job
        max_concurrent: Maximum queued or running jobs per owner

    Returns:
        The persisted job

    Raises:
        MissingPrerequisiteError: Owner does not exist
        BannedOwnerError: Owner is banned or shadowbanned
        QuotaExceededError: Owner already has ``max_concurrent`` active jobs
        InvalidInputError: Prompt or render options are invalid
    """
    validate_prompt(style_parameters.get("prompt"))
    resolve_render_options(style_parameters)

    async with await uow_factory() as uow:
        owner = await uow.owners.get_by_id(owner_id)
        if owner is None:
            raise MissingPrerequisiteError(f"Owner {owner_id} not found")
        if not owner.in_good_standing:
            raise BannedOwnerError(f"Owner {owner_id} is not allowed to generate")

        active = await uow.jobs.count_active_for_owner(owner_id)
        if active >= max_concurrent:
            raise QuotaExceededError(
                f"Owner {owner_id} already has {active} active generations (limit {max_concurrent})"
            )

        job = GenerationJob(
            owner_id=owner_id,
            input_refs=list(input_refs),
            style_parameters=dict(style_parameters),
            provider_name=provider_name,
            provider_model=provider_model,
            max_attempts=max_attempts,
        )
        await uow.jobs.add(job)

    logger.info("generation.submitted", job_id=str(job.id), owner_id=str(owner_id))
    trigger.fire(job.id, "v1")
    return job


async def create_refinement(
    uow_factory: Callable,
    trigger: JobTrigger,
    owner_id: UUID,
    base_job_id: UUID,
    instruction: str,
    provider_model: str | None = None,
    max_attempts: int = 5,
    max_concurrent: int = 3,
) -> GenerationJob:
    """Create a refinement job starting from another job's latest version.

    The base job is left untouched. The new job carries the base image ref as
    its only input, the base job's style parameters plus ``refine_instruction``,
    and ``kind=refine``; its first execution is triggered for "v1".

    Args:
        uow_factory: Factory producing UnitOfWork instances
        trigger: Trigger that starts the first execution
        owner_id: Requesting owner; must own the base job
        base_job_id: Job whose latest version is refined
        instruction: What to change in the base image
        provider_model: Model identifier (default: the base job's model)
        max_attempts: Attempt ceiling for the job
        max_concurrent: Maximum queued or running jobs per owner

    Returns:
        The persisted refinement job

    Raises:
        MissingPrerequisiteError: Base job not found or owned by someone else
        InvalidInputError: Empty instruction or base job without a version
        BannedOwnerError: Owner is banned or shadowbanned
        QuotaExceededError: Owner already has ``max_concurrent`` active jobs
    """
    build_refinement_prompt(instruction)

    async with await uow_factory() as uow:
        base = await uow.jobs.get_by_id(base_job_id)
        if base is None or base.owner_id != owner_id:
            raise MissingPrerequisiteError(f"Generation job {base_job_id} not found")

        latest = base.latest_version
        base_ref = latest.artifact_refs.get(PRIMARY_VARIANT) if latest else None
        if base_ref is None:
            raise InvalidInputError(f"Generation job {base_job_id} has no version to refine")

        owner = await uow.owners.get_by_id(owner_id)
        if owner is None:
            raise MissingPrerequisiteError(f"Owner {owner_id} not found")
        if not owner.in_good_standing:
            raise BannedOwnerError(f"Owner {owner_id} is not allowed to generate")

        active = await uow.jobs.count_active_for_owner(owner_id)
        if active >= max_concurrent:
            raise QuotaExceededError(
                f"Owner {owner_id} already has {active} active generations (limit {max_concurrent})"
            )

        job = GenerationJob(
            owner_id=owner_id,
            kind=JobKind.REFINE,
            base_job_id=base.id,
            input_refs=[base_ref],
            style_parameters={**base.style_parameters, "refine_instruction": instruction},
            provider_name=base.provider_name,
            provider_model=provider_model or base.provider_model,
            max_attempts=max_attempts,
        )
        await uow.jobs.add(job)

    logger.info(
        "generation.refinement_submitted",
        job_id=str(job.id),
        base_job_id=str(base_job_id),
        base_version_id=latest.version_id,
        owner_id=str(owner_id),
    )
    trigger.fire(job.id, "v1", JobKind.REFINE)
    return job
