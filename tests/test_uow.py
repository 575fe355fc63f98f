"""Unit of Work pattern tests.

Tests focus on transaction management:
- Successful commits persist changes
- Exceptions trigger rollback
- Multiple repository operations are atomic
"""

import pytest

from afroverse.models.generation import GenerationJob
from afroverse.models.owner import Owner


@pytest.mark.asyncio
async def test_uow_commits_on_successful_exit(uow_factory):
    """Changes made within the context persist after the context exits."""
    async with await uow_factory() as uow:
        owner = await uow.owners.add(Owner(handle="kofi"))
        owner_id = owner.id

    async with await uow_factory() as uow:
        found = await uow.owners.get_by_id(owner_id)
        assert found is not None
        assert found.handle == "kofi"


@pytest.mark.asyncio
async def test_uow_rollback_on_exception(uow_factory):
    """Owner and job added before the error are both rolled back; the error propagates."""
    with pytest.raises(ValueError, match="Simulated error"):
        async with await uow_factory() as uow:
            owner = await uow.owners.add(Owner(handle="amara"))
            job = await uow.jobs.add(
                GenerationJob(owner_id=owner.id, style_parameters={"prompt": "p"})
            )
            owner_id, job_id = owner.id, job.id
            raise ValueError("Simulated error")

    async with await uow_factory() as uow:
        assert await uow.owners.get_by_id(owner_id) is None
        assert await uow.jobs.get_by_id(job_id) is None
