"""Owner repository for the Afroverse backend."""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from afroverse.models.owner import Owner


class OwnerRepository:
    """Repository for Owner entities."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, owner_id: UUID) -> Owner | None:
        """Retrieve owner by UUID.

        Args:
            owner_id: Owner's unique identifier

        Returns:
            Owner if found, None otherwise
        """
        result = await self.session.execute(select(Owner).where(Owner.id == owner_id))  # type: ignore[arg-type]
        return result.scalar_one_or_none()

    async def add(self, owner: Owner) -> Owner:
        self.session.add(owner)
        await self.session.flush()
        return owner
