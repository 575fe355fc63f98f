"""Owner entity - the identity a generation job is produced for."""

from datetime import datetime
from typing import Optional
from uuid import UUID, uuid4

from sqlmodel import Field, SQLModel


class Owner(SQLModel, table=True):
    """Owner of generation jobs, with moderation flags checked before execution."""

    __tablename__ = "owners"  # type: ignore[assignment]

    id: UUID = Field(default_factory=uuid4, primary_key=True)
    handle: str = Field(max_length=64, unique=True, index=True)
    display_name: Optional[str] = Field(default=None, max_length=255)
    banned: bool = Field(default=False)
    shadowbanned: bool = Field(default=False)
    created_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def in_good_standing(self) -> bool:
        return not (self.banned or self.shadowbanned)
