"""FastAPI dependencies for request validation and common operations.

This module provides reusable FastAPI dependencies for:
- Settings access
- Cron caller authentication
- Access to services wired onto app.state during lifespan
"""

import secrets
from typing import Annotated, Callable

from fastapi import Depends, Header, HTTPException, Request, status

from afroverse.core.config import Settings
from afroverse.services.generation.executor import GenerationExecutor
from afroverse.services.generation.recovery import RecoveryScanner
from afroverse.uow import UnitOfWork


def get_settings() -> Settings:
    """Get application settings instance.

    Returns:
        Settings instance loaded from environment variables.
    """
    return Settings()  # type: ignore[call-arg]  # Pydantic loads from env vars


def verify_cron_secret(
    authorization: Annotated[str | None, Header()] = None,
    settings: Settings = Depends(get_settings),
) -> None:
    """Authenticate the periodic recovery caller.

    Expects ``Authorization: Bearer <CRON_SECRET>``. Comparison is constant-time.

    Raises:
        HTTPException: 401 Unauthorized if the header is missing, malformed or wrong,
            or if no secret is configured
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing bearer token"
        )

    token = authorization[len("Bearer ") :]
    if not settings.cron_secret or not secrets.compare_digest(
        token.encode(), settings.cron_secret.encode()
    ):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid cron secret")


def get_uow_factory(request: Request) -> Callable[[], UnitOfWork]:
    """Get UnitOfWork factory from app state.

    Example:
        >>> @router.get("/endpoint")
        >>> async def endpoint(uow_factory=Depends(get_uow_factory)):
        ...     async with await uow_factory() as uow:
        ...         await uow.jobs.get_by_id(job_id)
    """
    return request.app.state.uow_factory


def get_executor(request: Request) -> GenerationExecutor:
    """Get the generation executor from app state."""
    return request.app.state.executor


def get_scanner(request: Request) -> RecoveryScanner:
    """Get the recovery scanner from app state."""
    return request.app.state.scanner
