"""Construction of the generation services from settings.

Shared by the API lifespan and the CLI so both run the same executor,
trigger and scanner configuration.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from afroverse.core.config import Settings
from afroverse.services.generation.executor import GenerationExecutor
from afroverse.services.generation.provider import ReplicateProvider
from afroverse.services.generation.recovery import (
    HttpTrigger,
    InProcessTrigger,
    JobTrigger,
    RecoveryScanner,
)
from afroverse.services.storage.blob_store import BlobStore, LocalBlobStore
from afroverse.services.storage.pinata import PinataBlobStore


@dataclass
class GenerationServices:
    provider: ReplicateProvider
    blob_store: BlobStore
    executor: GenerationExecutor
    trigger: JobTrigger
    scanner: RecoveryScanner


def build_blob_store(settings: Settings) -> BlobStore:
    """Select the blob store adapter configured by BLOB_BACKEND."""
    if settings.blob_backend == "pinata":
        return PinataBlobStore(
            jwt_token=settings.pinata_jwt,
            gateway_domain=settings.pinata_gateway,
            timeout=settings.provider_timeout_seconds,
        )
    return LocalBlobStore(settings.local_blob_root)


def build_trigger(settings: Settings, executor: GenerationExecutor) -> JobTrigger:
    """Select the job trigger configured by TRIGGER_MODE."""
    if settings.trigger_mode == "http":
        return HttpTrigger(settings.api_url)
    return InProcessTrigger(executor)


def build_generation_services(
    settings: Settings, session_factory: async_sessionmaker[AsyncSession]
) -> GenerationServices:
    """Wire provider, blob store, executor, trigger and scanner."""
    provider = ReplicateProvider(
        api_token=settings.replicate_api_token,
        model=settings.replicate_model_version,
        high_quality_model=settings.replicate_high_quality_model,
        timeout=settings.provider_timeout_seconds,
    )
    blob_store = build_blob_store(settings)
    executor = GenerationExecutor(
        session_factory=session_factory,
        provider=provider,
        blob_store=blob_store,
        lease=settings.lock_lease,
    )
    trigger = build_trigger(settings, executor)
    scanner = RecoveryScanner(
        session_factory=session_factory,
        trigger=trigger,
        lease=settings.lock_lease,
        batch_size=settings.recovery_batch_size,
    )
    return GenerationServices(
        provider=provider,
        blob_store=blob_store,
        executor=executor,
        trigger=trigger,
        scanner=scanner,
    )
