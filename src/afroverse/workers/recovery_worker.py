"""Recovery worker: runs the recovery sweep on a fixed interval.

Used when no external scheduler calls GET /cron/generation-retry. Running both
is safe; a job triggered twice is executed at most once.
"""

import asyncio

import structlog

from afroverse.core.config import Settings
from afroverse.services.generation.recovery import RecoveryScanner

logger = structlog.get_logger(__name__)


async def run_recovery_worker(scanner: RecoveryScanner, settings: Settings) -> None:
    """Main worker loop for the recovery sweep.

    Sweeps every RECOVERY_INTERVAL_SECONDS until cancelled.

    Args:
        scanner: Recovery scanner wired to the application's trigger
        settings: Application settings (interval, batch size)
    """
    logger.info(
        "worker.started",
        worker="recovery",
        interval_seconds=settings.recovery_interval_seconds,
        batch_size=settings.recovery_batch_size,
    )

    try:
        while True:
            try:
                await scanner.scan()

                await asyncio.sleep(settings.recovery_interval_seconds)

            except asyncio.CancelledError:
                raise

            except Exception as e:
                # Unexpected error in sweep - log and continue with backoff
                logger.error(
                    "worker.error",
                    worker="recovery",
                    error_type=type(e).__name__,
                    error_message=str(e),
                    exc_info=True,
                )
                await asyncio.sleep(5)

    except asyncio.CancelledError:
        logger.info("worker.stopped", worker="recovery")
        raise
