"""CLI command for running one generation recovery sweep.

Usage:
    python -m afroverse.cli.recover_jobs [OPTIONS]

Examples:
    # Re-trigger due and orphaned jobs
    python -m afroverse.cli.recover_jobs

    # List candidates without reaping or triggering
    python -m afroverse.cli.recover_jobs --dry-run

    # Smaller batch, verbose logging
    python -m afroverse.cli.recover_jobs --limit 10 -v

With TRIGGER_MODE=inprocess the executions run inside this process and the
command waits for them before exiting.
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from afroverse.core.config import Settings, configure_logging
from afroverse.core.database import setup_db_session
from afroverse.core.wiring import build_generation_services

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(description="Re-trigger generation jobs due for retry or orphaned")

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="List candidates without reaping or triggering",
    )

    parser.add_argument(
        "--limit",
        type=int,
        default=None,
        help="Maximum number of jobs to trigger (default: RECOVERY_BATCH_SIZE)",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (some triggers failed)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]

    if args.verbose:
        settings.log_level = "DEBUG"

    configure_logging(settings)

    if args.limit is not None and args.limit < 1:
        logger.error("recover_jobs.invalid_limit", limit=args.limit)
        return 1

    logger.info("recover_jobs.start", dry_run=args.dry_run, limit=args.limit)

    try:
        session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
        services = build_generation_services(settings, session_factory)

        result = await services.scanner.scan(dry_run=args.dry_run, limit=args.limit)
        await services.trigger.drain()

        logger.info("recover_jobs.complete", **result.to_response())
        return 2 if result.failed else 0

    except KeyboardInterrupt:
        logger.warning("recover_jobs.interrupted", message="Recovery interrupted by user")
        return 2

    except Exception as e:
        logger.error("recover_jobs.fatal_error", error=str(e), exc_info=True)
        return 1


def main() -> int:
    """Synchronous wrapper for async main."""
    return asyncio.run(async_main())


if __name__ == "__main__":
    sys.exit(main())
