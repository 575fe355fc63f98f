"""Background workers for async processing tasks."""

from afroverse.workers.recovery_worker import run_recovery_worker

__all__ = [
    "run_recovery_worker",
]
