"""Backoff policy for retryable generation failures.

Delays: 30s, 2m, 10m, 30m, 2h. The last delay is reused for every attempt beyond
the table.
"""

from datetime import datetime, timedelta

RETRY_DELAYS: tuple[timedelta, ...] = (
    timedelta(seconds=30),
    timedelta(minutes=2),
    timedelta(minutes=10),
    timedelta(minutes=30),
    timedelta(hours=2),
)


def retry_delay(attempts: int) -> timedelta:
    """Delay before the next attempt after ``attempts`` attempts have been made.

    Args:
        attempts: Number of attempts made so far (1 after the first failure)

    Returns:
        Delay from the failure timestamp to the next eligible attempt
    """
    index = min(attempts - 1, len(RETRY_DELAYS) - 1)
    return RETRY_DELAYS[max(0, index)]


def calculate_retry_after(attempts: int, now: datetime) -> datetime:
    """Timestamp at which a job that failed on attempt ``attempts`` may run again."""
    return now + retry_delay(attempts)
