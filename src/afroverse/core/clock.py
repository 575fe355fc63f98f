"""Clock abstraction.

All timestamps are naive UTC datetimes. Components receive a ``Clock`` so tests
can pin or advance time without patching globals.
"""

from datetime import UTC, datetime
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time as a naive datetime."""
    return datetime.now(UTC).replace(tzinfo=None)
