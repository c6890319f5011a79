"""Injectable time source.

Services read "now" through a clock so the hold window and the auto-confirm
deadline can be exercised in tests without sleeping.
"""

from datetime import UTC, datetime, timedelta
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


class FixedClock:
    """Clock frozen at a given instant, advanced explicitly."""

    def __init__(self, now: datetime | None = None):
        self.now = now or utcnow()

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now
