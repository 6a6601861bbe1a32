"""
Time source for the rental core.

All "now" timestamps (contract generation, damage reports, settlement dates)
come from an injectable clock. Instants are handled as naive UTC throughout
the core so values read back from any database compare cleanly.
"""

from datetime import datetime, timezone
from typing import Optional, Protocol


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize an instant to naive UTC. Naive input is assumed to be UTC already."""
    if value is None:
        return None
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall clock in naive UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(tzinfo=None)


system_clock = SystemClock()
