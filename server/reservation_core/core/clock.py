"""Time helpers.

All timestamps are stored as naive UTC. Services read the time through these
functions so tests can move the clock.
"""

from datetime import date, datetime, timezone


def utcnow() -> datetime:
    """Current UTC time without tzinfo."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def today() -> date:
    """Current UTC calendar date."""
    return utcnow().date()
