"""
Clock used by every time-dependent component.

Components take a ``Clock`` argument instead of calling ``datetime.now()``
themselves so tests can freeze time.
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Current instant as an aware UTC datetime"""
    return datetime.now(timezone.utc)


def fixed_clock(instant: datetime) -> Clock:
    """Clock that always returns ``instant``"""
    if instant.tzinfo is None:
        raise ValueError("fixed_clock requires an aware datetime")
    return lambda: instant
