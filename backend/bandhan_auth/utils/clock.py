"""
Clock helpers
All timestamps are stored as naive UTC
"""
from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current UTC time without tzinfo, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
