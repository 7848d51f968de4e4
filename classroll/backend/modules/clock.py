# classroll/backend/modules/clock.py

from datetime import datetime, timezone, tzinfo
from zoneinfo import ZoneInfo

from ..config.config import settings


def school_timezone() -> tzinfo:
    return ZoneInfo(settings.APP_TIMEZONE)


class Clock:
    """Wall clock. Replaced with a fixed clock in tests."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock(Clock):
    def __init__(self, instant: datetime):
        self.instant = instant

    def now(self) -> datetime:
        return self.instant


default_clock = Clock()
