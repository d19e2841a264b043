"""Clock sources: wall-clock "now" in the user's timezone, mockable in tests."""

import logging
from datetime import datetime, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo

logger = logging.getLogger(__name__)

DEFAULT_TIMEZONE = "Asia/Seoul"


def resolve_timezone(tz: Optional[str]) -> tzinfo:
    """Resolve an IANA timezone name, falling back to the default zone."""
    try:
        return ZoneInfo(tz or DEFAULT_TIMEZONE)
    except Exception as e:
        logger.warning(f"Unknown timezone '{tz}', using {DEFAULT_TIMEZONE}: {e}")
        return ZoneInfo(DEFAULT_TIMEZONE)


def minutes_since_midnight(now: datetime) -> int:
    return now.hour * 60 + now.minute


class SystemClock:
    """Real wall clock in a fixed timezone."""

    def __init__(self, timezone: Optional[str] = None):
        self._tz = resolve_timezone(timezone)

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return datetime.now(self._tz)


class FixedClock:
    """Manually driven clock.

    Usage:
        clock = FixedClock(datetime(2025, 3, 3, 10, 0))
        clock.advance(minutes=30)
    """

    def __init__(self, now: datetime, timezone: Optional[str] = None):
        self._tz = resolve_timezone(timezone)
        self._now = now if now.tzinfo else now.replace(tzinfo=self._tz)

    @property
    def tz(self) -> tzinfo:
        return self._tz

    def now(self) -> datetime:
        return self._now

    def set(self, now: datetime) -> None:
        self._now = now if now.tzinfo else now.replace(tzinfo=self._tz)

    def advance(self, **kwargs) -> datetime:
        self._now = self._now + timedelta(**kwargs)
        return self._now
