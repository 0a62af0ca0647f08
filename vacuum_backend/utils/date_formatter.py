"""
Time helpers shared by every service.

All timestamps are timezone-aware and expressed in the configured timezone
(default America/Sao_Paulo). Services receive a clock callable so tests can
drive time explicitly.
"""

from datetime import datetime
from typing import Callable, Optional
import pytz
from vacuum_backend.config import config

Clock = Callable[[], datetime]


def get_timezone() -> pytz.BaseTzInfo:
    """
    Get the configured system timezone.

    Examples:
        >>> get_timezone().zone
        'America/Sao_Paulo'
    """
    return pytz.timezone(config.TIMEZONE)


def now_local() -> datetime:
    """Current aware datetime in the configured timezone."""
    return datetime.now(get_timezone())


def ensure_aware(dt: datetime) -> datetime:
    """
    Attach the configured timezone to naive datetimes.

    Devices report naive timestamps when their RTC has no zone info.
    """
    if dt.tzinfo is None:
        return get_timezone().localize(dt)
    return dt


def seconds_between(earlier: Optional[datetime], later: datetime) -> Optional[float]:
    """Elapsed seconds from earlier to later, None if earlier is unknown."""
    if earlier is None:
        return None
    return (ensure_aware(later) - ensure_aware(earlier)).total_seconds()


def format_datetime(dt: datetime) -> str:
    """
    Format a datetime as DD-MM-YYYY HH:MM:SS for messages and events.

    Examples:
        >>> format_datetime(datetime(2026, 1, 21, 14, 30, 0))
        '21-01-2026 14:30:00'
    """
    return dt.strftime("%d-%m-%Y %H:%M:%S")
