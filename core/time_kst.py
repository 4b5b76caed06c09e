"""
TIME_KST.PY - Single Source of Truth for KST Timezone Handling

RULES:
1. Server clock is UTC
2. All quota buckets, expiries and timestamps are computed in KST (Asia/Seoul)
3. Core functions:
   - now_kst(): UTC -> KST conversion
   - period_key(): free-quota date bucket for a moment
   - add_months(): calendar-month arithmetic for subscriptions
4. Uses zoneinfo ONLY - no pytz

Usage:
    from core.time_kst import now_kst, period_key

    key = period_key()            # "2026-10-19"
    key = period_key(some_utc_dt) # bucket of an arbitrary moment
"""

import calendar
from datetime import date, datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo
import logging

logger = logging.getLogger(__name__)

# Asia/Seoul timezone (single source of truth)
KST = ZoneInfo("Asia/Seoul")


def now_kst() -> datetime:
    """
    Get current datetime in KST.

    Returns:
        timezone-aware datetime in Asia/Seoul
    """
    return datetime.now(timezone.utc).astimezone(KST)


def today_kst() -> date:
    """Current calendar date in KST."""
    return now_kst().date()


def to_kst(moment: datetime) -> datetime:
    """Convert a datetime to KST. Naive values are treated as UTC."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(KST)


def period_key(moment: Optional[datetime] = None) -> str:
    """
    Free-quota bucket for a moment.

    The bucket is the KST calendar date, so the quota resets at
    00:00 Asia/Seoul regardless of server timezone.

    Args:
        moment: datetime to bucket (default: now)

    Returns:
        "YYYY-MM-DD"
    """
    moment = to_kst(moment) if moment is not None else now_kst()
    return moment.date().isoformat()


def add_months(moment: datetime, months: int) -> datetime:
    """
    Add calendar months, clamping the day to the target month's length.

    Example:
        >>> add_months(datetime(2026, 1, 31), 1)
        datetime.datetime(2026, 2, 28, 0, 0)
    """
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def utc_now() -> datetime:
    """Naive UTC now. DB timestamps are stored naive in UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_as_of_kst(moment: Optional[datetime] = None) -> str:
    """ISO-8601 timestamp in KST (used for response metadata)."""
    moment = to_kst(moment) if moment is not None else now_kst()
    return moment.isoformat()
