"""UTC helpers. Every timestamp handled by the engine is timezone-aware UTC."""

import calendar
from datetime import datetime, timezone
from typing import Optional


def utc_now() -> datetime:
    """Timezone-aware UTC now."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def normalize_now(now: Optional[datetime]) -> datetime:
    if now is None:
        return utc_now()
    return ensure_utc(now)


def add_months(value: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day (Jan 31 + 1 month -> Feb 28/29)."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
