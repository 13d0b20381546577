"""Aggregation window arithmetic.

Windows are half-open ``[start, end)`` in UTC. A week starts on Sunday
midnight, a month on the first at midnight.
"""

from __future__ import annotations

import calendar
from datetime import datetime, timedelta, timezone

from promptloop.core.store.models import Period, utc_now


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def window_end(start: datetime, period: Period | str) -> datetime:
    """End of the window that begins at ``start``."""
    period = Period(period)
    start = _as_utc(start)
    if period is Period.HOUR:
        return start + timedelta(hours=1)
    if period is Period.DAY:
        return start + timedelta(days=1)
    if period is Period.WEEK:
        return start + timedelta(days=7)

    year, month = (start.year + 1, 1) if start.month == 12 else (start.year, start.month + 1)
    day = min(start.day, calendar.monthrange(year, month)[1])
    return start.replace(year=year, month=month, day=day)


def window_start_for(period: Period | str, now: datetime | None = None) -> datetime:
    """Start of the window of ``period`` that contains ``now``."""
    period = Period(period)
    now = _as_utc(now or utc_now())
    if period is Period.HOUR:
        return now.replace(minute=0, second=0, microsecond=0)

    midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period is Period.DAY:
        return midnight
    if period is Period.WEEK:
        # weekday(): Monday=0 ... Sunday=6
        return midnight - timedelta(days=(midnight.weekday() + 1) % 7)
    return midnight.replace(day=1)


def due_periods(now: datetime | None = None) -> list[Period]:
    """Periods a scheduler tick at ``now`` should aggregate.

    Hourly always; daily at 00 UTC; weekly on Sunday 00 UTC; monthly on the
    first of the month at 00 UTC.
    """
    now = _as_utc(now or utc_now())
    due = [Period.HOUR]
    if now.hour == 0:
        due.append(Period.DAY)
        if now.weekday() == 6:
            due.append(Period.WEEK)
        if now.day == 1:
            due.append(Period.MONTH)
    return due
