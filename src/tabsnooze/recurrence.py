"""
Next-occurrence calculation for recurring snoozes.

All arithmetic happens on local-naive datetimes, so "09:00" means 09:00 on
the wall clock of the machine, whatever its offset that day. Weekday numbers
follow 0 = Sunday ... 6 = Saturday.

Monthly rules clamp day_of_month to the length of the month (dateutil's
relativedelta convention): day 31 fires on the 30th in April and on the
28th or 29th in February.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from .item import RecurrencePattern
from .shared import js_weekday, local_to_ms, ms_to_local, parse_hhmm

SATURDAY = 6
SUNDAY = 0


def _daily(candidate: datetime, now: datetime) -> datetime:
    if candidate <= now:
        candidate += timedelta(days=1)
    return candidate


def _weekdays(candidate: datetime, now: datetime) -> datetime:
    # always the next calendar day, even when today's time is still ahead
    candidate += timedelta(days=1)
    while js_weekday(candidate) in (SATURDAY, SUNDAY):
        candidate += timedelta(days=1)
    return candidate


def _weekly(
    candidate: datetime, now: datetime, days_of_week: list[int]
) -> Optional[datetime]:
    days = sorted({d for d in days_of_week if 0 <= d <= 6})
    if not days:
        return None

    today = js_weekday(now)
    later = [d for d in days if d > today]
    # today never counts, even when its time of day is still ahead
    if later:
        days_to_add = later[0] - today
    else:
        days_to_add = 7 - today + days[0]
    return candidate + timedelta(days=days_to_add)


def _monthly(
    candidate: datetime, now: datetime, day_of_month: Optional[int]
) -> Optional[datetime]:
    day = day_of_month or 1
    if day < 1:
        return None
    candidate += relativedelta(day=day)
    if candidate <= now:
        candidate += relativedelta(months=1, day=day)
    return candidate


def next_occurrence(pattern: RecurrencePattern, now: int) -> Optional[int]:
    """
    Return the next wake time (epoch ms) for pattern after now, or None.

    None means the rule is dead (end_date reached) or cannot be evaluated
    (unknown type, malformed time, empty days_of_week for weekly/custom).
    This never raises.
    """
    if pattern is None:
        return None
    if pattern.end_date is not None and now >= pattern.end_date:
        return None

    hhmm = parse_hhmm(pattern.time)
    if hhmm is None:
        return None

    try:
        current = ms_to_local(now)
        candidate = current.replace(
            hour=hhmm[0], minute=hhmm[1], second=0, microsecond=0
        )

        if pattern.type == "daily":
            result = _daily(candidate, current)
        elif pattern.type == "weekdays":
            result = _weekdays(candidate, current)
        elif pattern.type in ("weekly", "custom"):
            result = _weekly(candidate, current, pattern.days_of_week or [])
        elif pattern.type == "monthly":
            result = _monthly(candidate, current, pattern.day_of_month)
        else:
            result = None
    except (OverflowError, ValueError, OSError):
        return None

    if result is None:
        return None
    return local_to_ms(result)
