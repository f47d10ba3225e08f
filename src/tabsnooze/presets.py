"""
Snooze presets ("tonight", "next week", ...) driven by DelaySettings.
"""

from __future__ import annotations

import random
from datetime import datetime, timedelta

from dateutil.relativedelta import relativedelta, weekday as rd_weekday

from tabsnooze.tabsnooze_env import DelaySettings
from .shared import WEEKDAY_NAMES, js_weekday, local_to_ms, ms_to_local, parse_hhmm

PRESETS = (
    "later_today",
    "tonight",
    "tomorrow",
    "weekend",
    "next_week",
    "next_month",
    "someday",
)


def _at(day: datetime, hhmm: str) -> datetime:
    hours, minutes = parse_hhmm(hhmm)
    return day.replace(hour=hours, minute=minutes, second=0, microsecond=0)


def _same_weekday_next_month(day: datetime) -> datetime:
    """The same nth weekday of the next month, or its last such weekday."""
    nth = (day.day - 1) // 7 + 1
    wd = rd_weekday(day.weekday())
    target = day + relativedelta(months=1, day=1, weekday=wd(nth))
    expected_month = (day + relativedelta(months=1)).month
    if target.month != expected_month:
        target = day + relativedelta(months=1, day=31, weekday=wd(-1))
    return target


def preset_wake_time(
    name: str,
    settings: DelaySettings,
    now: int,
    rng: random.Random | None = None,
) -> int:
    """
    Return the wake time (epoch ms) for preset name, relative to now.

    Raises KeyError for unknown presets.
    """
    current = ms_to_local(now).replace(second=0, microsecond=0)
    today = current.replace(hour=0, minute=0)

    if name == "later_today":
        result = current + timedelta(hours=settings.later_today_hours)
    elif name == "tonight":
        result = _at(today, settings.tonight_time)
        if result <= current:
            result += timedelta(days=1)
    elif name == "tomorrow":
        result = _at(today + timedelta(days=1), settings.tomorrow_time)
    elif name == "weekend":
        target = WEEKDAY_NAMES.index(settings.weekend_day)
        days = (target - js_weekday(today)) % 7
        result = _at(today + timedelta(days=days), settings.weekend_time)
        if result <= current:
            result += timedelta(days=7)
    elif name == "next_week":
        days = (settings.next_week_day - js_weekday(today)) % 7 or 7
        result = _at(today + timedelta(days=days), settings.next_week_time)
    elif name == "next_month":
        if settings.next_month_same_day:
            day = today + relativedelta(months=1)
        else:
            day = _same_weekday_next_month(today)
        result = _at(day, settings.tomorrow_time)
    elif name == "someday":
        rng = rng or random.Random()
        low = settings.someday_min_months
        high = max(settings.someday_max_months, low)
        day = today + relativedelta(months=rng.randint(low, high))
        result = _at(day, settings.tomorrow_time)
    else:
        raise KeyError(name)
    return local_to_ms(result)
