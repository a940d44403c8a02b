import logging
from datetime import date, datetime, timedelta
from typing import Optional

from models import IntervalUnit

logger = logging.getLogger(__name__)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def clamp_day(year: int, month: int, day: int) -> int:
    return min(day, days_in_month(year, month))


def project_onto_month(
    moment: datetime, year: int, month: int, day: Optional[int] = None
) -> datetime:
    desired_day = moment.day if day is None else day
    return moment.replace(
        year=year, month=month, day=clamp_day(year, month, desired_day)
    )


def _add_months(base: datetime, months: int) -> datetime:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return project_onto_month(base, year, month)


def add_interval(
    anchor: datetime,
    unit: Optional[IntervalUnit],
    offset: int,
    custom_day_count: Optional[int] = None,
) -> datetime:
    if unit == IntervalUnit.day:
        return anchor + timedelta(days=offset)
    if unit == IntervalUnit.week:
        return anchor + timedelta(weeks=offset)
    if unit == IntervalUnit.month:
        return _add_months(anchor, offset)
    if unit == IntervalUnit.quarter:
        return _add_months(anchor, 3 * offset)
    if unit == IntervalUnit.year:
        return _add_months(anchor, 12 * offset)
    if unit == IntervalUnit.custom and custom_day_count and custom_day_count > 0:
        return anchor + timedelta(days=custom_day_count * offset)

    logger.debug(
        f"interval_fallback: unit={unit} custom_day_count={custom_day_count} using=month"
    )
    return _add_months(anchor, offset)


def periods_between(anchor: datetime, target_year: int, target_month: int) -> int:
    total_months = (target_year - anchor.year) * 12 + (target_month - anchor.month)
    if total_months < 0:
        return 0
    return total_months


def years_between(anchor: datetime, target_year: int) -> int:
    return max(0, target_year - anchor.year)


def quarters_between(anchor: datetime, target_year: int, target_month: int) -> int:
    return periods_between(anchor, target_year, target_month) // 3


def month_start(moment: datetime) -> datetime:
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0)


def iter_month_starts(start: datetime, end: datetime):
    current = month_start(start)
    last = month_start(end)
    while current <= last:
        yield current
        current = _add_months(current, 1)
