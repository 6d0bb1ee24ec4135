"""
Usage period boundaries for subscription limits.

Weekly periods are consecutive 7-day windows starting at the subscription's
``started_at``; monthly periods run between calendar-month anniversaries of
``started_at`` (the day is clamped to the month's last day, so a subscription
started on Jan 31 rolls over on Feb 28/29, Mar 31, ...). Counters are never
reset by a job: a stored counter only counts if it was last written inside
the current period.
"""
import calendar
from datetime import datetime, timedelta
from typing import Optional

WEEK = timedelta(days=7)


def add_months(moment: datetime, months: int) -> datetime:
    """Shift by whole calendar months, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def current_week_start(started_at: datetime, now: datetime) -> datetime:
    if now <= started_at:
        return started_at
    return started_at + WEEK * ((now - started_at) // WEEK)


def current_month_start(started_at: datetime, now: datetime) -> datetime:
    if now <= started_at:
        return started_at
    months = (now.year - started_at.year) * 12 + (now.month - started_at.month)
    if add_months(started_at, months) > now:
        months -= 1
    return add_months(started_at, max(months, 0))


def next_week_start(started_at: datetime, now: datetime) -> datetime:
    return current_week_start(started_at, now) + WEEK


def next_month_start(started_at: datetime, now: datetime) -> datetime:
    period_start = current_month_start(started_at, now)
    months = (period_start.year - started_at.year) * 12 + (period_start.month - started_at.month)
    return add_months(started_at, months + 1)


def used_in_period(counter: Optional[int], written_at: Optional[datetime], period_start: datetime) -> int:
    """
    Usage that still counts in the period beginning at ``period_start``.

    ``written_at`` is when the counter was last written; callers fall back to
    ``started_at`` for counters no increment has touched. A counter written
    before the period began belongs to an earlier period and counts as zero.
    """
    if not counter:
        return 0
    if written_at is not None and written_at < period_start:
        return 0
    return counter
