"""
Calendar-month helpers shared by the scoring and reporting services.

Months are represented either as the first day of the month (`date`) or as a
`YYYY-MM` key string; the helpers convert between the two.
"""

from datetime import date, timedelta
from typing import List


def month_start(day: date) -> date:
    """First day of the month containing `day`."""
    return day.replace(day=1)


def add_months(day: date, months: int) -> date:
    """First day of the month `months` after the month containing `day`."""
    index = day.year * 12 + (day.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def month_end(day: date) -> date:
    """Last day of the month containing `day`."""
    return add_months(day, 1) - timedelta(days=1)


def month_key(day: date) -> str:
    """YYYY-MM key of the month containing `day`."""
    return day.strftime("%Y-%m")


def parse_month_key(key: str) -> date:
    """First day of the month named by a YYYY-MM key."""
    year, month = key.split("-")
    return date(int(year), int(month), 1)


def months_between(start: date, end: date) -> int:
    """Whole calendar months from the month of `start` to the month of `end`."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def month_range(start: date, end: date) -> List[date]:
    """
    First days of every month from the month of `start` through the month
    of `end`, inclusive. Empty when `end` precedes `start`.
    """
    count = months_between(start, end)
    return [add_months(month_start(start), i) for i in range(count + 1)]
