"""
Quarter calendar.

The fan-out controller partitions every requested date range with
:func:`partition_quarters`: consecutive, quarter-aligned sub-ranges clipped
to the requested ``[start, end]``.  The remaining helpers derive the
per-quarter fetch schedule (FINRA settlement dates, ATS week endings,
N-PORT months) and the end-of-window test used by scoring.

Examples:
    >>> [s.label for s in partition_quarters(date(2024, 2, 10), date(2024, 8, 15))]
    ['2024Q1', '2024Q2', '2024Q3']
    >>> quarter_bounds("2024Q2")
    (datetime.date(2024, 4, 1), datetime.date(2024, 6, 30))
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, timedelta

_QUARTER_RE = re.compile(r"^(\d{4})Q([1-4])$")


@dataclass(frozen=True, slots=True)
class SubRange:
    """One quarter-aligned slice of a requested range (both ends inclusive)."""

    label: str
    start: date
    end: date

    @property
    def key(self) -> str:
        return f"{self.start.isoformat()}:{self.end.isoformat()}"

    @property
    def quarter_start(self) -> date:
        return quarter_bounds(self.label)[0]

    @property
    def quarter_end(self) -> date:
        return quarter_bounds(self.label)[1]

    @property
    def days(self) -> int:
        return (self.end - self.start).days + 1


def quarter_label(day: date) -> str:
    return f"{day.year}Q{(day.month - 1) // 3 + 1}"


def quarter_bounds(label: str) -> tuple[date, date]:
    """Return the first and last day of quarter *label* (``YYYYQn``)."""
    match = _QUARTER_RE.match(label)
    if not match:
        raise ValueError(f"Invalid quarter label: {label!r}")
    year, q = int(match.group(1)), int(match.group(2))
    start_month = (q - 1) * 3 + 1
    end_month = start_month + 2
    return (
        date(year, start_month, 1),
        date(year, end_month, calendar.monthrange(year, end_month)[1]),
    )


def partition_quarters(start: date, end: date) -> list[SubRange]:
    """Split ``[start, end]`` into consecutive quarter sub-ranges.

    Returns an empty list when ``end < start``.
    """
    parts: list[SubRange] = []
    cursor = start
    while cursor <= end:
        label = quarter_label(cursor)
        _, q_end = quarter_bounds(label)
        parts.append(SubRange(label=label, start=cursor, end=min(q_end, end)))
        cursor = q_end + timedelta(days=1)
    return parts


def resolve_quarter_range(start: date, end: date) -> list[str]:
    return [part.label for part in partition_quarters(start, end)]


def shift_quarter_end(day: date, quarters: int) -> date:
    """Last day of the quarter *quarters* away from the one containing *day*."""
    _, q_end = quarter_bounds(quarter_label(day))
    month_index = q_end.year * 12 + (q_end.month - 1) + quarters * 3
    year, month = divmod(month_index, 12)
    month += 1
    return date(year, month, calendar.monthrange(year, month)[1])


def settlement_dates(start: date, end: date) -> list[date]:
    """FINRA short-interest settlement dates (15th and month end) in range."""
    out: list[date] = []
    for first in _month_starts(start, end):
        mid = first.replace(day=15)
        last = first.replace(day=calendar.monthrange(first.year, first.month)[1])
        for candidate in (mid, last):
            if start <= candidate <= end:
                out.append(candidate)
    return out


def week_ending_fridays(start: date, end: date) -> list[date]:
    """Week-ending Fridays in range (FINRA ATS weekly publication keys)."""
    current = start + timedelta(days=(4 - start.weekday()) % 7)
    out: list[date] = []
    while current <= end:
        out.append(current)
        current += timedelta(days=7)
    return out


def months_between(start: date, end: date) -> list[str]:
    return [first.strftime("%Y-%m") for first in _month_starts(start, end)]


def is_end_of_window(anchor: date, trading_days: int = 5) -> bool:
    """True when *anchor* falls within the last *trading_days* weekdays of its quarter."""
    if trading_days <= 0:
        return False
    _, q_end = quarter_bounds(quarter_label(anchor))
    remaining = 0
    cursor = anchor
    while cursor <= q_end:
        if cursor.weekday() < 5:
            remaining += 1
        cursor += timedelta(days=1)
    return anchor.weekday() < 5 and remaining <= trading_days


def _month_starts(start: date, end: date) -> list[date]:
    out: list[date] = []
    current = start.replace(day=1)
    while current <= end:
        out.append(current)
        if current.month == 12:
            current = date(current.year + 1, 1, 1)
        else:
            current = date(current.year, current.month + 1, 1)
    return out


__all__ = [
    "SubRange",
    "quarter_label",
    "quarter_bounds",
    "partition_quarters",
    "resolve_quarter_range",
    "shift_quarter_end",
    "settlement_dates",
    "week_ending_fridays",
    "months_between",
    "is_end_of_window",
]
