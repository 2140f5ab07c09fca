"""
Index-timing penalty.

Passive rebalancing around index reconstitution looks like rotation in the
holdings data.  For every index window that overlaps the quarter *and*
contains the dump anchor, the penalty grows with the share of the quarter
the window covers and with the passive share of uptake::

    penalty = min(Σ overlap_days / quarter_days × clamp(passive, 0, 1) × base, cap)

Durations count days inclusively on both ends.

Examples:
    >>> w = IndexWindow("russell", "recon", date(2024, 6, 1), date(2024, 6, 30))
    >>> round(index_timing_penalty(date(2024, 4, 1), date(2024, 6, 30), date(2024, 6, 20), [w], 1.0), 4)
    0.1648
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date

from rotation_spine.core.settings import IndexPenaltySettings
from rotation_spine.signals.models import IndexWindow


def clamp(value: float, low: float, high: float) -> float:
    return min(max(value, low), high)


def overlap_days(a_start: date, a_end: date, b_start: date, b_end: date) -> int:
    """Inclusive day count of ``[a_start, a_end] ∩ [b_start, b_end]`` (0 if disjoint)."""
    start = max(a_start, b_start)
    end = min(a_end, b_end)
    return max((end - start).days + 1, 0)


def index_timing_penalty(
    quarter_start: date,
    quarter_end: date,
    anchor: date,
    windows: Iterable[IndexWindow],
    passive_share: float,
    settings: IndexPenaltySettings | None = None,
) -> float:
    settings = settings or IndexPenaltySettings()
    quarter_days = (quarter_end - quarter_start).days + 1
    if quarter_days <= 0:
        return 0.0
    passive = clamp(passive_share, 0.0, 1.0)
    total = 0.0
    for window in windows:
        if not (window.window_start <= anchor <= window.window_end):
            continue
        days = overlap_days(quarter_start, quarter_end, window.window_start, window.window_end)
        if days == 0:
            continue
        total += (days / quarter_days) * passive * settings.base_penalty
    return min(total, settings.max_penalty)


__all__ = ["clamp", "overlap_days", "index_timing_penalty"]
