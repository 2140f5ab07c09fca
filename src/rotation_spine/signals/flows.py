"""
Quarter flow derivations.

Turns the raw holdings of one :class:`QuarterSignals` into the flows the
scorer and edge builder consume: per-holder position changes between
quarter-end snapshots, the shares dumped during the quarter, and the
uptake observed among 13F filers, fund holdings and option positions in
the same and next quarter.

Snapshots are taken at three quarter ends::

    prev_end ──── same quarter ──── q_end ──── next quarter ──── next_end
       P                              Q                           N

    same delta = Q - P        next delta = N - Q

A holder without a position on a snapshot date holds zero on that date.
"""

from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta

from rotation_spine.core.hashing import content_hash
from rotation_spine.core.quarters import quarter_bounds, shift_quarter_end
from rotation_spine.signals.models import (
    FundHolding,
    FundSource,
    HoldingPosition,
    QuarterSignals,
    SignalBundle,
)

FUND_BASELINE_DAYS = 31


@dataclass(frozen=True, slots=True)
class HolderDelta:
    holder_cik: str
    cusip: str
    before: float
    after: float
    option_net_before: float = 0.0
    option_net_after: float = 0.0

    @property
    def delta(self) -> float:
        return self.after - self.before

    @property
    def option_delta(self) -> float:
        return self.option_net_after - self.option_net_before


@dataclass(frozen=True, slots=True)
class QuarterFlows:
    prev_end: date
    quarter_end: date
    next_end: date
    same: tuple[HolderDelta, ...]
    following: tuple[HolderDelta, ...]
    dumped_shares: float
    positive_same: float
    positive_next: float
    options_same: float
    options_next: float
    fund_same: float
    fund_next: float
    fund_passive_same: float
    fund_passive_next: float

    @property
    def holdings_delta(self) -> float:
        return sum(d.delta for d in self.same)

    @property
    def total_uptake(self) -> float:
        return self.positive_same + self.positive_next + self.fund_same + self.fund_next

    @property
    def passive_uptake(self) -> float:
        return self.fund_passive_same + self.fund_passive_next


def uptake_ratio(part: float, dumped: float) -> float:
    """``part / dumped`` clamped to [0, 1]; zero when nothing was dumped."""
    if dumped <= 0:
        return 0.0
    return min(max(part / dumped, 0.0), 1.0)


def _snapshots(holdings: tuple[HoldingPosition, ...]) -> dict[tuple[str, str, date], tuple[float, float]]:
    """Aggregate lines to (holder, cusip, asof) → (shares, call − put)."""
    out: dict[tuple[str, str, date], list[float]] = defaultdict(lambda: [0.0, 0.0])
    for h in holdings:
        slot = out[(h.holder_cik, h.cusip, h.asof)]
        slot[0] += h.shares
        slot[1] += h.opt_call_shares - h.opt_put_shares
    return {k: (v[0], v[1]) for k, v in out.items()}


def _deltas(
    snaps: dict[tuple[str, str, date], tuple[float, float]], before: date, after: date
) -> tuple[HolderDelta, ...]:
    keys = sorted({(holder, cusip) for holder, cusip, asof in snaps if asof in (before, after)})
    out = []
    for holder, cusip in keys:
        b = snaps.get((holder, cusip, before), (0.0, 0.0))
        a = snaps.get((holder, cusip, after), (0.0, 0.0))
        out.append(HolderDelta(holder, cusip, b[0], a[0], b[1], a[1]))
    return tuple(out)


def _fund_increase(
    funds: tuple[FundHolding, ...], before: date, after: date
) -> tuple[float, float]:
    """Total and ETF-only positive fund share change between the last observations ≤ each date."""
    latest_before: dict[tuple[str, str], FundHolding] = {}
    latest_after: dict[tuple[str, str], FundHolding] = {}
    for f in sorted(funds, key=lambda x: x.asof):
        key = (f.holder_id, f.cusip)
        if f.asof <= before:
            latest_before[key] = f
        if f.asof <= after:
            latest_after[key] = f
    total = passive = 0.0
    for key in sorted(latest_after):
        end = latest_after[key]
        start = latest_before.get(key)
        change = end.shares - (start.shares if start is not None else 0.0)
        if change > 0:
            total += change
            if end.source is FundSource.ETF:
                passive += change
    return total, passive


def compute_quarter_flows(signals: QuarterSignals) -> QuarterFlows:
    q_start, q_end = quarter_bounds(signals.label)
    prev_end = q_start - timedelta(days=1)
    next_end = shift_quarter_end(q_end, 1)

    snaps = _snapshots(signals.holdings)
    same = _deltas(snaps, prev_end, q_end)
    following = _deltas(snaps, q_end, next_end)

    baseline = q_start - timedelta(days=FUND_BASELINE_DAYS)
    fund_same, passive_same = _fund_increase(signals.fund_holdings, baseline, q_end)
    fund_next_total, passive_next_total = _fund_increase(signals.fund_holdings, q_end, next_end)

    return QuarterFlows(
        prev_end=prev_end,
        quarter_end=q_end,
        next_end=next_end,
        same=same,
        following=following,
        dumped_shares=sum(-d.delta for d in same if d.delta < 0),
        positive_same=sum(d.delta for d in same if d.delta > 0),
        positive_next=sum(d.delta for d in following if d.delta > 0),
        options_same=sum(d.option_delta for d in same if d.option_delta > 0),
        options_next=sum(d.option_delta for d in following if d.option_delta > 0),
        fund_same=fund_same,
        fund_next=fund_next_total,
        fund_passive_same=passive_same,
        fund_passive_next=passive_next_total,
    )


def short_interest_level(signals: QuarterSignals) -> float | None:
    """Last settled short interest at or before the quarter end."""
    _, q_end = quarter_bounds(signals.label)
    eligible = [p for p in signals.short_interest if p.settle_date <= q_end]
    if not eligible:
        return None
    return max(eligible, key=lambda p: p.settle_date).short_shares


def build_bundle(signals: QuarterSignals, flows: QuarterFlows) -> SignalBundle:
    """Reduce a quarter's signals to its persisted :class:`SignalBundle`."""
    values = {
        "holdings_delta": flows.holdings_delta,
        "dumped_shares": flows.dumped_shares,
        "positive_same": flows.positive_same,
        "positive_next": flows.positive_next,
        "short_interest_level": short_interest_level(signals),
        "ats_weekly_volume": sum(
            w.shares for w in signals.ats_weekly if signals.start <= w.week_end <= signals.end
        ),
        "options_overlay": uptake_ratio(flows.options_same, flows.dumped_shares),
        "uhf_overlay": uptake_ratio(flows.fund_same, flows.dumped_shares),
        "filings_count": len(signals.filings),
        "positions_count": len(signals.holdings),
    }
    return SignalBundle(
        issuer_cik=signals.issuer.cik,
        period=signals.label,
        period_start=signals.start,
        period_end=signals.end,
        content_hash=content_hash({"issuer": signals.issuer.cik, "period": signals.label, **values}),
        **values,
    )


__all__ = [
    "HolderDelta",
    "QuarterFlows",
    "uptake_ratio",
    "compute_quarter_flows",
    "short_interest_level",
    "build_bundle",
]
