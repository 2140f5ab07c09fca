"""
Sub-scorers feeding :class:`~rotation_spine.scoring.composer.ScoreComposer`.

All terms are derived from one quarter's :class:`QuarterSignals` and its
:class:`QuarterFlows`; none performs I/O.

* :func:`uptake_terms`       → u/uhf/opt same and next, each in [0, 1]
* :func:`uptake_breakdown`   → passive (ETF) vs active share of uptake
* :func:`short_relief`       → relative fall in short interest across the quarter end
* :func:`options_flow_terms` → pre/post-anchor options activity around a dump
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, timedelta

from rotation_spine.core.settings import OptionsFlowWeights
from rotation_spine.scoring.index_penalty import clamp
from rotation_spine.signals.flows import QuarterFlows, uptake_ratio
from rotation_spine.signals.models import OptionsFlowDay, ShortInterestPoint

PRE_DAYS = 10
POST_DAYS = 10
BASELINE_DAYS = 30
PUT_SURGE_RATIO = 2.0
CALL_BUILDUP_RATIO = 1.5
UNUSUAL_CAP = 5


@dataclass(frozen=True, slots=True)
class UptakeTerms:
    u_same: float = 0.0
    u_next: float = 0.0
    uhf_same: float = 0.0
    uhf_next: float = 0.0
    opt_same: float = 0.0
    opt_next: float = 0.0

    @property
    def any_uptake(self) -> bool:
        return self.u_same > 0 or self.u_next > 0 or self.uhf_same > 0 or self.uhf_next > 0


@dataclass(frozen=True, slots=True)
class UptakeBreakdown:
    passive: float
    active: float


def uptake_terms(flows: QuarterFlows) -> UptakeTerms:
    dumped = flows.dumped_shares
    return UptakeTerms(
        u_same=uptake_ratio(flows.positive_same, dumped),
        u_next=uptake_ratio(flows.positive_next, dumped),
        uhf_same=uptake_ratio(flows.fund_same, dumped),
        uhf_next=uptake_ratio(flows.fund_next, dumped),
        opt_same=uptake_ratio(flows.options_same, dumped),
        opt_next=uptake_ratio(flows.options_next, dumped),
    )


def uptake_breakdown(flows: QuarterFlows) -> UptakeBreakdown:
    """Passive share of total uptake; both shares are 0 when nothing was taken up."""
    total = flows.total_uptake
    if total <= 0:
        return UptakeBreakdown(passive=0.0, active=0.0)
    passive = clamp(flows.passive_uptake / total, 0.0, 1.0)
    return UptakeBreakdown(passive=passive, active=1.0 - passive)


def short_relief(points: Iterable[ShortInterestPoint], quarter_end: date) -> float:
    before: ShortInterestPoint | None = None
    after: ShortInterestPoint | None = None
    for point in sorted(points, key=lambda p: p.settle_date):
        if point.settle_date <= quarter_end:
            before = point
        if point.settle_date >= quarter_end and after is None:
            after = point
    if before is None or after is None:
        return 0.0
    before_short = max(before.short_shares, 0.0)
    after_short = max(after.short_shares, 0.0)
    if before_short <= 0:
        return 0.0
    return clamp(max(before_short - after_short, 0.0) / before_short, 0.0, 1.0)


@dataclass(frozen=True, slots=True)
class OptionsFlowTerms:
    put_surge: bool = False
    pc_ratio: float | None = None
    call_buildup: bool = False
    unusual_count: int = 0
    confidence: float = 0.0

    def score(self, weights: OptionsFlowWeights) -> float:
        total = 0.0
        if self.put_surge:
            total += weights.pre_dump_put_surge
        if self.pc_ratio is not None:
            normalized = min(self.pc_ratio - 1.0, 1.0)
            if normalized > 0:
                total += weights.pre_dump_pc_ratio * normalized
        if self.call_buildup:
            total += weights.post_dump_call_buildup
        total += weights.unusual_activity * min(self.unusual_count, UNUSUAL_CAP)
        return total

    def enhancement(self, weights: OptionsFlowWeights) -> float:
        """Confidence-weighted contribution; 0 at or below the confidence floor."""
        if self.confidence <= weights.min_confidence:
            return 0.0
        return self.score(weights) * self.confidence


def _mean(values: list[float]) -> float | None:
    return sum(values) / len(values) if values else None


def options_flow_terms(days: Iterable[OptionsFlowDay], anchor: date) -> OptionsFlowTerms:
    """Options activity in the 10 days either side of *anchor*.

    Confidence is the fraction of those 20 days with an observation.
    """
    days = list(days)
    pre_start = anchor - timedelta(days=PRE_DAYS)
    baseline_start = pre_start - timedelta(days=BASELINE_DAYS)
    post_end = anchor + timedelta(days=POST_DAYS)

    baseline = [d for d in days if baseline_start <= d.trade_date < pre_start]
    pre = [d for d in days if pre_start <= d.trade_date < anchor]
    post = [d for d in days if anchor < d.trade_date <= post_end]
    if not pre and not post:
        return OptionsFlowTerms()

    pre_puts = _mean([d.put_volume for d in pre])
    base_puts = _mean([d.put_volume for d in baseline])
    put_surge = (
        pre_puts is not None and base_puts is not None and base_puts > 0 and pre_puts >= PUT_SURGE_RATIO * base_puts
    )

    pre_calls_total = sum(d.call_volume for d in pre)
    pc_ratio = sum(d.put_volume for d in pre) / pre_calls_total if pre_calls_total > 0 else None

    pre_calls = _mean([d.call_volume for d in pre])
    post_calls = _mean([d.call_volume for d in post])
    call_buildup = (
        pre_calls is not None and post_calls is not None and pre_calls > 0 and post_calls >= CALL_BUILDUP_RATIO * pre_calls
    )

    return OptionsFlowTerms(
        put_surge=put_surge,
        pc_ratio=pc_ratio,
        call_buildup=call_buildup,
        unusual_count=sum(d.unusual_count for d in pre + post),
        confidence=min((len(pre) + len(post)) / (PRE_DAYS + POST_DAYS), 1.0),
    )


__all__ = [
    "UptakeTerms",
    "UptakeBreakdown",
    "OptionsFlowTerms",
    "uptake_terms",
    "uptake_breakdown",
    "short_relief",
    "options_flow_terms",
]
