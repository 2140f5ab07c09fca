"""
EventStudyEngine: pre/post statistics around a dump anchor.

Window lengths are configured per signal (``event_study.windows``).  The
pre window is ``[anchor - pre_days, anchor)`` and the post window is
``[anchor, anchor + post_days]``; averages use only the observations
actually present.  A side with no observations makes the whole study
``insufficient_data`` with no numeric change.

The ``returns`` study additionally records abnormal-return metrics
indexed by trading observation from the anchor: CAR over [-5, +20],
calendar days to +20, max cumulative return and max drawdown over 65
observations, and cumulative totals at 5/10/20/40/65 observations.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any

from rotation_spine.core.errors import UnsupportedProviderError
from rotation_spine.core.settings import EventStudySettings, EventWindowSettings
from rotation_spine.events.dump_detector import DumpCluster
from rotation_spine.signals.models import QuarterSignals

STATUS_OK = "ok"
STATUS_INSUFFICIENT = "insufficient_data"

CAR_PRE = 5
CAR_POST = 20
PATH_LENGTH = 65
HORIZONS = (5, 10, 20, 40, 65)


@dataclass(frozen=True)
class EventStudyResult:
    cluster_id: str
    signal: str
    status: str
    pre_mean: float | None
    post_mean: float | None
    pre_count: int
    post_count: int
    metrics: dict[str, Any] = field(default_factory=dict)

    @property
    def change(self) -> float | None:
        if self.pre_mean is None or self.post_mean is None:
            return None
        return self.post_mean - self.pre_mean

    def to_row(self) -> dict:
        return {
            "cluster_id": self.cluster_id,
            "signal": self.signal,
            "status": self.status,
            "pre_mean": self.pre_mean,
            "post_mean": self.post_mean,
            "pre_count": self.pre_count,
            "post_count": self.post_count,
            "change": self.change,
            "metrics": dict(self.metrics),
        }


def window_means(
    points: Sequence[tuple[date, float | None]], anchor: date, window: EventWindowSettings
) -> tuple[float | None, float | None, int, int]:
    """Means of present values in the pre and post windows, with their counts."""
    pre_start = anchor - timedelta(days=window.pre_days)
    post_end = anchor + timedelta(days=window.post_days)
    pre = [v for d, v in points if v is not None and pre_start <= d < anchor]
    post = [v for d, v in points if v is not None and anchor <= d <= post_end]
    return (
        sum(pre) / len(pre) if pre else None,
        sum(post) / len(post) if post else None,
        len(pre),
        len(post),
    )


def abnormal_return_metrics(series: Sequence[tuple[date, float]], anchor: date) -> dict[str, Any]:
    """CAR and path metrics; empty when no observation falls on or after the anchor."""
    ordered = sorted(series)
    start = next((i for i, (d, _) in enumerate(ordered) if d >= anchor), None)
    if start is None:
        return {}
    values = [v for _, v in ordered]
    car_slice = values[max(start - CAR_PRE, 0) : start + CAR_POST + 1]
    metrics: dict[str, Any] = {"car_m5_p20": sum(car_slice)}
    if start + CAR_POST < len(ordered):
        metrics["tt_plus20_days"] = (ordered[start + CAR_POST][0] - ordered[start][0]).days

    path = values[start : start + PATH_LENGTH]
    cumulative = 0.0
    peak = 0.0
    max_ret = 0.0
    drawdown = 0.0
    for v in path:
        cumulative += v
        max_ret = max(max_ret, cumulative)
        peak = max(peak, cumulative)
        drawdown = min(drawdown, cumulative - peak)
    metrics["max_ret_w13"] = max_ret
    metrics["max_drawdown_w13"] = drawdown
    metrics["horizons"] = {str(h): sum(values[start : start + h]) for h in HORIZONS if start + h <= len(values)}
    return metrics


class EventStudyEngine:
    """Runs every configured per-signal study for a cluster."""

    def __init__(self, settings: EventStudySettings):
        self._series: dict[str, Callable[[DumpCluster, QuarterSignals], list[tuple[date, float | None]]]] = {
            "holdings": self._holdings_series,
            "returns": self._returns_series,
        }
        unknown = sorted(set(settings.windows) - set(self._series))
        if unknown:
            raise UnsupportedProviderError(unknown[0], list(self._series))
        self.windows = dict(sorted(settings.windows.items()))

    def study(self, cluster: DumpCluster, signals: QuarterSignals) -> list[EventStudyResult]:
        results = []
        for signal, window in self.windows.items():
            points = self._series[signal](cluster, signals)
            pre_mean, post_mean, pre_count, post_count = window_means(points, cluster.anchor_date, window)
            status = STATUS_OK if pre_count and post_count else STATUS_INSUFFICIENT
            metrics: dict[str, Any] = {}
            if signal == "returns" and status == STATUS_OK:
                metrics = abnormal_return_metrics([(d, v) for d, v in points if v is not None], cluster.anchor_date)
            results.append(
                EventStudyResult(
                    cluster_id=cluster.cluster_id,
                    signal=signal,
                    status=status,
                    pre_mean=pre_mean if status == STATUS_OK else None,
                    post_mean=post_mean if status == STATUS_OK else None,
                    pre_count=pre_count,
                    post_count=post_count,
                    metrics=metrics,
                )
            )
        return results

    @staticmethod
    def _holdings_series(cluster: DumpCluster, signals: QuarterSignals) -> list[tuple[date, float | None]]:
        if cluster.source == "beneficial":
            return sorted(
                (b.event_date, b.pct_of_class if b.pct_of_class is not None else b.shares_est)
                for b in signals.beneficial
                if b.holder_cik == cluster.seller_cik and (b.pct_of_class is not None or b.shares_est is not None)
            )
        totals: dict[date, float] = {}
        for h in signals.holdings:
            if h.holder_cik == cluster.seller_cik and h.cusip == cluster.cusip:
                totals[h.asof] = totals.get(h.asof, 0.0) + h.shares
        return sorted(totals.items())

    @staticmethod
    def _returns_series(cluster: DumpCluster, signals: QuarterSignals) -> list[tuple[date, float | None]]:
        return sorted((r.trade_date, r.abnormal) for r in signals.daily_returns)


__all__ = [
    "STATUS_OK",
    "STATUS_INSUFFICIENT",
    "EventStudyResult",
    "window_means",
    "abnormal_return_metrics",
    "EventStudyEngine",
]
