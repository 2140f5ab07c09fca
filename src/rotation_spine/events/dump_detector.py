"""
DumpEventDetector: find step-downs in a holder's position series.

The core scan works on fractional position sizes.  A *run* is a maximal
stretch of consecutive observations at or above ``threshold``; the first
observation after a run that falls below it is the anchor of a dump
event.  The run's length and mean are the pre-period statistics and
``delta = post - mean(pre)``.  A drop with no preceding run is ignored,
and every qualifying transition yields its own event.

    >>> [s.index for s in detect_step_downs([0.6, 0.55, 0.52, 0.3], 0.5)]
    [3]

For 13F holdings and 13G/13D stakes the fractional size of observation
``i`` is its value divided by the running peak up to ``i``.
"""

from __future__ import annotations

import statistics
from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date

from rotation_spine.core.hashing import cluster_id_for, entity_id_for
from rotation_spine.core.logging import get_logger
from rotation_spine.core.settings import DetectorSettings
from rotation_spine.signals.models import QuarterSignals

logger = get_logger(__name__)

MAD_SCALE = 1.4826


@dataclass(frozen=True, slots=True)
class StepDown:
    index: int
    pre_length: int
    pre_mean: float
    post_value: float

    @property
    def delta(self) -> float:
        return self.post_value - self.pre_mean


def detect_step_downs(values: Sequence[float], threshold: float = 0.5) -> list[StepDown]:
    out: list[StepDown] = []
    run_length = 0
    run_sum = 0.0
    for i, value in enumerate(values):
        if value >= threshold:
            run_length += 1
            run_sum += value
            continue
        if run_length > 0:
            out.append(StepDown(index=i, pre_length=run_length, pre_mean=run_sum / run_length, post_value=value))
        run_length = 0
        run_sum = 0.0
    return out


def peak_normalized(values: Sequence[float]) -> list[float]:
    """Each value divided by the running maximum so far (0 while the peak is 0)."""
    out: list[float] = []
    peak = 0.0
    for value in values:
        peak = max(peak, value)
        out.append(value / peak if peak > 0 else 0.0)
    return out


def robust_dump_z(history: Sequence[float], current: float, settings: DetectorSettings) -> float:
    """Magnitude of a relative drop against the holder's own history.

    Uses median/MAD; with fewer than ``min_history`` observations (or zero
    dispersion) falls back to 2.0 for drops of at least ``min_dump_pct``.
    """
    if len(history) >= settings.min_history:
        median = statistics.median(history)
        mad = statistics.median(abs(x - median) for x in history)
        if mad > 0:
            return max(0.0, -(current - median) / (mad * MAD_SCALE))
    return 2.0 if abs(current) >= settings.min_dump_pct and current < 0 else 0.0


def _relative_changes(values: Sequence[float]) -> list[float]:
    return [(b - a) / a for a, b in zip(values, values[1:], strict=False) if a > 0]


@dataclass(frozen=True, slots=True)
class DumpCluster:
    cluster_id: str
    issuer_cik: str
    period: str
    seller_entity_id: str
    seller_cik: str
    cusip: str
    anchor_date: date
    delta: float
    pre_mean: float
    pre_length: int
    post_value: float
    dump_z: float
    shares_sold: float
    source: str
    accessions: tuple[str, ...] = ()

    def to_row(self, composite: float = 0.0) -> dict:
        return {
            "cluster_id": self.cluster_id,
            "issuer_cik": self.issuer_cik,
            "period": self.period,
            "seller_entity_id": self.seller_entity_id,
            "seller_cik": self.seller_cik,
            "cusip": self.cusip,
            "anchor_date": self.anchor_date.isoformat(),
            "delta": self.delta,
            "pre_mean": self.pre_mean,
            "pre_length": self.pre_length,
            "post_value": self.post_value,
            "dump_z": self.dump_z,
            "shares_sold": self.shares_sold,
            "source": self.source,
            "composite": composite,
            "accessions": list(self.accessions),
        }


_SOURCE_PRIORITY = {"holdings": 0, "beneficial": 1}


@dataclass(frozen=True, slots=True)
class _Observation:
    asof: date
    value: float
    accession: str | None


class DumpEventDetector:
    def __init__(self, settings: DetectorSettings):
        self.settings = settings

    def detect(self, signals: QuarterSignals) -> list[DumpCluster]:
        """Clusters anchored inside the sub-range, sorted by (anchor, seller, cusip)."""
        series: dict[tuple[str, str, str], dict[date, list]] = defaultdict(dict)
        for h in signals.holdings:
            slot = series[("holdings", h.holder_cik, h.cusip)].setdefault(h.asof, [0.0, []])
            slot[0] += h.shares
            if h.accession:
                slot[1].append(h.accession)

        stake_cusip = signals.issuer.cusips[0] if signals.issuer.cusips else ""
        for b in signals.beneficial:
            level = b.pct_of_class if b.pct_of_class is not None else b.shares_est
            if level is None:
                continue
            slot = series[("beneficial", b.holder_cik, stake_cusip)].setdefault(b.event_date, [0.0, []])
            slot[0] = max(slot[0], level)
            if b.accession:
                slot[1].append(b.accession)

        # one cluster per (seller, cusip, anchor); 13F holdings win over 13G/13D snapshots
        found: dict[str, DumpCluster] = {}
        ordered = sorted(series.items(), key=lambda item: (_SOURCE_PRIORITY[item[0][0]], item[0][1:]))
        for (source, holder, cusip), points in ordered:
            observations = [
                _Observation(asof, value, accessions[-1] if accessions else None)
                for asof, (value, accessions) in sorted(points.items())
            ]
            for cluster in self._clusters_for(signals, source, holder, cusip, observations):
                found.setdefault(cluster.cluster_id, cluster)

        clusters = sorted(found.values(), key=lambda c: (c.anchor_date, c.seller_cik, c.cusip, c.cluster_id))
        logger.debug("detector.clusters", issuer=signals.issuer.cik, period=signals.label, count=len(clusters))
        return clusters

    def _clusters_for(
        self,
        signals: QuarterSignals,
        source: str,
        holder: str,
        cusip: str,
        observations: list[_Observation],
    ) -> list[DumpCluster]:
        raw = [o.value for o in observations]
        normalized = peak_normalized(raw)
        seller_entity = entity_id_for(holder, None, "manager")
        out = []
        for step in detect_step_downs(normalized, self.settings.threshold):
            anchor = observations[step.index]
            if not (signals.start <= anchor.asof <= signals.end):
                continue
            previous = observations[step.index - 1]
            changes = _relative_changes(raw[: step.index + 1])
            current = changes[-1] if changes else 0.0
            dump_z = robust_dump_z(changes[:-1], current, self.settings)
            accessions = tuple(a for a in (previous.accession, anchor.accession) if a)
            out.append(
                DumpCluster(
                    cluster_id=cluster_id_for(signals.issuer.cik, seller_entity, cusip, anchor.asof.isoformat()),
                    issuer_cik=signals.issuer.cik,
                    period=signals.label,
                    seller_entity_id=seller_entity,
                    seller_cik=holder,
                    cusip=cusip,
                    anchor_date=anchor.asof,
                    delta=step.delta,
                    pre_mean=step.pre_mean,
                    pre_length=step.pre_length,
                    post_value=step.post_value,
                    dump_z=dump_z,
                    shares_sold=max(previous.value - anchor.value, 0.0) if source == "holdings" else 0.0,
                    source=source,
                    accessions=accessions,
                )
            )
        return out


__all__ = [
    "StepDown",
    "detect_step_downs",
    "peak_normalized",
    "robust_dump_z",
    "DumpCluster",
    "DumpEventDetector",
]
