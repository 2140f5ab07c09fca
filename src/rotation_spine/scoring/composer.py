"""
ScoreComposer - reduce one quarter's signals to a bounded rotation score.

Manifesto:
    A score is a pure function of its inputs.  The composer never reads the
    clock, never touches the store and never fetches; the same
    :class:`QuarterSignals` always reduce to the same :class:`ScoreRecord`,
    which is what makes recomputing a committed quarter byte-identical.

Architecture:
    ::

        QuarterSignals ─┬─ compute_quarter_flows ─┬─ uptake_terms ───────┐
                        │                         └─ uptake_breakdown ───┤ passive share
                        ├─ short_relief ──────────────────────────────────┤
                        ├─ index windows ── index_timing_penalty ─────────┤
                        └─ options flow ─── options_flow_terms ───────────┤
                                                                           ▼
        DumpCluster (dump_z, anchor) ─────────────────────────────► combine()
                                                                           │
                                              raw / normalizer, clamped ◄──┘

    Every cluster detected in the quarter is scored; the period record is
    the best cluster (highest composite, then earliest anchor, then
    cluster id).  A quarter without clusters gets an all-zero record so
    that committed quarters are always visible to the fan-out skip check.

Gate:
    The composite is 0 (``gated=False``) unless ``dump_z`` reaches the gate
    and at least one of u/uhf same/next is positive.  Anchors in the last
    trading days of their quarter damp the next-quarter terms.

Tags:
    - scoring
    - deterministic
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass
from datetime import date

from rotation_spine.core.logging import get_logger
from rotation_spine.core.quarters import is_end_of_window, quarter_bounds
from rotation_spine.core.settings import RotationSettings, ScoreSettings
from rotation_spine.events.dump_detector import DumpCluster
from rotation_spine.scoring.index_penalty import clamp, index_timing_penalty
from rotation_spine.scoring.overlays import (
    OptionsFlowTerms,
    UptakeTerms,
    options_flow_terms,
    short_relief,
    uptake_breakdown,
    uptake_terms,
)
from rotation_spine.signals.flows import QuarterFlows
from rotation_spine.signals.models import QuarterSignals

logger = get_logger(__name__)


@dataclass(frozen=True, slots=True)
class ScoreRecord:
    issuer_cik: str
    period: str
    ticker: str
    period_start: date
    period_end: date
    cluster_id: str | None = None
    anchor_date: date | None = None
    composite: float = 0.0
    raw_score: float = 0.0
    gated: bool = False
    dump_z: float = 0.0
    u_same: float = 0.0
    u_next: float = 0.0
    uhf_same: float = 0.0
    uhf_next: float = 0.0
    opt_same: float = 0.0
    opt_next: float = 0.0
    short_relief: float = 0.0
    index_penalty: float = 0.0
    options_flow: float = 0.0
    passive_share: float = 0.0
    eow: bool = False
    cluster_count: int = 0

    def to_row(self) -> dict:
        row = asdict(self)
        row["period_start"] = self.period_start.isoformat()
        row["period_end"] = self.period_end.isoformat()
        row["anchor_date"] = self.anchor_date.isoformat() if self.anchor_date else None
        return row


def combine(
    settings: ScoreSettings,
    *,
    dump_z: float,
    uptake: UptakeTerms,
    relief: float,
    penalty: float,
    eow: bool,
    options: OptionsFlowTerms | None = None,
) -> tuple[float, float, bool]:
    """Return ``(raw, composite, gated)`` for one set of terms."""
    if dump_z < settings.dump_gate_z or not uptake.any_uptake:
        return 0.0, 0.0, False

    w = settings.weights
    u_next_mult = settings.eow.u_next if eow else 1.0
    uhf_next_mult = settings.eow.uhf_next if eow else 1.0
    opt_next_mult = settings.eow.opt_next if eow else 1.0

    raw = (
        w.dump * dump_z
        + w.u_same * uptake.u_same
        + w.u_next * uptake.u_next * u_next_mult
        + w.uhf_same * uptake.uhf_same
        + w.uhf_next * uptake.uhf_next * uhf_next_mult
        + w.opt_same * uptake.opt_same
        + w.opt_next * uptake.opt_next * opt_next_mult
        + w.short_relief * relief
        - penalty
    )
    if options is not None:
        raw += options.enhancement(settings.options_flow)
    composite = clamp(raw / settings.normalizer, settings.lower_bound, settings.upper_bound)
    return raw, composite, True


class ScoreComposer:
    def __init__(self, settings: RotationSettings):
        self.score_settings = settings.score
        self.penalty_settings = settings.index_penalty

    def score_cluster(
        self, signals: QuarterSignals, flows: QuarterFlows, cluster: DumpCluster, *, cluster_count: int = 1
    ) -> ScoreRecord:
        q_start, q_end = quarter_bounds(signals.label)
        uptake = uptake_terms(flows)
        passive = uptake_breakdown(flows).passive
        relief = short_relief(signals.short_interest, q_end)
        penalty = index_timing_penalty(
            q_start, q_end, cluster.anchor_date, signals.index_windows, passive, self.penalty_settings
        )
        eow = is_end_of_window(cluster.anchor_date, self.score_settings.eow_trading_days)
        options = options_flow_terms(signals.options_flow, cluster.anchor_date)
        raw, composite, gated = combine(
            self.score_settings,
            dump_z=cluster.dump_z,
            uptake=uptake,
            relief=relief,
            penalty=penalty,
            eow=eow,
            options=options,
        )
        return ScoreRecord(
            issuer_cik=signals.issuer.cik,
            period=signals.label,
            ticker=signals.issuer.ticker,
            period_start=signals.start,
            period_end=signals.end,
            cluster_id=cluster.cluster_id,
            anchor_date=cluster.anchor_date,
            composite=composite,
            raw_score=raw,
            gated=gated,
            dump_z=cluster.dump_z,
            u_same=uptake.u_same,
            u_next=uptake.u_next,
            uhf_same=uptake.uhf_same,
            uhf_next=uptake.uhf_next,
            opt_same=uptake.opt_same,
            opt_next=uptake.opt_next,
            short_relief=relief,
            index_penalty=penalty,
            options_flow=options.enhancement(self.score_settings.options_flow) if gated else 0.0,
            passive_share=passive,
            eow=eow,
            cluster_count=cluster_count,
        )

    def compose(
        self, signals: QuarterSignals, flows: QuarterFlows, clusters: Sequence[DumpCluster]
    ) -> tuple[ScoreRecord, dict[str, ScoreRecord]]:
        """Score every cluster; return the period record and the per-cluster records."""
        per_cluster = {
            c.cluster_id: self.score_cluster(signals, flows, c, cluster_count=len(clusters)) for c in clusters
        }
        if not per_cluster:
            uptake = uptake_terms(flows)
            _, q_end = quarter_bounds(signals.label)
            record = ScoreRecord(
                issuer_cik=signals.issuer.cik,
                period=signals.label,
                ticker=signals.issuer.ticker,
                period_start=signals.start,
                period_end=signals.end,
                u_same=uptake.u_same,
                u_next=uptake.u_next,
                uhf_same=uptake.uhf_same,
                uhf_next=uptake.uhf_next,
                opt_same=uptake.opt_same,
                opt_next=uptake.opt_next,
                short_relief=short_relief(signals.short_interest, q_end),
                passive_share=uptake_breakdown(flows).passive,
            )
            return record, {}

        best = min(per_cluster.values(), key=lambda r: (-r.composite, r.anchor_date, r.cluster_id))
        logger.debug(
            "score.composed",
            issuer=signals.issuer.cik,
            period=signals.label,
            clusters=len(per_cluster),
            composite=best.composite,
            gated=best.gated,
        )
        return best, per_cluster


__all__ = ["ScoreRecord", "ScoreComposer", "combine"]
