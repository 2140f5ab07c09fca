"""
FanoutController - quarter-by-quarter backfill with continuation.

Manifesto:
    A backfill over twenty years must cost the same in-process memory as a
    backfill over one quarter.  Each execution therefore handles at most
    ``batch_size`` quarter sub-ranges and then continues as new with the
    remaining range; nothing but the small state dict below crosses the
    boundary.

    - **Quarters in order:** sub-ranges are processed strictly ascending
    - **All or nothing per quarter:** every artifact of a sub-range is
      written in one transaction, after all of its signals were fetched
    - **Skip what is committed:** a quarter whose score already covers the
      sub-range is not recomputed unless ``force`` is set
    - **Failures surface:** a fetch failure becomes a
      :class:`SubRangeError` naming ticker, sub-range and signal

Architecture:
    ::

        state {ticker, from, to, batch_size, iteration, cik?, totals}
            │
            ▼
        partition_quarters(from, to) ── empty ──► return summary
            │
            ├─ resolve issuer (memoized by CIK in state and store)
            │
            ├─ for part in parts[:batch_size]:
            │      check_cancelled()
            │      aggregator.collect ──► flows ──► detector ──► composer
            │          ──► event studies ──► edge builder
            │      unit_of_work: filings, bundle, clusters, score,
            │                    studies, edges, cursor("fanout", ticker) = part.end
            │
            └─ continue_as_new(from = last part end + 1 day, iteration + 1)

    A range of N quarters with batch size B checkpoints exactly ⌈N/B⌉
    times; the execution after the last checkpoint sees an empty range
    and completes.

State:
    ``ticker``, ``from``, ``to`` (ISO dates), ``run_kind`` (daily,
    backfill or query; recorded, not interpreted), ``batch_size``,
    ``iteration``, ``force``, ``cusips`` (extra CUSIPs to attach to the
    issuer), ``cik`` (set once resolved) and ``totals``.

Tags:
    fanout, backfill, continue-as-new, orchestration, rotation-spine
"""

from __future__ import annotations

from datetime import timedelta
from typing import Any

from rotation_spine.core.errors import InputError, RotationError, SubRangeError
from rotation_spine.core.logging import get_logger
from rotation_spine.core.quarters import SubRange, partition_quarters
from rotation_spine.core.timestamps import parse_date
from rotation_spine.execution.substrate import WorkflowContext
from rotation_spine.pipelines.services import PipelineServices
from rotation_spine.signals.flows import build_bundle, compute_quarter_flows
from rotation_spine.signals.gateway import SignalRequest
from rotation_spine.signals.models import IssuerResolution, SignalKind

logger = get_logger(__name__)

FANOUT_WORKFLOW = "fanout"
CURSOR_PIPELINE = "fanout"
RUN_KINDS = ("daily", "backfill", "query")

_TOTAL_KEYS = ("quarters", "skipped", "clusters", "edges")


def resolve_issuer(ctx: WorkflowContext, services: PipelineServices, state: dict[str, Any]) -> IssuerResolution:
    """Issuer for the run, resolved at most once per run and once per CIK in the store."""
    extra = tuple(state.get("cusips") or ())
    with ctx.store.unit_of_work() as repo:
        known = repo.get_issuer(state["cik"]) if state.get("cik") else repo.find_issuer_by_ticker(state["ticker"])
        if known is not None:
            if extra and not set(extra) <= set(known.cusips):
                known = repo.upsert_issuer(
                    IssuerResolution(known.cik, known.ticker, known.name, extra, known.series_id)
                )
            return known

    request = SignalRequest(ticker=state["ticker"])
    try:
        resolved = ctx.retryable_call(lambda: services.gateway.fetch(SignalKind.ISSUER, request))
    except RotationError as exc:
        raise exc.with_context(ticker=state["ticker"])
    if extra:
        resolved = IssuerResolution(
            resolved.cik, resolved.ticker, resolved.name, (*resolved.cusips, *extra), resolved.series_id
        )
    with ctx.store.unit_of_work() as repo:
        issuer = repo.upsert_issuer(resolved)
    logger.info("fanout.issuer_resolved", ticker=issuer.ticker, cik=issuer.cik, cusips=list(issuer.cusips))
    return issuer


def process_sub_range(
    ctx: WorkflowContext,
    services: PipelineServices,
    issuer: IssuerResolution,
    part: SubRange,
) -> dict[str, int]:
    """Fetch, derive and persist one sub-range.  Nothing is written if any fetch fails."""
    try:
        signals = services.aggregator.collect(ctx, issuer, part)
    except RotationError as exc:
        raise SubRangeError(
            f"Sub-range {part.key} of {issuer.ticker} failed: {exc.message}",
            ticker=issuer.ticker,
            sub_range=part.key,
            signal=exc.context.signal,
            cause=exc,
        ) from exc

    flows = compute_quarter_flows(signals)
    bundle = build_bundle(signals, flows)
    clusters = services.detector.detect(signals)
    record, per_cluster = services.composer.compose(signals, flows, clusters)
    studies = [result for cluster in clusters for result in services.studies.study(cluster, signals)]
    edges = [services.edges.build(c, per_cluster[c.cluster_id], flows) for c in clusters]

    with ctx.store.unit_of_work() as repo:
        repo.upsert_filings(signals.filings, source=FANOUT_WORKFLOW)
        repo.put_signal_bundle(bundle)
        repo.put_clusters(clusters, {cid: r.composite for cid, r in per_cluster.items()})
        repo.put_score(record)
        for study in studies:
            repo.put_event_study(study)
        for edge in edges:
            services.edges.store(repo, edge)
        repo.advance_cursor(CURSOR_PIPELINE, issuer.ticker, part.end.isoformat(), {"period": part.label})

    logger.info(
        "fanout.quarter_committed",
        ticker=issuer.ticker,
        quarter=part.label,
        sub_range=part.key,
        clusters=len(clusters),
        edges=len(edges),
        composite=record.composite,
    )
    return {"quarters": 1, "clusters": len(clusters), "edges": len(edges)}


def fanout_workflow(ctx: WorkflowContext, state: dict[str, Any], services: PipelineServices) -> dict[str, Any]:
    start = parse_date(state["from"])
    end = parse_date(state["to"])
    totals = {key: int((state.get("totals") or {}).get(key, 0)) for key in _TOTAL_KEYS}
    iteration = int(state.get("iteration", 0))
    parts = partition_quarters(start, end)

    if not parts:
        logger.info("fanout.completed", ticker=state["ticker"], iterations=iteration, **totals)
        return {"ticker": state["ticker"], "cik": state.get("cik"), "iterations": iteration, **totals}

    batch_size = int(state.get("batch_size") or services.settings.fanout.quarter_batch_size)
    if batch_size < 1:
        raise InputError(f"batch_size must be >= 1, got {batch_size}", field_name="batch_size")

    issuer = resolve_issuer(ctx, services, state)
    batch = parts[:batch_size]
    for part in batch:
        ctx.check_cancelled()
        if not state.get("force"):
            with ctx.store.unit_of_work() as repo:
                committed = repo.is_period_committed(
                    issuer.cik, part.label, part.start.isoformat(), part.end.isoformat()
                )
                if committed:
                    repo.advance_cursor(CURSOR_PIPELINE, issuer.ticker, part.end.isoformat(), {"period": part.label})
            if committed:
                logger.info("fanout.quarter_skipped", ticker=issuer.ticker, quarter=part.label)
                totals["skipped"] += 1
                continue
        for key, value in process_sub_range(ctx, services, issuer, part).items():
            totals[key] += value

    ctx.continue_as_new(
        {
            **state,
            "from": (batch[-1].end + timedelta(days=1)).isoformat(),
            "iteration": iteration + 1,
            "cik": issuer.cik,
            "totals": totals,
        }
    )


__all__ = [
    "FANOUT_WORKFLOW",
    "CURSOR_PIPELINE",
    "RUN_KINDS",
    "resolve_issuer",
    "process_sub_range",
    "fanout_workflow",
]
