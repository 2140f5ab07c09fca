"""
SignalAggregator: fetch everything one sub-range needs, concurrently.

Each independent signal is fetched on a worker thread through the
substrate's ``retryable_call``, so retries stay invisible to the caller.
All fetches run to completion (or definitive failure) before anything is
returned: the caller sees either a complete :class:`QuarterSignals` or
the first failure in a fixed signal order, never a partial bundle.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from rotation_spine.core.logging import get_logger
from rotation_spine.core.quarters import SubRange, shift_quarter_end
from rotation_spine.core.settings import RotationSettings
from rotation_spine.signals.gateway import SignalRequest, SignalRouter
from rotation_spine.signals.models import IssuerResolution, QuarterSignals, SignalKind

if TYPE_CHECKING:
    from rotation_spine.execution.substrate import DurableSubstrate

logger = get_logger(__name__)

# Fetch and failure-reporting order
QUARTER_SIGNALS: tuple[SignalKind, ...] = (
    SignalKind.FILINGS,
    SignalKind.HOLDINGS,
    SignalKind.BENEFICIAL_OWNERSHIP,
    SignalKind.FUND_HOLDINGS,
    SignalKind.SHORT_INTEREST,
    SignalKind.ATS_WEEKLY,
    SignalKind.OPTIONS_FLOW,
    SignalKind.INDEX_WINDOWS,
    SignalKind.DAILY_RETURNS,
)

_FIELD_FOR_KIND = {
    SignalKind.FILINGS: "filings",
    SignalKind.HOLDINGS: "holdings",
    SignalKind.BENEFICIAL_OWNERSHIP: "beneficial",
    SignalKind.FUND_HOLDINGS: "fund_holdings",
    SignalKind.SHORT_INTEREST: "short_interest",
    SignalKind.ATS_WEEKLY: "ats_weekly",
    SignalKind.OPTIONS_FLOW: "options_flow",
    SignalKind.INDEX_WINDOWS: "index_windows",
    SignalKind.DAILY_RETURNS: "daily_returns",
}

OWNERSHIP_FORMS = ("13F-HR", "13F-HR/A", "SC 13G", "SC 13G/A", "SC 13D", "SC 13D/A")


@dataclass
class SignalAggregator:
    gateway: SignalRouter
    settings: RotationSettings

    def requests_for(self, issuer: IssuerResolution, part: SubRange) -> dict[SignalKind, SignalRequest]:
        """Per-signal fetch windows for one sub-range."""
        q_start, q_end = part.quarter_start, part.quarter_end
        lookback = self.settings.fanout.holdings_lookback_quarters
        history_start = shift_quarter_end(q_start, -(lookback + 1)) + timedelta(days=1)
        next_end = shift_quarter_end(q_end, 1)
        month = timedelta(days=31)
        windows = self.settings.event_study.windows.values()
        pre = max((w.pre_days for w in windows), default=0)
        post = max((w.post_days for w in windows), default=0)

        base = {"ticker": issuer.ticker, "cik": issuer.cik, "cusips": issuer.cusips}
        return {
            SignalKind.FILINGS: SignalRequest(**base, start=part.start, end=part.end, forms=OWNERSHIP_FORMS),
            SignalKind.HOLDINGS: SignalRequest(**base, start=history_start, end=next_end),
            SignalKind.BENEFICIAL_OWNERSHIP: SignalRequest(**base, start=history_start, end=next_end),
            SignalKind.FUND_HOLDINGS: SignalRequest(**base, start=q_start - month, end=next_end),
            SignalKind.SHORT_INTEREST: SignalRequest(**base, start=q_start - month, end=q_end + month),
            SignalKind.ATS_WEEKLY: SignalRequest(**base, start=part.start, end=part.end),
            SignalKind.OPTIONS_FLOW: SignalRequest(**base, start=q_start - month, end=next_end),
            SignalKind.INDEX_WINDOWS: SignalRequest(**base, start=part.start, end=part.end),
            SignalKind.DAILY_RETURNS: SignalRequest(
                **base, start=part.start - timedelta(days=pre), end=part.end + timedelta(days=post)
            ),
        }

    def collect(self, substrate: DurableSubstrate, issuer: IssuerResolution, part: SubRange) -> QuarterSignals:
        """Fetch every quarter signal; raise the first failure in :data:`QUARTER_SIGNALS` order."""
        requests = self.requests_for(issuer, part)
        workers = min(self.settings.fanout.max_fetch_workers, len(QUARTER_SIGNALS))

        def fetch(kind: SignalKind) -> Any:
            return substrate.retryable_call(lambda: self.gateway.fetch(kind, requests[kind]))

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="signal-fetch") as pool:
            futures: dict[SignalKind, Future] = {kind: pool.submit(fetch, kind) for kind in QUARTER_SIGNALS}
        # leaving the block waits for every future

        results: dict[str, Any] = {}
        for kind in QUARTER_SIGNALS:
            error = futures[kind].exception()
            if error is not None:
                logger.warning(
                    "aggregator.fetch_failed", ticker=issuer.ticker, sub_range=part.key, signal=kind.value,
                    error=type(error).__name__,
                )
                raise error
            results[_FIELD_FOR_KIND[kind]] = tuple(futures[kind].result())

        logger.debug(
            "aggregator.collected",
            ticker=issuer.ticker,
            sub_range=part.key,
            counts={name: len(values) for name, values in results.items()},
        )
        return QuarterSignals(issuer=issuer, label=part.label, start=part.start, end=part.end, **results)


__all__ = ["SignalAggregator", "QUARTER_SIGNALS", "OWNERSHIP_FORMS"]
