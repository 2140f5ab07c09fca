"""
Static provider: serves every signal kind from an in-memory dataset.

Used for offline replays of captured upstream data and in tests.  The
dataset is a JSON object; ticker-scoped series (short interest, ATS,
options flow, daily returns) are keyed by ticker::

    {
      "issuers": [{"cik": "320193", "ticker": "AAPL", "cusips": ["037833100"]}],
      "filings": [{"accession": "...", "cik": "...", "form": "13F-HR", "filed_date": "2024-05-15"}],
      "holdings": [{"holder_cik": "...", "cusip": "037833100", "asof": "2024-03-31", "shares": 1000}],
      "beneficial_ownership": [...],
      "fund_holdings": [...],
      "short_interest": {"AAPL": [{"settle_date": "2024-03-15", "short_shares": 100}]},
      "ats_weekly": {"AAPL": [...]},
      "options_flow": {"AAPL": [...]},
      "daily_returns": {"AAPL": [...]},
      "index_windows": [{"index_name": "R2K", "window_start": "...", "window_end": "..."}],
      "submissions": [{"accession": "...", "cik": "...", "form": "SC 13G", "filed_at": "2024-05-01T12:00:00Z"}]
    }
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any

from rotation_spine.core.errors import ConfigError, SourceNotFoundError
from rotation_spine.signals.gateway import SignalRequest
from rotation_spine.signals.models import (
    AtsWeeklyVolume,
    BeneficialOwnershipSnapshot,
    DailyReturn,
    FilingRef,
    FundHolding,
    HoldingPosition,
    IndexWindow,
    IssuerResolution,
    OptionsFlowDay,
    ShortInterestPoint,
    SignalKind,
    Submission,
    SubmissionWindow,
)
from rotation_spine.signals.normalize import (
    parse_ats_weekly,
    parse_beneficial,
    parse_daily_return,
    parse_filing,
    parse_fund_holding,
    parse_holding,
    parse_index_window,
    parse_issuer,
    parse_options_flow,
    parse_rows,
    parse_short_interest,
    parse_submission,
)


@dataclass(frozen=True)
class StaticDataset:
    issuers: tuple[IssuerResolution, ...] = ()
    filings: tuple[FilingRef, ...] = ()
    holdings: tuple[HoldingPosition, ...] = ()
    beneficial: tuple[BeneficialOwnershipSnapshot, ...] = ()
    fund_holdings: tuple[FundHolding, ...] = ()
    short_interest: Mapping[str, tuple[ShortInterestPoint, ...]] = field(default_factory=dict)
    ats_weekly: Mapping[str, tuple[AtsWeeklyVolume, ...]] = field(default_factory=dict)
    options_flow: Mapping[str, tuple[OptionsFlowDay, ...]] = field(default_factory=dict)
    daily_returns: Mapping[str, tuple[DailyReturn, ...]] = field(default_factory=dict)
    index_windows: tuple[IndexWindow, ...] = ()
    submissions: tuple[Submission, ...] = ()


def _by_ticker(raw: Any, parser: Any) -> dict[str, tuple]:
    if not raw:
        return {}
    if not isinstance(raw, Mapping):
        raise ConfigError("Ticker-scoped series must be an object keyed by ticker")
    return {str(ticker).upper(): parse_rows(rows, parser) for ticker, rows in raw.items()}


def _in_range(day: date, request: SignalRequest) -> bool:
    if request.start is not None and day < request.start:
        return False
    if request.end is not None and day > request.end:
        return False
    return True


class StaticProvider:
    """Serves all :class:`SignalKind` values from a :class:`StaticDataset`."""

    name = "static"
    supported_kinds = frozenset(SignalKind)

    def __init__(self, dataset: StaticDataset):
        self.dataset = dataset

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> StaticProvider:
        return cls(
            StaticDataset(
                issuers=parse_rows(data.get("issuers", ()), parse_issuer),
                filings=parse_rows(data.get("filings", ()), parse_filing),
                holdings=parse_rows(data.get("holdings", ()), parse_holding),
                beneficial=parse_rows(data.get("beneficial_ownership", ()), parse_beneficial),
                fund_holdings=parse_rows(data.get("fund_holdings", ()), parse_fund_holding),
                short_interest=_by_ticker(data.get("short_interest"), parse_short_interest),
                ats_weekly=_by_ticker(data.get("ats_weekly"), parse_ats_weekly),
                options_flow=_by_ticker(data.get("options_flow"), parse_options_flow),
                daily_returns=_by_ticker(data.get("daily_returns"), parse_daily_return),
                index_windows=parse_rows(data.get("index_windows", ()), parse_index_window),
                submissions=parse_rows(data.get("submissions", ()), parse_submission),
            )
        )

    @classmethod
    def from_json(cls, path: str | Path) -> StaticProvider:
        file = Path(path)
        if not file.exists():
            raise ConfigError(f"Static dataset not found: {file}")
        with file.open(encoding="utf-8") as fh:
            return cls.from_mapping(json.load(fh))

    def fetch(self, kind: SignalKind, request: SignalRequest) -> Any:
        ds = self.dataset
        ticker = (request.ticker or "").upper()
        cusips = set(request.cusips)

        if kind is SignalKind.ISSUER:
            for issuer in ds.issuers:
                if issuer.ticker == ticker or (request.cik and issuer.cik == request.cik):
                    return issuer
            raise SourceNotFoundError(f"Unknown ticker {request.ticker!r}").with_context(ticker=request.ticker)

        if kind is SignalKind.FILINGS:
            forms = set(request.forms)
            return tuple(
                f
                for f in ds.filings
                if f.cik == request.cik and _in_range(f.filed_date, request) and (not forms or f.form in forms)
            )
        if kind is SignalKind.HOLDINGS:
            return tuple(h for h in ds.holdings if h.cusip in cusips and _in_range(h.asof, request))
        if kind is SignalKind.BENEFICIAL_OWNERSHIP:
            return tuple(
                b for b in ds.beneficial if b.issuer_cik == request.cik and _in_range(b.event_date, request)
            )
        if kind is SignalKind.FUND_HOLDINGS:
            return tuple(f for f in ds.fund_holdings if f.cusip in cusips and _in_range(f.asof, request))
        if kind is SignalKind.SHORT_INTEREST:
            return tuple(p for p in ds.short_interest.get(ticker, ()) if _in_range(p.settle_date, request))
        if kind is SignalKind.ATS_WEEKLY:
            return tuple(w for w in ds.ats_weekly.get(ticker, ()) if _in_range(w.week_end, request))
        if kind is SignalKind.OPTIONS_FLOW:
            return tuple(o for o in ds.options_flow.get(ticker, ()) if _in_range(o.trade_date, request))
        if kind is SignalKind.DAILY_RETURNS:
            return tuple(r for r in ds.daily_returns.get(ticker, ()) if _in_range(r.trade_date, request))
        if kind is SignalKind.INDEX_WINDOWS:
            return tuple(
                w
                for w in ds.index_windows
                if (request.end is None or w.window_start <= request.end)
                and (request.start is None or w.window_end >= request.start)
            )
        # SUBMISSIONS: [cursor, window_end)
        forms = set(request.forms)
        hits = sorted(
            (
                s
                for s in ds.submissions
                if (request.cursor is None or s.filed_at >= request.cursor)
                and (request.window_end is None or s.filed_at < request.window_end)
                and (not forms or s.form in forms)
            ),
            key=lambda s: (s.filed_at, s.accession),
        )
        if request.limit is not None and len(hits) > request.limit:
            # resume at the first submission left out
            return SubmissionWindow(submissions=tuple(hits[: request.limit]), next_cursor=hits[request.limit].filed_at)
        return SubmissionWindow(submissions=tuple(hits), next_cursor=None)


__all__ = ["StaticDataset", "StaticProvider"]
