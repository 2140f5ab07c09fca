"""
Normalized signal records.

Every provider adapter returns these frozen dataclasses, whatever the
upstream wire format was.  They are plain values: no I/O, no lazy fields,
safe to hand across threads and to hash.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import Enum


class SignalKind(str, Enum):
    """Every signal the pipeline can ask a provider for."""

    ISSUER = "issuer"
    FILINGS = "filings"
    HOLDINGS = "holdings"
    BENEFICIAL_OWNERSHIP = "beneficial_ownership"
    FUND_HOLDINGS = "fund_holdings"
    SHORT_INTEREST = "short_interest"
    ATS_WEEKLY = "ats_weekly"
    OPTIONS_FLOW = "options_flow"
    INDEX_WINDOWS = "index_windows"
    DAILY_RETURNS = "daily_returns"
    SUBMISSIONS = "submissions"


class FundSource(str, Enum):
    NPORT = "NPORT"
    ETF = "ETF"


@dataclass(frozen=True, slots=True)
class IssuerResolution:
    cik: str
    ticker: str
    name: str | None = None
    cusips: tuple[str, ...] = ()
    series_id: str | None = None


@dataclass(frozen=True, slots=True)
class FilingRef:
    accession: str
    cik: str
    form: str
    filed_date: date
    period_end: date | None = None
    company_name: str | None = None


@dataclass(frozen=True, slots=True)
class HoldingPosition:
    """One 13F information-table line aggregated per (holder, cusip, asof)."""

    holder_cik: str
    cusip: str
    asof: date
    shares: float
    opt_put_shares: float = 0.0
    opt_call_shares: float = 0.0
    accession: str | None = None
    holder_name: str | None = None


@dataclass(frozen=True, slots=True)
class BeneficialOwnershipSnapshot:
    """13G/13D reported stake."""

    holder_cik: str
    issuer_cik: str
    event_date: date
    pct_of_class: float | None = None
    shares_est: float | None = None
    accession: str | None = None
    holder_name: str | None = None


@dataclass(frozen=True, slots=True)
class FundHolding:
    """Monthly N-PORT or daily ETF holding used by the UHF overlay."""

    holder_id: str
    cusip: str
    asof: date
    shares: float
    source: FundSource = FundSource.NPORT


@dataclass(frozen=True, slots=True)
class ShortInterestPoint:
    settle_date: date
    short_shares: float
    symbol: str | None = None


@dataclass(frozen=True, slots=True)
class AtsWeeklyVolume:
    week_end: date
    shares: float
    trades: int = 0
    venue: str | None = None


@dataclass(frozen=True, slots=True)
class OptionsFlowDay:
    trade_date: date
    call_volume: float
    put_volume: float
    unusual_count: int = 0


@dataclass(frozen=True, slots=True)
class IndexWindow:
    """Passive-index reconstitution window."""

    index_name: str
    phase: str
    window_start: date
    window_end: date


@dataclass(frozen=True, slots=True)
class DailyReturn:
    trade_date: date
    ret: float
    benchmark_ret: float = 0.0

    @property
    def abnormal(self) -> float:
        return self.ret - self.benchmark_ret


@dataclass(frozen=True, slots=True)
class Submission:
    accession: str
    cik: str
    form: str
    filed_at: str
    company_name: str | None = None


@dataclass(frozen=True, slots=True)
class SubmissionWindow:
    """Result of one poll: submissions in the window plus the provider's next cursor."""

    submissions: tuple[Submission, ...] = ()
    next_cursor: str | None = None


@dataclass(frozen=True, slots=True)
class QuarterSignals:
    """Everything fetched for one (issuer, sub-range) unit of work."""

    issuer: IssuerResolution
    label: str
    start: date
    end: date
    filings: tuple[FilingRef, ...] = ()
    holdings: tuple[HoldingPosition, ...] = ()
    beneficial: tuple[BeneficialOwnershipSnapshot, ...] = ()
    fund_holdings: tuple[FundHolding, ...] = ()
    short_interest: tuple[ShortInterestPoint, ...] = ()
    ats_weekly: tuple[AtsWeeklyVolume, ...] = ()
    options_flow: tuple[OptionsFlowDay, ...] = ()
    index_windows: tuple[IndexWindow, ...] = ()
    daily_returns: tuple[DailyReturn, ...] = ()


@dataclass(frozen=True, slots=True)
class SignalBundle:
    """Normalized per-(issuer, period) values persisted once per fan-out unit."""

    issuer_cik: str
    period: str
    period_start: date
    period_end: date
    holdings_delta: float
    dumped_shares: float
    positive_same: float
    positive_next: float
    short_interest_level: float | None
    ats_weekly_volume: float
    options_overlay: float
    uhf_overlay: float
    filings_count: int
    positions_count: int
    content_hash: str

    def to_row(self) -> dict:
        row = {name: getattr(self, name) for name in self.__slots__}
        row["period_start"] = self.period_start.isoformat()
        row["period_end"] = self.period_end.isoformat()
        return row


__all__ = [
    "SignalKind",
    "FundSource",
    "IssuerResolution",
    "FilingRef",
    "HoldingPosition",
    "BeneficialOwnershipSnapshot",
    "FundHolding",
    "ShortInterestPoint",
    "AtsWeeklyVolume",
    "OptionsFlowDay",
    "IndexWindow",
    "DailyReturn",
    "Submission",
    "SubmissionWindow",
    "QuarterSignals",
    "SignalBundle",
]
