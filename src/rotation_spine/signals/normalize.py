"""
Row → record normalization shared by every provider.

Upstream payloads (JSON datasets, EDGAR and FINRA responses) arrive as
loosely typed dicts.  These helpers turn one row into one frozen record
and raise :class:`ParseError` naming the offending field when they cannot.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from datetime import date
from typing import Any, TypeVar

from rotation_spine.core.errors import ParseError
from rotation_spine.core.timestamps import parse_date
from rotation_spine.signals.models import (
    AtsWeeklyVolume,
    BeneficialOwnershipSnapshot,
    DailyReturn,
    FilingRef,
    FundHolding,
    FundSource,
    HoldingPosition,
    IndexWindow,
    IssuerResolution,
    OptionsFlowDay,
    ShortInterestPoint,
    Submission,
)

R = TypeVar("R")


def normalize_cik(value: Any) -> str:
    """Zero-pad a CIK to ten digits."""
    text = str(value).strip()
    if not text.isdigit():
        raise ParseError(f"Invalid CIK: {value!r}").with_context(field="cik")
    return text.zfill(10)


def _required(row: Mapping[str, Any], key: str) -> Any:
    value = row.get(key)
    if value is None or value == "":
        raise ParseError(f"Missing field {key!r}").with_context(field=key)
    return value


def _date(row: Mapping[str, Any], key: str) -> date:
    value = _required(row, key)
    try:
        return parse_date(value)
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Invalid date in {key!r}: {value!r}", cause=exc).with_context(field=key) from exc


def _optional_date(row: Mapping[str, Any], key: str) -> date | None:
    if row.get(key) in (None, ""):
        return None
    return _date(row, key)


def _float(row: Mapping[str, Any], key: str, default: float | None = None) -> float:
    value = row.get(key)
    if value is None or value == "":
        if default is None:
            raise ParseError(f"Missing field {key!r}").with_context(field=key)
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ParseError(f"Invalid number in {key!r}: {value!r}", cause=exc).with_context(field=key) from exc


def _optional_float(row: Mapping[str, Any], key: str) -> float | None:
    if row.get(key) in (None, ""):
        return None
    return _float(row, key)


def parse_issuer(row: Mapping[str, Any]) -> IssuerResolution:
    return IssuerResolution(
        cik=normalize_cik(_required(row, "cik")),
        ticker=str(_required(row, "ticker")).upper(),
        name=row.get("name"),
        cusips=tuple(str(c).upper() for c in row.get("cusips") or ()),
        series_id=row.get("series_id"),
    )


def parse_filing(row: Mapping[str, Any]) -> FilingRef:
    return FilingRef(
        accession=str(_required(row, "accession")),
        cik=normalize_cik(_required(row, "cik")),
        form=str(_required(row, "form")),
        filed_date=_date(row, "filed_date"),
        period_end=_optional_date(row, "period_end"),
        company_name=row.get("company_name"),
    )


def parse_holding(row: Mapping[str, Any]) -> HoldingPosition:
    return HoldingPosition(
        holder_cik=normalize_cik(_required(row, "holder_cik")),
        cusip=str(_required(row, "cusip")).upper(),
        asof=_date(row, "asof"),
        shares=_float(row, "shares"),
        opt_put_shares=_float(row, "opt_put_shares", 0.0),
        opt_call_shares=_float(row, "opt_call_shares", 0.0),
        accession=row.get("accession"),
        holder_name=row.get("holder_name"),
    )


def parse_beneficial(row: Mapping[str, Any]) -> BeneficialOwnershipSnapshot:
    return BeneficialOwnershipSnapshot(
        holder_cik=normalize_cik(_required(row, "holder_cik")),
        issuer_cik=normalize_cik(_required(row, "issuer_cik")),
        event_date=_date(row, "event_date"),
        pct_of_class=_optional_float(row, "pct_of_class"),
        shares_est=_optional_float(row, "shares_est"),
        accession=row.get("accession"),
        holder_name=row.get("holder_name"),
    )


def parse_fund_holding(row: Mapping[str, Any]) -> FundHolding:
    source = str(row.get("source") or FundSource.NPORT.value).upper()
    try:
        fund_source = FundSource(source)
    except ValueError as exc:
        raise ParseError(f"Unknown fund source {source!r}", cause=exc).with_context(field="source") from exc
    return FundHolding(
        holder_id=str(_required(row, "holder_id")),
        cusip=str(_required(row, "cusip")).upper(),
        asof=_date(row, "asof"),
        shares=_float(row, "shares"),
        source=fund_source,
    )


def parse_short_interest(row: Mapping[str, Any]) -> ShortInterestPoint:
    return ShortInterestPoint(
        settle_date=_date(row, "settle_date"),
        short_shares=_float(row, "short_shares"),
        symbol=row.get("symbol"),
    )


def parse_ats_weekly(row: Mapping[str, Any]) -> AtsWeeklyVolume:
    return AtsWeeklyVolume(
        week_end=_date(row, "week_end"),
        shares=_float(row, "shares"),
        trades=int(_float(row, "trades", 0.0)),
        venue=row.get("venue"),
    )


def parse_options_flow(row: Mapping[str, Any]) -> OptionsFlowDay:
    return OptionsFlowDay(
        trade_date=_date(row, "trade_date"),
        call_volume=_float(row, "call_volume", 0.0),
        put_volume=_float(row, "put_volume", 0.0),
        unusual_count=int(_float(row, "unusual_count", 0.0)),
    )


def parse_index_window(row: Mapping[str, Any]) -> IndexWindow:
    window = IndexWindow(
        index_name=str(_required(row, "index_name")),
        phase=str(row.get("phase") or "effective"),
        window_start=_date(row, "window_start"),
        window_end=_date(row, "window_end"),
    )
    if window.window_end < window.window_start:
        raise ParseError(f"Index window {window.index_name} ends before it starts")
    return window


def parse_daily_return(row: Mapping[str, Any]) -> DailyReturn:
    return DailyReturn(
        trade_date=_date(row, "trade_date"),
        ret=_float(row, "ret"),
        benchmark_ret=_float(row, "benchmark_ret", 0.0),
    )


def parse_submission(row: Mapping[str, Any]) -> Submission:
    return Submission(
        accession=str(_required(row, "accession")),
        cik=normalize_cik(_required(row, "cik")),
        form=str(_required(row, "form")),
        filed_at=str(_required(row, "filed_at")),
        company_name=row.get("company_name"),
    )


def parse_rows(rows: Iterable[Mapping[str, Any]], parser: Callable[[Mapping[str, Any]], R]) -> tuple[R, ...]:
    if rows is None:
        return ()
    if isinstance(rows, (str, bytes)) or not isinstance(rows, Iterable):
        raise ParseError(f"Expected a list of rows, got {type(rows).__name__}")
    out = []
    for row in rows:
        if not isinstance(row, Mapping):
            raise ParseError(f"Expected an object row, got {type(row).__name__}")
        out.append(parser(row))
    return tuple(out)


__all__ = [
    "normalize_cik",
    "parse_issuer",
    "parse_filing",
    "parse_holding",
    "parse_beneficial",
    "parse_fund_holding",
    "parse_short_interest",
    "parse_ats_weekly",
    "parse_options_flow",
    "parse_index_window",
    "parse_daily_return",
    "parse_submission",
    "parse_rows",
]
