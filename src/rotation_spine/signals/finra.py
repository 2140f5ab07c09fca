"""
FINRA Query API provider.

* ``SHORT_INTEREST`` → ``otcMarket/consolidatedShortInterest`` (twice-monthly settlements)
* ``ATS_WEEKLY``     → ``otcMarket/weeklySummary`` (ATS_W_SMBL rows, summed per week)

Both datasets are queried with POST filter bodies and paged with
``limit``/``offset`` until a short page comes back.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import timedelta
from typing import Any

import httpx

from rotation_spine.core.errors import ParseError, UnsupportedProviderError
from rotation_spine.core.settings import RotationSettings
from rotation_spine.core.timestamps import parse_date
from rotation_spine.execution.rate_limit import TokenBucketLimiter
from rotation_spine.signals.gateway import SignalRequest
from rotation_spine.signals.http import HttpSource
from rotation_spine.signals.models import AtsWeeklyVolume, ShortInterestPoint, SignalKind

_PAGE_SIZE = 1000


class FinraProvider(HttpSource):
    name = "finra"
    supported_kinds = frozenset({SignalKind.SHORT_INTEREST, SignalKind.ATS_WEEKLY})

    def __init__(self, client: httpx.Client, limiter: TokenBucketLimiter, *, base_url: str = "https://api.finra.org"):
        super().__init__(client, limiter)
        self.base_url = base_url.rstrip("/")

    @classmethod
    def from_settings(cls, settings: RotationSettings, client: httpx.Client | None = None) -> FinraProvider:
        if client is None:
            client = httpx.Client(
                headers={"Accept": "application/json", "Content-Type": "application/json"},
                timeout=settings.http_timeout_seconds,
            )
        limiter = TokenBucketLimiter(
            rate=settings.finra_requests_per_second, capacity=settings.finra_requests_per_second
        )
        return cls(client, limiter, base_url=settings.finra_base_url)

    def fetch(self, kind: SignalKind, request: SignalRequest) -> Any:
        if not request.ticker:
            raise ParseError(f"{kind.value} request needs a ticker")
        if kind is SignalKind.SHORT_INTEREST:
            return self.short_interest(request)
        if kind is SignalKind.ATS_WEEKLY:
            return self.ats_weekly(request)
        raise UnsupportedProviderError(f"{self.name}:{kind.value}", [k.value for k in self.supported_kinds])

    def _post_paginated(self, dataset: str, body: dict[str, Any]) -> list[dict[str, Any]]:
        url = f"{self.base_url}/data/group/otcMarket/name/{dataset}"
        rows: list[dict[str, Any]] = []
        offset = 0
        while True:
            page = self.request_json("POST", url, json={**body, "limit": _PAGE_SIZE, "offset": offset})
            if page is None:
                break
            if not isinstance(page, list):
                raise ParseError(f"FINRA {dataset} returned {type(page).__name__}, expected a list").with_context(
                    source_name=self.name, url=url
                )
            rows.extend(page)
            if len(page) < _PAGE_SIZE:
                break
            offset += _PAGE_SIZE
        return rows

    @staticmethod
    def _date_range(request: SignalRequest, field_name: str) -> list[dict[str, str]]:
        if request.start is None or request.end is None:
            return []
        return [{"fieldName": field_name, "startDate": request.start.isoformat(), "endDate": request.end.isoformat()}]

    def short_interest(self, request: SignalRequest) -> tuple[ShortInterestPoint, ...]:
        symbol = request.ticker.upper()
        rows = self._post_paginated(
            "consolidatedShortInterest",
            {
                "compareFilters": [{"compareType": "EQUAL", "fieldName": "symbolCode", "fieldValue": symbol}],
                "dateRangeFilters": self._date_range(request, "settlementDate"),
            },
        )
        points: dict[str, ShortInterestPoint] = {}
        for row in rows:
            try:
                point = ShortInterestPoint(
                    settle_date=parse_date(row["settlementDate"]),
                    short_shares=float(row["currentShortPositionQuantity"]),
                    symbol=row.get("symbolCode", symbol),
                )
            except (KeyError, TypeError, ValueError) as exc:
                raise ParseError(f"Malformed short interest row: {row!r}", cause=exc) from exc
            points[point.settle_date.isoformat()] = point
        return tuple(points[k] for k in sorted(points))

    def ats_weekly(self, request: SignalRequest) -> tuple[AtsWeeklyVolume, ...]:
        symbol = request.ticker.upper()
        rows = self._post_paginated(
            "weeklySummary",
            {
                "compareFilters": [
                    {"compareType": "EQUAL", "fieldName": "issueSymbolIdentifier", "fieldValue": symbol},
                    {"compareType": "EQUAL", "fieldName": "summaryTypeCode", "fieldValue": "ATS_W_SMBL"},
                ],
                "dateRangeFilters": self._date_range(request, "weekStartDate"),
            },
        )
        shares: dict[str, float] = defaultdict(float)
        trades: dict[str, int] = defaultdict(int)
        for row in rows:
            try:
                week_end = parse_date(row["weekStartDate"]) + timedelta(days=4)
                shares[week_end.isoformat()] += float(row["totalWeeklyShareQuantity"])
                trades[week_end.isoformat()] += int(row.get("totalWeeklyTradeCount") or 0)
            except (KeyError, TypeError, ValueError) as exc:
                raise ParseError(f"Malformed weekly summary row: {row!r}", cause=exc) from exc
        return tuple(
            AtsWeeklyVolume(week_end=parse_date(key), shares=shares[key], trades=trades[key], venue="ATS")
            for key in sorted(shares)
        )


__all__ = ["FinraProvider"]
