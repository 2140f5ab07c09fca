"""
Tests for the HTTP providers (EDGAR, FINRA) using httpx.MockTransport.

Tests cover:
- Response classification (429 / 5xx / 404 / other 4xx / transport / bad JSON)
- EDGAR ticker map, submissions JSON and full-text search paging
- FINRA short interest and ATS weekly pagination and normalisation
"""

import json
from datetime import date

import httpx
import pytest

from rotation_spine.core.errors import (
    NetworkError,
    ParseError,
    RateLimitError,
    SourceError,
    SourceNotFoundError,
    SourceUnavailableError,
    UnsupportedProviderError,
)
from rotation_spine.execution.rate_limit import TokenBucketLimiter
from rotation_spine.signals.edgar import EdgarProvider
from rotation_spine.signals.finra import FinraProvider
from rotation_spine.signals.gateway import SignalRequest
from rotation_spine.signals.http import HttpSource
from rotation_spine.signals.models import SignalKind


def make_client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def make_limiter():
    return TokenBucketLimiter(rate=1000.0, capacity=1000.0)


# =============================================================================
# Classification
# =============================================================================


class TestHttpSource:
    def _source(self, handler):
        return HttpSource(make_client(handler), make_limiter())

    def test_ok_json(self):
        source = self._source(lambda request: httpx.Response(200, json={"ok": True}))
        assert source.request_json("GET", "https://example.test/x") == {"ok": True}

    def test_429_with_retry_after(self):
        source = self._source(lambda request: httpx.Response(429, headers={"Retry-After": "7"}))
        with pytest.raises(RateLimitError) as exc_info:
            source.request_json("GET", "https://example.test/x")
        assert exc_info.value.retry_after == 7.0
        assert exc_info.value.retryable is True
        assert exc_info.value.context.http_status == 429

    @pytest.mark.parametrize(
        "status, error_cls, retryable",
        [
            (500, SourceUnavailableError, True),
            (503, SourceUnavailableError, True),
            (404, SourceNotFoundError, False),
            (403, SourceError, False),
        ],
    )
    def test_status_classification(self, status, error_cls, retryable):
        source = self._source(lambda request: httpx.Response(status))
        with pytest.raises(error_cls) as exc_info:
            source.request_json("GET", "https://example.test/x")
        assert exc_info.value.retryable is retryable

    def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        with pytest.raises(NetworkError) as exc_info:
            self._source(handler).request_json("GET", "https://example.test/x")
        assert exc_info.value.retryable is True

    def test_bad_json(self):
        source = self._source(lambda request: httpx.Response(200, content=b"<html>"))
        with pytest.raises(ParseError):
            source.request_json("GET", "https://example.test/x")


# =============================================================================
# EDGAR
# =============================================================================


TICKERS = {
    "0": {"cik_str": 320193, "ticker": "AAPL", "title": "Apple Inc."},
    "1": {"cik_str": 789019, "ticker": "MSFT", "title": "Microsoft Corp"},
}

SUBMISSIONS = {
    "name": "Apple Inc.",
    "filings": {
        "recent": {
            "accessionNumber": ["a-3", "a-2", "a-1"],
            "form": ["10-K", "SC 13G", "13F-HR"],
            "filingDate": ["2024-08-01", "2024-05-10", "2024-02-14"],
            "reportDate": ["2024-06-30", "", "2023-12-31"],
        }
    },
}


class TestEdgarProvider:
    def setup_method(self):
        self.requests = []

    def _provider(self, routes):
        def handler(request):
            self.requests.append(request)
            for prefix, response in routes.items():
                if str(request.url).startswith(prefix):
                    return response(request) if callable(response) else response
            return httpx.Response(404)

        return EdgarProvider(
            make_client(handler),
            make_limiter(),
            base_url="https://sec.test",
            data_url="https://data.sec.test",
            search_url="https://efts.sec.test/search",
        )

    def test_resolve_issuer_loads_map_once(self):
        provider = self._provider({"https://sec.test/files/company_tickers.json": httpx.Response(200, json=TICKERS)})
        first = provider.fetch(SignalKind.ISSUER, SignalRequest(ticker="aapl"))
        second = provider.fetch(SignalKind.ISSUER, SignalRequest(ticker="MSFT"))
        assert first.cik == "0000320193"
        assert first.name == "Apple Inc."
        assert second.cik == "0000789019"
        assert len(self.requests) == 1

    def test_unknown_ticker(self):
        provider = self._provider({"https://sec.test/files/company_tickers.json": httpx.Response(200, json=TICKERS)})
        with pytest.raises(SourceNotFoundError):
            provider.fetch(SignalKind.ISSUER, SignalRequest(ticker="ZZZZ"))

    def test_list_filings_filters_forms_and_dates(self):
        provider = self._provider(
            {"https://data.sec.test/submissions/CIK0000320193.json": httpx.Response(200, json=SUBMISSIONS)}
        )
        request = SignalRequest(
            cik="320193", start=date(2024, 1, 1), end=date(2024, 6, 30), forms=("13F-HR", "SC 13G", "10-K")
        )
        filings = provider.fetch(SignalKind.FILINGS, request)
        assert [f.accession for f in filings] == ["a-1", "a-2"]
        assert filings[0].period_end == date(2023, 12, 31)
        assert filings[1].period_end is None

    def test_list_filings_bad_payload(self):
        provider = self._provider({"https://data.sec.test/": httpx.Response(200, json={"filings": {}})})
        with pytest.raises(ParseError):
            provider.fetch(SignalKind.FILINGS, SignalRequest(cik="320193"))

    def test_search_submissions_pages(self):
        def page(request):
            offset = int(request.url.params["from"])
            hits = [
                {
                    "_id": f"acc-{offset + i}:doc.xml",
                    "_source": {
                        "ciks": [str(offset + i + 1)],
                        "form": "13F-HR",
                        "file_date": "2024-07-01",
                        "display_names": [f"Fund {offset + i}"],
                    },
                }
                for i in range(100 if offset == 0 else 20)
            ]
            return httpx.Response(200, json={"hits": {"hits": hits, "total": {"value": 120}}})

        provider = self._provider({"https://efts.sec.test/search": page})
        window = provider.fetch(
            SignalKind.SUBMISSIONS,
            SignalRequest(cursor="2024-07-01T00:00:00Z", window_end="2024-07-02T00:00:00Z", forms=("13F-HR",)),
        )
        assert len(window.submissions) == 120
        assert len(self.requests) == 2
        assert self.requests[0].url.params["startdt"] == "2024-07-01"
        assert self.requests[0].url.params["forms"] == "13F-HR"
        assert window.submissions[0].filed_at == "2024-07-01T00:00:00Z"

    def test_search_respects_limit(self):
        hits = [
            {"_id": f"acc-{i}:x", "_source": {"ciks": ["1"], "form": "SC 13G", "file_date": "2024-07-01"}}
            for i in range(100)
        ]
        provider = self._provider(
            {
                "https://efts.sec.test/search": lambda request: httpx.Response(
                    200, json={"hits": {"hits": hits, "total": {"value": 500}}}
                )
            }
        )
        window = provider.fetch(SignalKind.SUBMISSIONS, SignalRequest(limit=10))
        assert [s.accession for s in window.submissions] == sorted(f"acc-{i}" for i in range(100))[:10]
        assert window.next_cursor == "2024-07-01T00:00:00Z"
        assert len(self.requests) == 5

    def test_search_within_limit_has_no_next_cursor(self):
        hits = [
            {"_id": f"acc-{i}:x", "_source": {"ciks": ["1"], "form": "SC 13G", "file_date": f"2024-07-0{i + 1}"}}
            for i in range(3)
        ]
        provider = self._provider(
            {"https://efts.sec.test/search": httpx.Response(200, json={"hits": {"hits": hits, "total": {"value": 3}}})}
        )
        window = provider.fetch(SignalKind.SUBMISSIONS, SignalRequest(limit=3))
        assert len(window.submissions) == 3
        assert window.next_cursor is None

    @pytest.mark.parametrize(
        "field, value", [("filingDate", "not-a-date"), ("reportDate", "2024-13-45"), ("filingDate", None)]
    )
    def test_list_filings_malformed_date(self, field, value):
        recent = {
            "accessionNumber": ["a-1"],
            "form": ["13F-HR"],
            "filingDate": ["2024-02-14"],
            "reportDate": ["2023-12-31"],
        }
        recent[field] = [value]
        provider = self._provider(
            {"https://data.sec.test/": httpx.Response(200, json={"name": "Apple Inc.", "filings": {"recent": recent}})}
        )
        with pytest.raises(ParseError) as exc_info:
            provider.fetch(SignalKind.FILINGS, SignalRequest(cik="320193"))
        assert exc_info.value.context.source_name == "edgar"
        assert "a-1" in str(exc_info.value)

    def test_unsupported_kind(self):
        provider = self._provider({})
        with pytest.raises(UnsupportedProviderError):
            provider.fetch(SignalKind.HOLDINGS, SignalRequest())


# =============================================================================
# FINRA
# =============================================================================


class TestFinraProvider:
    def setup_method(self):
        self.bodies = []

    def _provider(self, pages):
        def handler(request):
            body = json.loads(request.content)
            self.bodies.append(body)
            return httpx.Response(200, json=pages(body))

        return FinraProvider(make_client(handler), make_limiter(), base_url="https://finra.test")

    def test_short_interest(self):
        rows = [
            {"settlementDate": "2024-06-28", "currentShortPositionQuantity": 300, "symbolCode": "AAPL"},
            {"settlementDate": "2024-06-14", "currentShortPositionQuantity": "400", "symbolCode": "AAPL"},
        ]
        provider = self._provider(lambda body: rows)
        request = SignalRequest(ticker="aapl", start=date(2024, 6, 1), end=date(2024, 6, 30))
        points = provider.fetch(SignalKind.SHORT_INTEREST, request)
        assert [(p.settle_date, p.short_shares) for p in points] == [
            (date(2024, 6, 14), 400.0),
            (date(2024, 6, 28), 300.0),
        ]
        body = self.bodies[0]
        assert body["compareFilters"][0]["fieldValue"] == "AAPL"
        assert body["dateRangeFilters"][0]["fieldName"] == "settlementDate"

    def test_pagination_until_short_page(self):
        def pages(body):
            if body["offset"] == 0:
                return [
                    {"settlementDate": f"2024-01-{(i % 28) + 1:02d}", "currentShortPositionQuantity": i}
                    for i in range(1000)
                ]
            return [{"settlementDate": "2024-02-15", "currentShortPositionQuantity": 1}]

        provider = self._provider(pages)
        provider.fetch(SignalKind.SHORT_INTEREST, SignalRequest(ticker="AAPL"))
        assert [b["offset"] for b in self.bodies] == [0, 1000]

    def test_ats_weekly_sums_per_week(self):
        rows = [
            {"weekStartDate": "2024-06-03", "totalWeeklyShareQuantity": 100, "totalWeeklyTradeCount": 3},
            {"weekStartDate": "2024-06-03", "totalWeeklyShareQuantity": 50, "totalWeeklyTradeCount": 2},
            {"weekStartDate": "2024-06-10", "totalWeeklyShareQuantity": 10},
        ]
        provider = self._provider(lambda body: rows)
        weeks = provider.fetch(SignalKind.ATS_WEEKLY, SignalRequest(ticker="AAPL"))
        assert [(w.week_end, w.shares, w.trades) for w in weeks] == [
            (date(2024, 6, 7), 150.0, 5),
            (date(2024, 6, 14), 10.0, 0),
        ]

    def test_malformed_row(self):
        provider = self._provider(lambda body: [{"settlementDate": "2024-06-14"}])
        with pytest.raises(ParseError):
            provider.fetch(SignalKind.SHORT_INTEREST, SignalRequest(ticker="AAPL"))

    def test_non_list_payload(self):
        provider = self._provider(lambda body: {"error": "x"})
        with pytest.raises(ParseError):
            provider.fetch(SignalKind.ATS_WEEKLY, SignalRequest(ticker="AAPL"))

    def test_ticker_required(self):
        provider = self._provider(lambda body: [])
        with pytest.raises(ParseError):
            provider.fetch(SignalKind.SHORT_INTEREST, SignalRequest())
