"""
SEC EDGAR provider.

Serves three signal kinds over ``httpx``:

* ``ISSUER``      → ``{edgar_base_url}/files/company_tickers.json``
* ``FILINGS``     → ``{edgar_data_url}/submissions/CIK##########.json``
* ``SUBMISSIONS`` → EDGAR full-text search index, paged with ``from``

SEC requires a descriptive ``User-Agent`` and throttles clients above
ten requests per second; both come from settings.  The ticker map is
fetched once per provider instance.
"""

from __future__ import annotations

import threading
from typing import Any

import httpx

from rotation_spine.core.errors import ParseError, SourceNotFoundError, UnsupportedProviderError
from rotation_spine.core.logging import get_logger
from rotation_spine.core.settings import RotationSettings
from rotation_spine.core.timestamps import parse_cursor, parse_date
from rotation_spine.execution.rate_limit import TokenBucketLimiter
from rotation_spine.signals.gateway import SignalRequest
from rotation_spine.signals.http import HttpSource
from rotation_spine.signals.models import (
    FilingRef,
    IssuerResolution,
    SignalKind,
    Submission,
    SubmissionWindow,
)
from rotation_spine.signals.normalize import normalize_cik

logger = get_logger(__name__)

_PAGE_SIZE = 100


class EdgarProvider(HttpSource):
    name = "edgar"
    supported_kinds = frozenset({SignalKind.ISSUER, SignalKind.FILINGS, SignalKind.SUBMISSIONS})

    def __init__(
        self,
        client: httpx.Client,
        limiter: TokenBucketLimiter,
        *,
        base_url: str = "https://www.sec.gov",
        data_url: str = "https://data.sec.gov",
        search_url: str = "https://efts.sec.gov/LATEST/search-index",
    ):
        super().__init__(client, limiter)
        self.base_url = base_url.rstrip("/")
        self.data_url = data_url.rstrip("/")
        self.search_url = search_url
        self._ticker_map: dict[str, IssuerResolution] | None = None
        self._ticker_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: RotationSettings, client: httpx.Client | None = None) -> EdgarProvider:
        if client is None:
            client = httpx.Client(
                headers={"User-Agent": settings.sec_user_agent, "Accept": "application/json"},
                timeout=settings.http_timeout_seconds,
                follow_redirects=True,
            )
        limiter = TokenBucketLimiter(rate=settings.sec_requests_per_second, capacity=settings.sec_requests_per_second)
        return cls(
            client,
            limiter,
            base_url=settings.edgar_base_url,
            data_url=settings.edgar_data_url,
            search_url=settings.edgar_search_url,
        )

    def fetch(self, kind: SignalKind, request: SignalRequest) -> Any:
        if kind is SignalKind.ISSUER:
            return self.resolve_issuer(request)
        if kind is SignalKind.FILINGS:
            return self.list_filings(request)
        if kind is SignalKind.SUBMISSIONS:
            return self.search_submissions(request)
        raise UnsupportedProviderError(f"{self.name}:{kind.value}", [k.value for k in self.supported_kinds])

    # -- ISSUER ----------------------------------------------------------------

    def resolve_issuer(self, request: SignalRequest) -> IssuerResolution:
        ticker = (request.ticker or "").upper()
        mapping = self._load_ticker_map()
        issuer = mapping.get(ticker)
        if issuer is None and request.cik:
            issuer = next((i for i in mapping.values() if i.cik == request.cik), None)
        if issuer is None:
            raise SourceNotFoundError(f"Ticker {ticker!r} not in the EDGAR ticker map").with_context(
                ticker=ticker, source_name=self.name
            )
        return issuer

    def _load_ticker_map(self) -> dict[str, IssuerResolution]:
        with self._ticker_lock:
            if self._ticker_map is None:
                payload = self.request_json("GET", f"{self.base_url}/files/company_tickers.json")
                if not isinstance(payload, dict):
                    raise ParseError("company_tickers.json is not an object").with_context(source_name=self.name)
                mapping: dict[str, IssuerResolution] = {}
                for entry in payload.values():
                    try:
                        ticker = str(entry["ticker"]).upper()
                        mapping.setdefault(
                            ticker,
                            IssuerResolution(cik=normalize_cik(entry["cik_str"]), ticker=ticker, name=entry.get("title")),
                        )
                    except (KeyError, TypeError) as exc:
                        raise ParseError(f"Malformed ticker map entry: {entry!r}", cause=exc) from exc
                self._ticker_map = mapping
                logger.info("edgar.ticker_map_loaded", tickers=len(mapping))
            return self._ticker_map

    # -- FILINGS ---------------------------------------------------------------

    def list_filings(self, request: SignalRequest) -> tuple[FilingRef, ...]:
        if not request.cik:
            raise ParseError("FILINGS request needs a CIK")
        cik = normalize_cik(request.cik)
        payload = self.request_json("GET", f"{self.data_url}/submissions/CIK{cik}.json")
        try:
            recent = payload["filings"]["recent"]
            accessions = recent["accessionNumber"]
            forms = recent["form"]
            filed = recent["filingDate"]
            reports = recent.get("reportDate") or [""] * len(accessions)
        except (KeyError, TypeError) as exc:
            raise ParseError(f"Unexpected submissions payload for CIK {cik}", cause=exc).with_context(
                source_name=self.name
            ) from exc

        wanted = set(request.forms)
        out: list[FilingRef] = []
        for accession, form, filed_date, report_date in zip(accessions, forms, filed, reports, strict=False):
            if wanted and form not in wanted:
                continue
            try:
                day = parse_date(filed_date)
                period_end = parse_date(report_date) if report_date else None
            except (AttributeError, TypeError, ValueError) as exc:
                raise ParseError(
                    f"Malformed dates on filing {accession} for CIK {cik}: {filed_date!r}, {report_date!r}", cause=exc
                ).with_context(source_name=self.name) from exc
            if request.start is not None and day < request.start:
                continue
            if request.end is not None and day > request.end:
                continue
            out.append(
                FilingRef(
                    accession=accession,
                    cik=cik,
                    form=form,
                    filed_date=day,
                    period_end=period_end,
                    company_name=payload.get("name"),
                )
            )
        out.sort(key=lambda f: (f.filed_date, f.accession))
        return tuple(out)

    # -- SUBMISSIONS -----------------------------------------------------------

    def search_submissions(self, request: SignalRequest) -> SubmissionWindow:
        """New submissions filed in ``[cursor, window_end]`` (day granularity upstream).

        Search hits are not ordered by filing time, so every page of the window
        is read before the result is sorted.  At most ``request.limit``
        submissions are returned; when more exist, ``next_cursor`` is the
        ``filed_at`` of the first one left out.
        """
        start_day = parse_cursor(request.cursor).date() if request.cursor else None
        end_day = parse_cursor(request.window_end).date() if request.window_end else None
        params: dict[str, Any] = {"q": '""', "dateRange": "custom"}
        if request.forms:
            params["forms"] = ",".join(request.forms)
        if start_day is not None:
            params["startdt"] = start_day.isoformat()
        if end_day is not None:
            params["enddt"] = end_day.isoformat()

        seen: dict[str, Submission] = {}
        offset = 0
        while True:
            page = self.request_json("GET", self.search_url, params={**params, "from": offset})
            try:
                hits = page["hits"]["hits"]
                total = int(page["hits"]["total"]["value"])
            except (KeyError, TypeError, ValueError) as exc:
                raise ParseError("Unexpected full-text search payload", cause=exc).with_context(
                    source_name=self.name
                ) from exc
            for hit in hits:
                sub = self._parse_hit(hit)
                seen.setdefault(sub.accession, sub)
            offset += _PAGE_SIZE
            if not hits or offset >= total:
                break

        ordered = sorted(seen.values(), key=lambda s: (s.filed_at, s.accession))
        if request.limit is not None and len(ordered) > request.limit:
            return SubmissionWindow(
                submissions=tuple(ordered[: request.limit]), next_cursor=ordered[request.limit].filed_at
            )
        return SubmissionWindow(submissions=tuple(ordered), next_cursor=None)

    @staticmethod
    def _parse_hit(hit: dict[str, Any]) -> Submission:
        try:
            source = hit["_source"]
            accession = source.get("adsh") or hit["_id"].split(":", 1)[0]
            ciks = source.get("ciks") or []
            names = source.get("display_names") or []
            return Submission(
                accession=accession,
                cik=normalize_cik(ciks[0]),
                form=source["form"],
                filed_at=f"{source['file_date']}T00:00:00Z",
                company_name=names[0] if names else None,
            )
        except (KeyError, IndexError, TypeError) as exc:
            raise ParseError(f"Malformed search hit: {hit!r}", cause=exc) from exc


__all__ = ["EdgarProvider"]
