"""
Shared pytest fixtures for rotation-spine tests.

This module provides:
- An in-memory SQLite store per test
- A static-provider dataset with one 13F dump in 2024Q2
- A fixed clock and recording sleeper for the substrate
- Pipeline services and a LocalSubstrate wired to all of the above
"""

from __future__ import annotations

import sys
import threading
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from rotation_spine.core.settings import RetrySettings, RotationSettings
from rotation_spine.core.store import RotationStore
from rotation_spine.execution.retry import RetryPolicy
from rotation_spine.execution.substrate import LocalSubstrate
from rotation_spine.pipelines.runs import build_registry
from rotation_spine.pipelines.services import PipelineServices
from rotation_spine.signals.models import SignalKind
from rotation_spine.signals.static import StaticProvider

ISSUER_CIK = "0000320193"
CUSIP = "037833100"
SELLER_CIK = "0000000001"
BUYER_CIK = "0000000002"
BAD_CIK = "0000000999"
BAD_CUSIP = "000000999"


# =============================================================================
# Helpers
# =============================================================================


class FixedClock:
    """Deterministic wall clock; ``advance`` moves it forward."""

    def __init__(self, start: datetime | None = None):
        self.current = start or datetime(2024, 7, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class FailingProvider:
    """Wraps a provider and raises configured errors for (kind, ticker).

    A single exception is raised on every call; a list is consumed one
    error per call, after which calls succeed.
    """

    name = "static"

    def __init__(self, inner: Any, failures: dict[tuple[SignalKind, str], Any]):
        self.inner = inner
        self.failures = failures
        self.supported_kinds = inner.supported_kinds
        self.calls: list[tuple[SignalKind, str | None]] = []
        self._lock = threading.Lock()

    def fetch(self, kind, request):
        key = (kind, (request.ticker or "").upper())
        with self._lock:
            self.calls.append(key)
            planned = self.failures.get(key)
            if isinstance(planned, list):
                error = planned.pop(0) if planned else None
            else:
                error = planned
        if error is not None:
            raise error
        return self.inner.fetch(kind, request)


def rotation_dataset() -> dict[str, Any]:
    """Seller 0000000001 halves out of AAPL at the 2024Q2 quarter end; 0000000002 absorbs most of it."""
    seller = [
        ("2023-06-30", 1000),
        ("2023-09-30", 1000),
        ("2023-12-31", 1000),
        ("2024-03-31", 1000),
        ("2024-06-30", 300),
    ]
    buyer = [("2024-03-31", 100), ("2024-06-30", 600), ("2024-09-30", 700)]
    holdings = [
        {"holder_cik": SELLER_CIK, "cusip": CUSIP, "asof": d, "shares": s, "accession": f"0000000001-{d}"}
        for d, s in seller
    ] + [
        {
            "holder_cik": BUYER_CIK,
            "cusip": CUSIP,
            "asof": d,
            "shares": s,
            "opt_call_shares": 50 if d == "2024-06-30" else 0,
        }
        for d, s in buyer
    ]
    return {
        "issuers": [
            {"cik": "320193", "ticker": "AAPL", "name": "Apple Inc.", "cusips": [CUSIP]},
            {"cik": "999", "ticker": "BAD", "name": "Broken Corp", "cusips": [BAD_CUSIP]},
        ],
        "filings": [
            {
                "accession": "0000000001-24-000001",
                "cik": ISSUER_CIK,
                "form": "SC 13G",
                "filed_date": "2024-05-10",
            }
        ],
        "holdings": holdings,
        "fund_holdings": [
            {"holder_id": "ETF-1", "cusip": CUSIP, "asof": "2024-02-29", "shares": 0, "source": "ETF"},
            {"holder_id": "ETF-1", "cusip": CUSIP, "asof": "2024-06-28", "shares": 70, "source": "ETF"},
        ],
        "short_interest": {
            "AAPL": [
                {"settle_date": "2024-06-14", "short_shares": 400},
                {"settle_date": "2024-06-28", "short_shares": 400},
                {"settle_date": "2024-07-15", "short_shares": 300},
            ]
        },
        "ats_weekly": {"AAPL": [{"week_end": "2024-05-03", "shares": 12000, "trades": 40}]},
        "index_windows": [
            {"index_name": "R1000", "phase": "recon", "window_start": "2024-06-01", "window_end": "2024-06-30"}
        ],
        "daily_returns": {
            "AAPL": [
                {"trade_date": (datetime(2024, 6, 10) + timedelta(days=i)).date().isoformat(), "ret": 0.001 * i}
                for i in range(0, 40)
            ]
        },
        "submissions": [
            {"accession": "sub-1", "cik": "1", "form": "13F-HR", "filed_at": "2024-07-01T11:50:00Z"},
            {"accession": "sub-2", "cik": "2", "form": "SC 13G", "filed_at": "2024-07-01T11:55:00Z"},
            {"accession": "sub-3", "cik": "3", "form": "10-K", "filed_at": "2024-07-01T11:56:00Z"},
            {"accession": "sub-4", "cik": "4", "form": "13F-HR", "filed_at": "2024-07-01T12:03:00Z"},
        ],
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def settings() -> RotationSettings:
    return RotationSettings(
        database_url="sqlite://",
        signal_routes={},
        default_provider="static",
        retry=RetrySettings(max_attempts=3, base_delay=0.0, max_delay=0.0),
    )


@pytest.fixture
def store():
    store = RotationStore.from_url("sqlite://")
    yield store
    store.dispose()


@pytest.fixture
def dataset() -> dict[str, Any]:
    return rotation_dataset()


@pytest.fixture
def static_provider(dataset) -> StaticProvider:
    return StaticProvider.from_mapping(dataset)


@pytest.fixture
def services(settings, static_provider) -> PipelineServices:
    return PipelineServices.from_settings(settings, providers={"static": static_provider})


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def make_substrate(store, clock, sleeps, settings):
    """Factory: substrate over *services* (defaults to the static services)."""

    def _make(services: PipelineServices) -> LocalSubstrate:
        def sleeper(seconds: float) -> None:
            sleeps.append(seconds)
            clock.advance(seconds)

        return LocalSubstrate(
            store,
            build_registry(services),
            clock=clock,
            sleeper=sleeper,
            retry_policy=RetryPolicy.from_settings(settings.retry),
        )

    return _make


@pytest.fixture
def substrate(make_substrate, services) -> LocalSubstrate:
    return make_substrate(services)


@pytest.fixture
def failing_provider_factory(static_provider):
    def _make(failures: dict[tuple[SignalKind, str], Any]) -> FailingProvider:
        return FailingProvider(static_provider, failures)

    return _make
