"""
Tests for rotation_spine.events.event_study module.

Tests cover:
- Pre/post window means over present observations only
- insufficient_data when either side is empty
- Abnormal-return metrics (CAR, horizons, drawdown)
- Configured window validation
"""

from datetime import date, timedelta

import pytest

from rotation_spine.core.errors import UnsupportedProviderError
from rotation_spine.core.settings import DetectorSettings, EventStudySettings, EventWindowSettings
from rotation_spine.events.dump_detector import DumpEventDetector
from rotation_spine.events.event_study import (
    STATUS_INSUFFICIENT,
    STATUS_OK,
    EventStudyEngine,
    abnormal_return_metrics,
    window_means,
)
from rotation_spine.signals.models import DailyReturn, HoldingPosition, IssuerResolution, QuarterSignals

ISSUER = IssuerResolution("0000320193", "AAPL", "Apple Inc.", ("037833100",))
ANCHOR = date(2024, 6, 30)


def make_signals(returns=()):
    quarter_ends = ["2023-06-30", "2023-09-30", "2023-12-31", "2024-03-31", "2024-06-30"]
    holdings = tuple(
        HoldingPosition("0000000001", "037833100", date.fromisoformat(d), v)
        for d, v in zip(quarter_ends, [1000, 1000, 1000, 1000, 300])
    )
    return QuarterSignals(
        issuer=ISSUER,
        label="2024Q2",
        start=date(2024, 4, 1),
        end=date(2024, 6, 30),
        holdings=holdings,
        daily_returns=tuple(returns),
    )


def daily_returns(start=date(2024, 6, 10), count=40):
    return [DailyReturn(start + timedelta(days=i), 0.001 * i) for i in range(count)]


# =============================================================================
# Window arithmetic
# =============================================================================


class TestWindowMeans:
    def test_pre_excludes_anchor_post_includes_it(self):
        points = [(date(2024, 6, 29), 1.0), (ANCHOR, 3.0), (date(2024, 7, 1), 5.0)]
        pre, post, pre_n, post_n = window_means(points, ANCHOR, EventWindowSettings(pre_days=5, post_days=5))
        assert (pre, post, pre_n, post_n) == (1.0, 4.0, 1, 2)

    def test_missing_values_are_skipped(self):
        points = [(date(2024, 6, 28), None), (date(2024, 6, 29), 2.0), (ANCHOR, None)]
        pre, post, pre_n, post_n = window_means(points, ANCHOR, EventWindowSettings(pre_days=5, post_days=5))
        assert pre == 2.0
        assert post is None
        assert post_n == 0

    def test_bounds(self):
        points = [(date(2024, 6, 25), 1.0), (date(2024, 7, 5), 1.0), (date(2024, 7, 6), 9.0)]
        _, post, pre_n, post_n = window_means(points, ANCHOR, EventWindowSettings(pre_days=5, post_days=5))
        assert pre_n == 1
        assert post_n == 1
        assert post == 1.0


class TestAbnormalReturnMetrics:
    def test_metrics_from_anchor(self):
        series = [(r.trade_date, r.abnormal) for r in daily_returns()]
        metrics = abnormal_return_metrics(series, ANCHOR)
        # anchor is observation 20; CAR covers observations 15..39
        assert metrics["car_m5_p20"] == pytest.approx(0.001 * sum(range(15, 40)))
        assert metrics["horizons"]["5"] == pytest.approx(0.001 * sum(range(20, 25)))
        assert set(metrics["horizons"]) == {"5", "10", "20"}
        assert "tt_plus20_days" not in metrics
        assert metrics["max_drawdown_w13"] == 0.0
        assert metrics["max_ret_w13"] == pytest.approx(0.001 * sum(range(20, 40)))

    def test_drawdown(self):
        series = [(ANCHOR + timedelta(days=i), v) for i, v in enumerate([0.1, -0.3, 0.05])]
        metrics = abnormal_return_metrics(series, ANCHOR)
        assert metrics["max_ret_w13"] == pytest.approx(0.1)
        assert metrics["max_drawdown_w13"] == pytest.approx(-0.3)

    def test_trading_days_to_plus20(self):
        series = [(ANCHOR + timedelta(days=i), 0.0) for i in range(30)]
        assert abnormal_return_metrics(series, ANCHOR)["tt_plus20_days"] == 20

    def test_no_observation_after_anchor(self):
        assert abnormal_return_metrics([(date(2024, 1, 2), 0.1)], ANCHOR) == {}


# =============================================================================
# EventStudyEngine
# =============================================================================


class TestEventStudyEngine:
    def setup_method(self):
        self.engine = EventStudyEngine(EventStudySettings())

    def _cluster(self, signals):
        return DumpEventDetector(DetectorSettings()).detect(signals)[0]

    def test_holdings_and_returns(self):
        signals = make_signals(daily_returns())
        results = {r.signal: r for r in self.engine.study(self._cluster(signals), signals)}
        holdings = results["holdings"]
        assert holdings.status == STATUS_OK
        assert holdings.pre_mean == 1000
        assert holdings.post_mean == 300
        assert holdings.change == -700

        returns = results["returns"]
        assert returns.status == STATUS_OK
        assert returns.pre_count == 10
        assert returns.post_count == 20
        assert "car_m5_p20" in returns.metrics

    def test_empty_side_is_insufficient(self):
        signals = make_signals()
        results = {r.signal: r for r in self.engine.study(self._cluster(signals), signals)}
        returns = results["returns"]
        assert returns.status == STATUS_INSUFFICIENT
        assert returns.pre_mean is None
        assert returns.post_mean is None
        assert returns.change is None
        assert returns.metrics == {}

    def test_results_in_signal_order(self):
        signals = make_signals(daily_returns())
        assert [r.signal for r in self.engine.study(self._cluster(signals), signals)] == ["holdings", "returns"]

    def test_to_row(self):
        signals = make_signals()
        row = self.engine.study(self._cluster(signals), signals)[0].to_row()
        assert row["signal"] == "holdings"
        assert row["change"] == -700

    def test_unknown_window_signal(self):
        settings = EventStudySettings(windows={"sentiment": EventWindowSettings(pre_days=1, post_days=1)})
        with pytest.raises(UnsupportedProviderError):
            EventStudyEngine(settings)
