"""
Tests for rotation_spine.core.errors module.

Tests cover:
- Default category and retry flag per error class
- Fluent context attachment and to_dict rendering
- Cause chaining
- SubRangeError context (ticker, sub-range, signal)
- is_retryable for foreign exceptions
"""

import pytest

from rotation_spine.core.errors import (
    CheckpointVersionError,
    ConfigError,
    ErrorCategory,
    ErrorContext,
    InputError,
    NetworkError,
    ParseError,
    RateLimitError,
    RotationError,
    SourceError,
    SourceNotFoundError,
    SourceUnavailableError,
    SubRangeError,
    UnsupportedProviderError,
    WorkflowNotFoundError,
    is_retryable,
)


# =============================================================================
# Retry semantics
# =============================================================================


class TestRetryFlags:
    @pytest.mark.parametrize(
        "error, expected",
        [
            (NetworkError("reset"), True),
            (RateLimitError(retry_after=3), True),
            (SourceUnavailableError("502"), True),
            (SourceError("400"), False),
            (SourceNotFoundError("404"), False),
            (ParseError("bad json"), False),
            (InputError("bad ticker"), False),
            (ConfigError("missing key"), False),
        ],
    )
    def test_default_retryable(self, error, expected):
        assert error.retryable is expected
        assert is_retryable(error) is expected

    def test_override_per_instance(self):
        err = SourceError("flaky", retryable=True)
        assert err.retryable is True

    def test_foreign_exceptions_are_not_retryable(self):
        assert is_retryable(ValueError("x")) is False
        assert is_retryable(ConnectionError("x")) is False

    def test_rate_limit_keeps_retry_after(self):
        err = RateLimitError(retry_after=12.5)
        assert err.retry_after == 12.5
        assert err.to_dict()["retry_after"] == 12.5


# =============================================================================
# Context & serialization
# =============================================================================


class TestErrorContext:
    def test_empty_context_renders_nothing(self):
        assert ErrorContext().to_dict() == {}

    def test_with_context_sets_known_fields(self):
        err = SourceError("404 from FINRA").with_context(signal="short_interest", http_status=404)
        assert err.context.signal == "short_interest"
        assert err.context.http_status == 404

    def test_with_context_puts_unknown_keys_in_metadata(self):
        err = ParseError("bad").with_context(field="cik")
        assert err.context.metadata == {"field": "cik"}
        assert err.to_dict()["context"] == {"field": "cik"}

    def test_to_dict_shape(self):
        err = InputError("bad ticker", field_name="ticker")
        payload = err.to_dict()
        assert payload["error_type"] == "InputError"
        assert payload["category"] == ErrorCategory.VALIDATION.value
        assert payload["retryable"] is False
        assert payload["field"] == "ticker"
        assert "context" not in payload

    def test_cause_is_chained(self):
        original = ConnectionError("DNS failure")
        err = NetworkError("EDGAR unreachable", cause=original)
        assert err.__cause__ is original
        assert err.to_dict()["cause"] == "DNS failure"

    def test_repr_names_class_and_category(self):
        assert repr(ParseError("x")) == "ParseError('x', category=PARSE)"


# =============================================================================
# Specialised errors
# =============================================================================


class TestSpecialisedErrors:
    def test_sub_range_error_carries_location(self):
        cause = ParseError("bad row")
        err = SubRangeError(
            "failed", ticker="AAPL", sub_range="2024-01-01:2024-03-31", signal="short_interest", cause=cause
        )
        assert err.context.ticker == "AAPL"
        assert err.context.sub_range == "2024-01-01:2024-03-31"
        assert err.context.signal == "short_interest"
        assert err.cause is cause
        assert err.retryable is False

    def test_unsupported_provider_lists_supported(self):
        err = UnsupportedProviderError("bloomberg", ["static", "edgar"])
        assert err.kind == "bloomberg"
        assert err.supported == ["edgar", "static"]
        assert "edgar, static" in err.message
        assert isinstance(err, ConfigError)

    def test_workflow_not_found(self):
        err = WorkflowNotFoundError("missing")
        assert err.name == "missing"
        assert err.category is ErrorCategory.ORCHESTRATION

    def test_checkpoint_version_error(self):
        err = CheckpointVersionError(7, 1)
        assert err.found == 7
        assert "7" in err.message

    def test_all_inherit_from_base(self):
        for cls in (InputError, NetworkError, SourceError, ConfigError, SubRangeError):
            assert issubclass(cls, RotationError)
