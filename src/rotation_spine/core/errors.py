"""
Structured error types for the rotation pipeline.

Every failure the pipeline can surface is a :class:`RotationError` carrying
a category, a retry flag, an optional ``retry_after`` hint, a structured
:class:`ErrorContext` and a chained cause.  The retry flag is what the
execution substrate consults when deciding whether a fetch is attempted
again; everything else exists so that a failed run reports *where* it
failed (ticker, sub-range, originating signal) and can be resumed.

Manifesto:
    - **Typed hierarchy:** input, transient, terminal and programming errors
      are different classes, never message strings
    - **Explicit retry semantics:** each class declares ``default_retryable``
    - **Rich context:** ticker / sub-range / signal travel with the error
    - **Error chaining:** the upstream exception is kept as ``cause``

Architecture:
    ::

        ┌──────────────────────────────────────────────────────────────┐
        │                        RotationError                          │
        │      (category, retryable, retry_after, context, cause)       │
        ├──────────────────────────────────────────────────────────────┤
        │  InputError          TransientError        SourceError        │
        │  (VALIDATION)        (retryable=True)      (SOURCE)           │
        │                         │                     │               │
        │                      NetworkError          SourceNotFound     │
        │                      RateLimitError        SourceUnavailable  │
        │                                            ParseError         │
        │                                                               │
        │  ConfigError         PipelineError         StorageError       │
        │     │                   │                                     │
        │  UnsupportedProvider SubRangeError         DeterminismError   │
        │                      WorkflowNotFound      (INTERNAL)         │
        │                      RunCancelled                             │
        │                      CheckpointVersion                        │
        └──────────────────────────────────────────────────────────────┘

Examples:
    >>> err = RateLimitError("SEC throttled", retry_after=10)
    >>> err.retryable
    True
    >>> err = SourceError("404 from FINRA").with_context(signal="short_interest")
    >>> err.context.signal
    'short_interest'

Guardrails:
    ❌ DON'T: raise bare ``Exception`` from a fetch adapter
    ✅ DO: classify as ``TransientError`` or ``SourceError`` so retry works

    ❌ DON'T: mark validation or config errors retryable
    ✅ DO: let ``default_retryable`` decide

Tags:
    error-handling, retry-logic, error-context, rotation-spine
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for routing and reporting."""

    NETWORK = "NETWORK"
    DATABASE = "DATABASE"
    STORAGE = "STORAGE"

    SOURCE = "SOURCE"
    PARSE = "PARSE"
    VALIDATION = "VALIDATION"

    CONFIG = "CONFIG"

    PIPELINE = "PIPELINE"
    ORCHESTRATION = "ORCHESTRATION"

    INTERNAL = "INTERNAL"
    UNKNOWN = "UNKNOWN"


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Only fields that were set are rendered by :meth:`to_dict`, so the same
    context type serves fetch adapters (``url``, ``http_status``) and the
    orchestrators (``ticker``, ``sub_range``, ``signal``).

    Attributes:
        workflow: Workflow name (``"fanout"``, ``"cursor_poller"``).
        run_id: Logical run identifier.
        execution_id: Identifier of the execution that failed.
        ticker: Issuer ticker being processed.
        sub_range: ``"YYYY-MM-DD:YYYY-MM-DD"`` sub-range being processed.
        signal: Originating signal kind (``"short_interest"``, ...).
        source_name: Provider that served the signal.
        url: URL being fetched.
        http_status: HTTP status code, if any.
        metadata: Anything else worth logging.
    """

    workflow: str | None = None
    run_id: str | None = None
    execution_id: str | None = None
    ticker: str | None = None
    sub_range: str | None = None
    signal: str | None = None
    source_name: str | None = None
    url: str | None = None
    http_status: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    _FIELDS = (
        "workflow", "run_id", "execution_id", "ticker", "sub_range",
        "signal", "source_name", "url", "http_status",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for key in self._FIELDS:
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        result.update(self.metadata)
        return result


class RotationError(Exception):
    """
    Base class for all pipeline errors.

    Subclasses set ``default_category`` and ``default_retryable``; callers
    may override either per instance.  ``cause`` is chained as
    ``__cause__`` so tracebacks show the upstream failure.

    Examples:
        >>> try:
        ...     raise ConnectionError("DNS failure")
        ... except ConnectionError as e:
        ...     err = NetworkError("EDGAR unreachable", cause=e)
        >>> err.to_dict()["cause"]
        'DNS failure'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        retry_after: float | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.retry_after = retry_after
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> RotationError:
        """Add context to this error (fluent API)."""
        for key, value in kwargs.items():
            if key in ErrorContext._FIELDS:
                setattr(self.context, key, value)
            else:
                self.context.metadata[key] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.retry_after is not None:
            result["retry_after"] = self.retry_after
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# INPUT ERRORS (rejected before any fetch)
# =============================================================================


class InputError(RotationError):
    """Malformed ticker, date range, edge-id list or other request input."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False

    def __init__(self, message: str, *, field_name: str | None = None, **kwargs: Any):
        super().__init__(message, **kwargs)
        self.field_name = field_name

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.field_name:
            result["field"] = self.field_name
        return result


# =============================================================================
# TRANSIENT ERRORS (retried with backoff)
# =============================================================================


class TransientError(RotationError):
    """Temporary failure expected to succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Connection reset, DNS failure, read timeout."""


class RateLimitError(TransientError):
    """Upstream throttled the request (HTTP 429 or equivalent)."""

    def __init__(self, message: str = "Rate limit exceeded", *, retry_after: float | None = None, **kwargs: Any):
        super().__init__(message, retry_after=retry_after, **kwargs)


# =============================================================================
# SOURCE ERRORS (terminal unless stated otherwise)
# =============================================================================


class SourceError(RotationError):
    """Upstream returned something the pipeline cannot use."""

    default_category = ErrorCategory.SOURCE
    default_retryable = False


class SourceNotFoundError(SourceError):
    """Requested resource does not exist upstream."""


class SourceUnavailableError(SourceError):
    """Upstream answered with a server-side failure; may recover."""

    default_retryable = True


class ParseError(SourceError):
    """Upstream payload could not be decoded or normalized."""

    default_category = ErrorCategory.PARSE


# =============================================================================
# CONFIGURATION
# =============================================================================


class ConfigError(RotationError):
    """Invalid or missing configuration. Never retryable."""

    default_category = ErrorCategory.CONFIG
    default_retryable = False


class UnsupportedProviderError(ConfigError):
    """A provider or model kind was requested that has no implementation."""

    def __init__(self, kind: str, supported: list[str] | None = None):
        self.kind = kind
        self.supported = sorted(supported or [])
        detail = f" (supported: {', '.join(self.supported)})" if self.supported else ""
        super().__init__(f"Unsupported kind: {kind}{detail}")


# =============================================================================
# PIPELINE / ORCHESTRATION
# =============================================================================


class PipelineError(RotationError):
    """Failure while driving a unit of work."""

    default_category = ErrorCategory.PIPELINE
    default_retryable = False


class SubRangeError(PipelineError):
    """A quarter sub-range was abandoned; nothing from it was persisted."""

    def __init__(
        self,
        message: str,
        *,
        ticker: str,
        sub_range: str,
        signal: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(
            message,
            context=ErrorContext(ticker=ticker, sub_range=sub_range, signal=signal),
            cause=cause,
        )


class WorkflowNotFoundError(PipelineError):
    """No workflow is registered under the requested name."""

    default_category = ErrorCategory.ORCHESTRATION

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Workflow not found: {name}")


class RunCancelledError(PipelineError):
    """The run was cancelled between sub-range boundaries."""

    default_category = ErrorCategory.ORCHESTRATION


class CheckpointVersionError(PipelineError):
    """A checkpoint payload was written by an incompatible version."""

    default_category = ErrorCategory.ORCHESTRATION

    def __init__(self, found: Any, expected: int):
        self.found = found
        self.expected = expected
        super().__init__(f"Unsupported checkpoint version {found!r}, expected {expected}")


class DeterminismError(RotationError):
    """Workflow code touched the clock or I/O outside the substrate."""

    default_category = ErrorCategory.INTERNAL
    default_retryable = False


# =============================================================================
# STORAGE
# =============================================================================


class StorageError(RotationError):
    """Persistent store failure."""

    default_category = ErrorCategory.DATABASE
    default_retryable = False


def is_retryable(error: BaseException) -> bool:
    """Return True when *error* should be retried by the substrate."""
    if isinstance(error, RotationError):
        return error.retryable
    return False


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "RotationError",
    "InputError",
    "TransientError",
    "NetworkError",
    "RateLimitError",
    "SourceError",
    "SourceNotFoundError",
    "SourceUnavailableError",
    "ParseError",
    "ConfigError",
    "UnsupportedProviderError",
    "PipelineError",
    "SubRangeError",
    "WorkflowNotFoundError",
    "RunCancelledError",
    "CheckpointVersionError",
    "DeterminismError",
    "StorageError",
    "is_retryable",
]
