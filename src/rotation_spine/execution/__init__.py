"""Execution layer: durable substrate, checkpoint runner, retry and rate limiting."""

from rotation_spine.execution.rate_limit import TokenBucketLimiter
from rotation_spine.execution.retry import NO_RETRY, RetryContext, RetryPolicy
from rotation_spine.execution.substrate import (
    ContinueAsNew,
    DurableSubstrate,
    LocalSubstrate,
    RunHandle,
    RunOutcome,
    WorkflowContext,
    WorkflowRegistry,
)

__all__ = [
    "TokenBucketLimiter",
    "RetryPolicy",
    "RetryContext",
    "NO_RETRY",
    "ContinueAsNew",
    "DurableSubstrate",
    "LocalSubstrate",
    "RunHandle",
    "RunOutcome",
    "WorkflowContext",
    "WorkflowRegistry",
]
