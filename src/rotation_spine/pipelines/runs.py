"""
Run trigger.

Validates a run request before anything is recorded or fetched, then
starts the named workflow on the substrate.  Malformed input raises
:class:`InputError` with no side effects.

Examples:
    >>> services = PipelineServices.from_settings(settings)
    >>> substrate = LocalSubstrate(store, build_registry(services))
    >>> handle = start_fanout_run(substrate, "AAPL", "2024-01-01", "2024-12-31", batch_size=2)
    >>> substrate.drive(handle.run_id).checkpoints
    2
"""

from __future__ import annotations

import re
from datetime import date
from functools import partial
from typing import Any

from rotation_spine.core.errors import InputError
from rotation_spine.core.timestamps import parse_date
from rotation_spine.execution.substrate import RunHandle, WorkflowRegistry
from rotation_spine.pipelines.fanout import FANOUT_WORKFLOW, RUN_KINDS, fanout_workflow
from rotation_spine.pipelines.poller import POLLER_WORKFLOW, poller_workflow
from rotation_spine.pipelines.services import PipelineServices

_TICKER_RE = re.compile(r"^[A-Z][A-Z0-9.\-]{0,9}$")
_CUSIP_RE = re.compile(r"^[0-9A-Z]{9}$")


def build_registry(services: PipelineServices) -> WorkflowRegistry:
    registry = WorkflowRegistry()
    registry.register(FANOUT_WORKFLOW, partial(fanout_workflow, services=services))
    registry.register(POLLER_WORKFLOW, partial(poller_workflow, services=services))
    return registry


def _as_date(value: str | date, field_name: str) -> date:
    try:
        return parse_date(value)
    except (TypeError, ValueError, AttributeError) as exc:
        raise InputError(f"Invalid {field_name} date: {value!r}", field_name=field_name, cause=exc) from exc


def fanout_request(
    ticker: str,
    start: str | date,
    end: str | date,
    *,
    run_kind: str = "backfill",
    batch_size: int = 8,
    force: bool = False,
    cusips: list[str] | tuple[str, ...] = (),
) -> dict[str, Any]:
    """Validated initial fan-out state.

    ``to < from`` is accepted; such a run completes without any checkpoint.
    """
    symbol = (ticker or "").strip().upper()
    if not _TICKER_RE.match(symbol):
        raise InputError(f"Invalid ticker: {ticker!r}", field_name="ticker")
    start_date = _as_date(start, "from")
    end_date = _as_date(end, "to")
    if run_kind not in RUN_KINDS:
        raise InputError(f"run_kind must be one of {', '.join(RUN_KINDS)}, got {run_kind!r}", field_name="run_kind")
    if isinstance(batch_size, bool) or not isinstance(batch_size, int) or batch_size < 1:
        raise InputError(f"batch_size must be a positive integer, got {batch_size!r}", field_name="batch_size")
    normalized_cusips = [c.strip().upper() for c in cusips]
    for cusip in normalized_cusips:
        if not _CUSIP_RE.match(cusip):
            raise InputError(f"Invalid CUSIP: {cusip!r}", field_name="cusips")
    return {
        "ticker": symbol,
        "from": start_date.isoformat(),
        "to": end_date.isoformat(),
        "run_kind": run_kind,
        "batch_size": batch_size,
        "iteration": 0,
        "force": force,
        "cusips": normalized_cusips,
    }


def start_fanout_run(substrate: Any, ticker: str, start: str | date, end: str | date, **kwargs: Any) -> RunHandle:
    """Validate and record a fan-out run; returns its run and first execution ids."""
    return substrate.start(FANOUT_WORKFLOW, fanout_request(ticker, start, end, **kwargs))


__all__ = ["build_registry", "fanout_request", "start_fanout_run"]
